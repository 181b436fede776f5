"""Services package."""

from ledesc.services.backup import (
    BackupError,
    DriveAuthError,
    DriveBackupService,
    DriveError,
    DriveFileNotFoundError,
    SheetsBackupService,
    WorkbookFormatError,
)
from ledesc.services.mail import ContactRelay, ContactResult
from ledesc.services.storage import (
    DuplicateError,
    FirestoreStateStore,
    LocalStateStore,
    NotFoundError,
    StateStore,
    StorageError,
    StoreDetachedError,
)

__all__ = [
    # Backup services
    "BackupError",
    "DriveAuthError",
    "DriveBackupService",
    "DriveError",
    "DriveFileNotFoundError",
    "SheetsBackupService",
    "WorkbookFormatError",
    # Mail
    "ContactRelay",
    "ContactResult",
    # Storage services
    "DuplicateError",
    "FirestoreStateStore",
    "LocalStateStore",
    "NotFoundError",
    "StateStore",
    "StorageError",
    "StoreDetachedError",
]
