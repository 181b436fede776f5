"""Export, import and backup services."""

from ledesc.services.backup.errors import (
    BackupError,
    DriveAuthError,
    DriveError,
    DriveFileNotFoundError,
    SheetsBackupError,
    WorkbookFormatError,
)
from ledesc.services.backup.csv_export import export_csv, purchases_to_csv
from ledesc.services.backup.workbook import export_workbook, import_workbook
from ledesc.services.backup.drive import (
    DriveBackupService,
    DriveRestoreResult,
    backup_file_name,
)
from ledesc.services.backup.sheets import SheetsBackupService

__all__ = [
    "BackupError",
    "DriveAuthError",
    "DriveBackupService",
    "DriveError",
    "DriveFileNotFoundError",
    "DriveRestoreResult",
    "SheetsBackupError",
    "SheetsBackupService",
    "WorkbookFormatError",
    "backup_file_name",
    "export_csv",
    "export_workbook",
    "import_workbook",
    "purchases_to_csv",
]
