"""Exceptions raised by the export, import and backup services."""


class BackupError(Exception):
    """Base exception for backup and restore operations."""
    pass


class WorkbookFormatError(BackupError):
    """The workbook is missing a required sheet or cannot be opened."""
    pass


class DriveError(BackupError):
    """Google Drive rejected or failed a request."""
    pass


class DriveAuthError(DriveError):
    """The OAuth token is missing, expired or was refused."""
    pass


class DriveFileNotFoundError(DriveError):
    """The backup folder or file does not exist."""
    pass


class SheetsBackupError(BackupError):
    """Creating or filling the backup spreadsheet failed."""
    pass
