"""Configuration package."""

from ledesc.config.settings import (
    AppSettings,
    DriveSettings,
    FirestoreSettings,
    MailSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DriveSettings",
    "FirestoreSettings",
    "MailSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
