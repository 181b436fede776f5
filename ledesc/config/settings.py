"""
Configuration Management for LEDESC

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FirestoreSettings(BaseSettings):
    """Cloud Firestore (remote document store) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FIRESTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    project_id: Optional[str] = Field(
        default=None,
        description="Google Cloud project that owns the Firestore database"
    )
    credentials_path: Optional[str] = Field(
        default=None,
        description="Path to a service account JSON; falls back to application default credentials"
    )
    root_collection: str = Field(
        default="users",
        description="Top-level collection holding one document per identity"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: Optional[str]) -> Optional[str]:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if v and not Path(v).exists():
            import warnings
            warnings.warn(
                f"Firestore credentials file not found at {v}. "
                "Make sure it exists before signing in."
            )
        return v


class DriveSettings(BaseSettings):
    """Google Drive backup configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_DRIVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    folder_name: str = Field(
        default="LEDESC_App_Backups",
        description="App-owned folder that holds the JSON backup"
    )
    backup_file_prefix: str = Field(
        default="ledesc_backup",
        description="Backup file name prefix; the sanitized email is appended"
    )


class MailSettings(BaseSettings):
    """Transactional mail relay (Resend SMTP) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    smtp_host: str = Field(default="smtp.resend.com")
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_user: str = Field(default="resend")
    api_key: Optional[str] = Field(
        default=None,
        description="Resend API key, used as the SMTP password"
    )
    from_address: str = Field(
        default="Contacto LEDESC <onboarding@resend.dev>",
        description="Sender shown on relayed contact messages"
    )
    destination: Optional[str] = Field(
        default=None,
        description="Mailbox that receives contact-form submissions"
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.destination)


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_name: str = Field(
        default="LEDESC",
        description="Namespace for local storage keys and backup metadata"
    )
    schema_version: int = Field(
        default=3,
        ge=1,
        description="Version suffix of the local storage keys"
    )
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    local_storage_dir: Path = Field(
        default=Path("~/.ledesc"),
        description="Directory holding the local-only state files"
    )
    remote_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        le=120,
        description="Timeout applied to every remote store and Drive call"
    )

    # Import limits
    max_import_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum workbook size accepted for restore"
    )

    @field_validator('local_storage_dir')
    @classmethod
    def expand_storage_dir(cls, v: Path) -> Path:
        return v.expanduser()

    @property
    def max_import_size_bytes(self) -> int:
        """Get max import size in bytes."""
        return self.max_import_size_mb * 1024 * 1024


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def firestore(self) -> FirestoreSettings:
        return FirestoreSettings()

    @property
    def drive(self) -> DriveSettings:
        return DriveSettings()

    @property
    def mail(self) -> MailSettings:
        return MailSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("app", "firestore", "drive", "mail"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    results["mail_configured"] = results["mail"] and settings.mail.is_configured

    return results
