"""
Google Drive JSON Backup

DESIGN DECISION: One JSON file per identity in an app folder because:
1. The drive.file scope only sees files this app created
2. Overwriting a single file keeps the user's Drive tidy
3. The JSON is the same shape the web version wrote, so old backups restore

Flow:
    backup:  find folder (create if missing) -> find file -> update or create
    restore: find folder -> find file -> download -> split into JSON strings

Every call uses the identity's OAuth access token. A missing or expired
token fails before any request is made.
"""

import json
import re
from datetime import datetime
from typing import Any, Callable, Optional

import requests
from google.auth.transport.requests import AuthorizedSession
from google.oauth2.credentials import Credentials
from pydantic import BaseModel

from ledesc.config import get_settings
from ledesc.models.benefit import AppState, Identity
from ledesc.notifications import get_logger
from ledesc.services.backup.errors import (
    DriveAuthError,
    DriveError,
    DriveFileNotFoundError,
)

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive.file"]
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

SessionFactory = Callable[[str], Any]


def authorized_session(access_token: str) -> AuthorizedSession:
    """HTTP session that sends the user's bearer token."""
    return AuthorizedSession(Credentials(token=access_token, scopes=DRIVE_SCOPES))


def backup_file_name(email: str, prefix: Optional[str] = None) -> str:
    """ledesc_backup_<email with every non-alphanumeric replaced by _>.json"""
    prefix = prefix or get_settings().drive.backup_file_prefix
    return f"{prefix}_{re.sub(r'[^a-zA-Z0-9]', '_', email)}.json"


def _quote(value: str) -> str:
    """Escape a value for a Drive search query literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_backup_payload(state: AppState, identity: Identity, now: Optional[datetime] = None) -> dict:
    return {
        "purchases": [p.model_dump(mode="json", by_alias=True) for p in state.purchases],
        "merchants": [m.model_dump(mode="json", by_alias=True) for m in state.merchants],
        "settings": state.settings.model_dump(mode="json", by_alias=True),
        "metadata": {
            "timestamp": (now or datetime.now()).isoformat(),
            "identity": identity.email,
            "appName": get_settings().app.app_name,
        },
    }


class DriveRestoreResult(BaseModel):
    """The three parts of a downloaded backup, still as JSON text."""

    purchases_data: str
    merchants_data: str
    settings_data: str


class DriveBackupService:
    """
    Backs up and restores AppState as a JSON file in Google Drive.

    Methods block; callers on the event loop run them in a thread.
    """

    def __init__(
        self,
        session_factory: SessionFactory = authorized_session,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self._session_factory = session_factory
        self._timeout = timeout if timeout is not None else settings.app.remote_timeout_seconds
        self._folder_name = settings.drive.folder_name
        self._logger = get_logger("ledesc.backup.drive")

    # -- HTTP helpers ------------------------------------------------------

    def _open(self, identity: Identity) -> Any:
        if not identity.has_valid_token():
            raise DriveAuthError(
                "Tu sesión de Google expiró o no tiene permisos de Drive. Inicia sesión nuevamente."
            )
        return self._session_factory(identity.access_token)

    def _request(self, session: Any, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            raise DriveError(f"No se pudo contactar Google Drive: {e}") from e

        if response.status_code in (401, 403):
            raise DriveAuthError(
                f"Google Drive rechazó el acceso ({response.status_code}). Inicia sesión nuevamente."
            )
        if response.status_code >= 400:
            raise DriveError(
                f"Google Drive respondió {response.status_code}: {response.text[:200]}"
            )
        return response

    def _search(self, session: Any, query: str) -> Optional[str]:
        """Id of the first file matching query, or None."""
        response = self._request(
            session,
            "GET",
            DRIVE_FILES_URL,
            params={"q": query, "fields": "files(id)", "spaces": "drive"},
        )
        files = response.json().get("files") or []
        return files[0]["id"] if files else None

    def _find_folder(self, session: Any) -> Optional[str]:
        return self._search(
            session,
            f"mimeType='{FOLDER_MIME_TYPE}' and name='{_quote(self._folder_name)}' and trashed=false",
        )

    def _find_file(self, session: Any, folder_id: str, name: str) -> Optional[str]:
        return self._search(
            session,
            f"name='{_quote(name)}' and '{_quote(folder_id)}' in parents and trashed=false",
        )

    def _create_folder(self, session: Any) -> str:
        response = self._request(
            session,
            "POST",
            DRIVE_FILES_URL,
            params={"fields": "id"},
            json={"name": self._folder_name, "mimeType": FOLDER_MIME_TYPE},
        )
        folder_id = response.json()["id"]
        self._logger.info("drive_folder_created", folder_id=folder_id)
        return folder_id

    def _upload(self, session: Any, file_id: str, body: bytes) -> None:
        self._request(
            session,
            "PATCH",
            f"{DRIVE_UPLOAD_URL}/{file_id}",
            params={"uploadType": "media"},
            data=body,
            headers={"Content-Type": "application/json; charset=utf-8"},
        )

    # -- operations --------------------------------------------------------

    def backup(self, identity: Identity, state: AppState, now: Optional[datetime] = None) -> str:
        """
        Write the backup file, creating folder and file as needed.

        Returns:
            The Drive file id

        Raises:
            DriveAuthError: Token missing, expired or refused
            DriveError: Any other Drive failure
        """
        session = self._open(identity)
        name = backup_file_name(identity.email)
        body = json.dumps(build_backup_payload(state, identity, now), ensure_ascii=False).encode("utf-8")

        folder_id = self._find_folder(session) or self._create_folder(session)
        file_id = self._find_file(session, folder_id, name)

        if file_id is None:
            response = self._request(
                session,
                "POST",
                DRIVE_FILES_URL,
                params={"fields": "id"},
                json={"name": name, "parents": [folder_id], "mimeType": "application/json"},
            )
            file_id = response.json()["id"]
            self._logger.info("drive_backup_file_created", file_id=file_id)

        self._upload(session, file_id, body)
        self._logger.info(
            "drive_backup_written",
            file_id=file_id,
            purchases=len(state.purchases),
            merchants=len(state.merchants),
        )
        return file_id

    def restore(self, identity: Identity) -> DriveRestoreResult:
        """
        Download the backup file.

        Raises:
            DriveAuthError: Token missing, expired or refused
            DriveFileNotFoundError: No backup folder or file
            DriveError: Download failed or content is not a backup
        """
        session = self._open(identity)
        name = backup_file_name(identity.email)

        folder_id = self._find_folder(session)
        if folder_id is None:
            raise DriveFileNotFoundError(
                f"No se encontró la carpeta de backup '{self._folder_name}' en Google Drive."
            )
        file_id = self._find_file(session, folder_id, name)
        if file_id is None:
            raise DriveFileNotFoundError(
                f"No se encontró el archivo de backup '{name}' en Google Drive."
            )

        response = self._request(
            session,
            "GET",
            f"{DRIVE_FILES_URL}/{file_id}",
            params={"alt": "media"},
        )
        try:
            payload = json.loads(response.content)
        except ValueError as e:
            raise DriveError(f"El archivo de backup no es JSON válido: {e}") from e
        if not isinstance(payload, dict):
            raise DriveError("El archivo de backup no tiene el formato esperado.")

        self._logger.info("drive_backup_downloaded", file_id=file_id)
        return DriveRestoreResult(
            purchases_data=json.dumps(payload.get("purchases") or [], ensure_ascii=False),
            merchants_data=json.dumps(payload.get("merchants") or [], ensure_ascii=False),
            settings_data=json.dumps(payload.get("settings") or {}, ensure_ascii=False),
        )
