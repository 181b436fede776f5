"""
Google Sheets Backup

Creates a new spreadsheet per backup with two sheets:
- Compras: one row per purchase
- Configuracion: one row per setting

Unlike the Drive backup this is write-only; it exists so the user can
look at their data in Sheets. Authorized with the identity's OAuth token.
"""

import re
from datetime import datetime
from typing import Any, Callable, Optional

import gspread
from google.oauth2.credentials import Credentials

from ledesc.config import get_settings
from ledesc.models.benefit import AppState, Identity
from ledesc.notifications import get_logger
from ledesc.services.backup.errors import DriveAuthError, SheetsBackupError

SHEETS_SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
]

PURCHASES_SHEET = "Compras"
SETTINGS_SHEET = "Configuracion"

PURCHASE_HEADERS = [
    "ID",
    "Monto Original ($)",
    "Fecha",
    "Comercio",
    "Descripción",
    "Descuento Aplicado ($)",
    "Monto Final ($)",
    "URL Recibo",
]
SETTINGS_HEADERS = ["Configuración", "Valor"]

ClientFactory = Callable[[str], Any]


def authorize(access_token: str) -> gspread.Client:
    return gspread.authorize(Credentials(token=access_token, scopes=SHEETS_SCOPES))


def spreadsheet_title(app_name: str, now: Optional[datetime] = None) -> str:
    return f"{app_name} Backup - {(now or datetime.now()):%Y-%m-%d_%H-%M-%S}"


def _setting_label(key: str) -> str:
    """monthlyAllowance -> Monthly Allowance"""
    spaced = re.sub(r"([A-Z])", r" \1", key)
    return spaced[:1].upper() + spaced[1:]


def purchase_rows(state: AppState) -> list[list[Any]]:
    rows: list[list[Any]] = [PURCHASE_HEADERS]
    for p in state.purchases:
        rows.append([
            p.id,
            float(p.amount),
            p.date.strftime("%Y-%m-%d %H:%M:%S"),
            p.merchant_name,
            p.description or "",
            float(p.discount_applied),
            float(p.final_amount),
            p.receipt_image_url or "",
        ])
    return rows


def settings_rows(state: AppState) -> list[list[Any]]:
    rows: list[list[Any]] = [SETTINGS_HEADERS]
    data = state.settings.model_dump(mode="json", by_alias=True)
    for key, value in data.items():
        rows.append([_setting_label(key), "" if value is None else str(value)])
    return rows


class SheetsBackupService:
    """Writes AppState to a freshly created spreadsheet."""

    def __init__(self, client_factory: ClientFactory = authorize, app_name: Optional[str] = None):
        self._client_factory = client_factory
        self._app_name = app_name or get_settings().app.app_name
        self._logger = get_logger("ledesc.backup.sheets")

    def backup(self, identity: Identity, state: AppState, now: Optional[datetime] = None) -> str:
        """
        Create and fill the backup spreadsheet.

        Returns:
            The spreadsheet URL

        Raises:
            DriveAuthError: Token missing, expired or refused
            SheetsBackupError: Any other Sheets failure
        """
        if not identity.has_valid_token():
            raise DriveAuthError(
                "Tu sesión de Google expiró o no tiene permisos de Sheets. Inicia sesión nuevamente."
            )

        title = spreadsheet_title(self._app_name, now)
        purchases = purchase_rows(state)
        settings = settings_rows(state)

        try:
            client = self._client_factory(identity.access_token)
            spreadsheet = client.create(title)

            ws = spreadsheet.sheet1
            ws.update_title(PURCHASES_SHEET)
            ws.resize(rows=len(purchases), cols=len(PURCHASE_HEADERS))
            ws.update(range_name="A1", values=purchases, value_input_option="USER_ENTERED")

            ws = spreadsheet.add_worksheet(
                title=SETTINGS_SHEET,
                rows=len(settings),
                cols=len(SETTINGS_HEADERS),
            )
            ws.update(range_name="A1", values=settings, value_input_option="USER_ENTERED")
        except gspread.exceptions.APIError as e:
            status = getattr(e.response, "status_code", None)
            if status in (401, 403):
                raise DriveAuthError(
                    f"Google Sheets rechazó el acceso ({status}). Inicia sesión nuevamente."
                ) from e
            raise SheetsBackupError(f"Error al crear la hoja de backup: {e}") from e
        except gspread.exceptions.GSpreadException as e:
            raise SheetsBackupError(f"Error al crear la hoja de backup: {e}") from e

        self._logger.info(
            "sheets_backup_created",
            title=title,
            spreadsheet_id=spreadsheet.id,
            purchases=len(purchases) - 1,
        )
        return spreadsheet.url
