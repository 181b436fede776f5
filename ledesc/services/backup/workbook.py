"""
Workbook (.xlsx) backup and restore.

Export writes two sheets, "Compras" and "Comercios", with styled headers,
plus a "Configuracion" sheet holding the benefit settings as one row
under camelCase headers. Import reads them back leniently: anything that
cannot be parsed is defaulted and reported as an ImportIssue instead of
aborting the restore. Only a missing record sheet (or a file that is not a
workbook) aborts; the settings sheet is optional.
"""

import io
import zipfile
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import ValidationError

from ledesc.config import get_settings
from ledesc.models.benefit import (
    BenefitSettings,
    ExportFile,
    ImportIssue,
    ImportReport,
    Merchant,
    Purchase,
)
from ledesc.notifications import get_logger
from ledesc.services.backup.errors import WorkbookFormatError

logger = get_logger("ledesc.backup.workbook")

PURCHASES_SHEET = "Compras"
MERCHANTS_SHEET = "Comercios"
SETTINGS_SHEET = "Configuracion"

PURCHASE_HEADERS = [
    "ID",
    "Monto Original",
    "Fecha",
    "Comercio",
    "Ubicación",
    "Descripción",
    "Descuento Aplicado",
    "Monto Final",
    "URL Recibo",
]
MERCHANT_HEADERS = ["ID", "Nombre", "Ubicación"]

XLSX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Header text (lowercased, without a trailing "($)") -> field name.
# Spanish headers come from our own exports, camelCase ones from the web app.
PURCHASE_COLUMNS = {
    "id": "id",
    "monto original": "amount",
    "amount": "amount",
    "fecha": "date",
    "date": "date",
    "comercio": "merchant_name",
    "merchantname": "merchant_name",
    "ubicación": "merchant_location",
    "ubicacion": "merchant_location",
    "ubicación compra": "merchant_location",
    "merchantlocation": "merchant_location",
    "descripción": "description",
    "descripcion": "description",
    "description": "description",
    "descuento aplicado": "discount_applied",
    "discountapplied": "discount_applied",
    "monto final": "final_amount",
    "finalamount": "final_amount",
    "url recibo": "receipt_image_url",
    "receiptimageurl": "receipt_image_url",
}
MERCHANT_COLUMNS = {
    "id": "id",
    "nombre": "name",
    "name": "name",
    "ubicación": "location",
    "ubicacion": "location",
    "location": "location",
}

TEXT_DATE_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
]

# Day 0 of the Excel 1900 date system, as used for serial numbers.
EXCEL_EPOCH = datetime(1899, 12, 30)


def workbook_filename(now: Optional[datetime] = None) -> str:
    return f"LEDESC_Backup_{(now or datetime.now()):%Y%m%d_%H%M%S}.xlsx"


# =============================================================================
# EXPORT
# =============================================================================

def _style_header(ws, row=1):
    """Apply header styling to worksheet row"""
    header_font = Font(bold=True, color="FFFFFF")
    fill = PatternFill("solid", fgColor="2E7D32")
    align = Alignment(horizontal="center", vertical="center")
    thin = Side(style="thin", color="A0A0A0")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)
    for cell in ws[row]:
        cell.font = header_font
        cell.fill = fill
        cell.alignment = align
        cell.border = border


def _autosize_columns(ws, min_width=10, max_width=45):
    for col in range(1, ws.max_column + 1):
        letter = get_column_letter(col)
        max_len = max((len(str(c.value)) for c in ws[letter] if c.value is not None), default=0)
        ws.column_dimensions[letter].width = max(min_width, min(max_width, max_len + 2))


def _naive(value: datetime) -> datetime:
    """Excel cells cannot hold timezones; keep the wall time as written."""
    return value.replace(tzinfo=None)


def build_workbook(
    purchases: list[Purchase],
    merchants: list[Merchant],
    settings: Optional[BenefitSettings] = None,
) -> Workbook:
    wb = Workbook()
    wb.remove(wb.active)

    ws = wb.create_sheet(PURCHASES_SHEET)
    ws.append(PURCHASE_HEADERS)
    _style_header(ws)
    ws.freeze_panes = "A2"
    for p in purchases:
        ws.append([
            p.id,
            p.amount,
            _naive(p.date),
            p.merchant_name,
            p.merchant_location or "",
            p.description or "",
            p.discount_applied,
            p.final_amount,
            p.receipt_image_url or "",
        ])
    for r in range(2, ws.max_row + 1):
        for c in (2, 7, 8):
            ws.cell(r, c).number_format = "0.00"
        ws.cell(r, 3).number_format = "yyyy-mm-dd hh:mm:ss"
    _autosize_columns(ws)

    ws = wb.create_sheet(MERCHANTS_SHEET)
    ws.append(MERCHANT_HEADERS)
    _style_header(ws)
    ws.freeze_panes = "A2"
    for m in merchants:
        ws.append([m.id, m.name, m.location or ""])
    _autosize_columns(ws)

    if settings is not None:
        values = settings.model_dump(mode="json", by_alias=True)
        ws = wb.create_sheet(SETTINGS_SHEET)
        ws.append(list(values))
        _style_header(ws)
        ws.append(list(values.values()))
        _autosize_columns(ws)

    return wb


def export_workbook(
    purchases: list[Purchase],
    merchants: list[Merchant],
    now: Optional[datetime] = None,
    settings: Optional[BenefitSettings] = None,
) -> ExportFile:
    buffer = io.BytesIO()
    build_workbook(purchases, merchants, settings).save(buffer)
    logger.info("workbook_exported", purchases=len(purchases), merchants=len(merchants))
    return ExportFile(
        filename=workbook_filename(now),
        content=buffer.getvalue(),
        mime_type=XLSX_MIME_TYPE,
    )


# =============================================================================
# IMPORT
# =============================================================================

def _header_key(value: Any) -> str:
    text = str(value or "").strip().lower()
    if text.endswith("($)"):
        text = text[:-3].strip()
    return text


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class _RowReader:
    """Reads one sheet row into field values, collecting issues as it goes."""

    def __init__(self, report: ImportReport, sheet: str, row: int, now: datetime):
        self.report = report
        self.sheet = sheet
        self.row = row
        self.now = now

    def issue(self, field: str, message: str, severity: str = "warning") -> None:
        self.report.issues.append(ImportIssue(
            sheet=self.sheet,
            row=self.row,
            field=field,
            message=message,
            severity=severity,
        ))

    def money(self, field: str, value: Any) -> Decimal:
        if isinstance(value, bool):
            value = None
        if isinstance(value, (int, float, Decimal)):
            number = Decimal(str(value))
        else:
            try:
                number = Decimal(str(value).strip().replace(",", "."))
            except (InvalidOperation, AttributeError):
                number = None
        if number is None or not number.is_finite() or number < 0:
            self.issue(field, f"Valor no numérico '{value}', se usó 0")
            return Decimal("0")
        return number

    def date(self, value: Any) -> datetime:
        if isinstance(value, datetime):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return EXCEL_EPOCH + timedelta(days=float(value))
        text = _text(value)
        if text:
            try:
                return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
            except ValueError:
                pass
            for fmt in TEXT_DATE_FORMATS:
                try:
                    return datetime.strptime(text, fmt)
                except ValueError:
                    continue
        self.issue("date", f"Fecha inválida '{value}', se usó la fecha actual")
        return self.now


def _sheet_rows(ws, columns: dict[str, str]):
    """Yield (excel_row_number, {field: value}) for every non-empty data row."""
    rows = ws.iter_rows(values_only=True)
    header = next(rows, None)
    if header is None:
        return
    fields = [columns.get(_header_key(h)) for h in header]
    for row_number, values in enumerate(rows, start=2):
        if all(v is None or (isinstance(v, str) and not v.strip()) for v in values):
            continue
        record: dict[str, Any] = {}
        for field, value in zip(fields, values):
            if field is not None:
                record[field] = value
        yield row_number, record


def _read_purchases(ws, report: ImportReport, now: datetime, stamp: int) -> None:
    for index, (row_number, record) in enumerate(_sheet_rows(ws, PURCHASE_COLUMNS)):
        reader = _RowReader(report, PURCHASES_SHEET, row_number, now)
        purchase_id = _text(record.get("id"))
        if purchase_id is None:
            purchase_id = f"xl_p_{stamp}_{index}"
            reader.issue("id", f"Sin ID, se asignó {purchase_id}", severity="info")
        try:
            purchase = Purchase(
                id=purchase_id,
                amount=reader.money("amount", record.get("amount")),
                date=reader.date(record.get("date")),
                merchant_name=_text(record.get("merchant_name")) or "",
                merchant_location=_text(record.get("merchant_location")),
                description=_text(record.get("description")),
                receipt_image_url=_text(record.get("receipt_image_url")),
                discount_applied=reader.money("discount_applied", record.get("discount_applied")),
                final_amount=reader.money("final_amount", record.get("final_amount")),
            )
        except ValidationError as e:
            reader.issue("row", f"Fila omitida: {e.errors()[0]['msg']}", severity="error")
            continue
        report.purchases.append(purchase)


def _read_merchants(ws, report: ImportReport, now: datetime, stamp: int) -> None:
    for index, (row_number, record) in enumerate(_sheet_rows(ws, MERCHANT_COLUMNS)):
        reader = _RowReader(report, MERCHANTS_SHEET, row_number, now)
        merchant_id = _text(record.get("id"))
        if merchant_id is None:
            merchant_id = f"xl_m_{stamp}_{index}"
            reader.issue("id", f"Sin ID, se asignó {merchant_id}", severity="info")
        name = _text(record.get("name"))
        if name is None:
            reader.issue("name", "Comercio sin nombre")
        report.merchants.append(Merchant(
            id=merchant_id,
            name=name or "",
            location=_text(record.get("location")),
        ))


def _read_settings(ws, report: ImportReport) -> None:
    """Header row of camelCase keys, one row of values; blanks keep defaults."""
    rows = ws.iter_rows(values_only=True)
    header = next(rows, None)
    values = next(rows, None)
    if header is None or values is None:
        return
    data = {
        str(key).strip(): value
        for key, value in zip(header, values)
        if key is not None and _text(value) is not None
    }
    try:
        report.settings = BenefitSettings.model_validate(data)
    except ValidationError as e:
        report.issues.append(ImportIssue(
            sheet=SETTINGS_SHEET,
            row=2,
            field="settings",
            message=f"Configuración inválida, se conserva la actual: {e.errors()[0]['msg']}",
            severity="warning",
        ))


def import_workbook(
    data: bytes,
    now: Optional[datetime] = None,
) -> ImportReport:
    """
    Parse a backup workbook.

    Raises:
        WorkbookFormatError: If the file is too large, is not a workbook,
            or lacks the "Compras" or "Comercios" sheet
    """
    max_bytes = get_settings().app.max_import_size_bytes
    if len(data) > max_bytes:
        raise WorkbookFormatError(
            f"El archivo supera el tamaño máximo de {max_bytes // (1024 * 1024)} MB"
        )

    try:
        wb = load_workbook(io.BytesIO(data), data_only=True, read_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise WorkbookFormatError(f"No se pudo abrir el archivo Excel: {e}") from e

    try:
        missing = [s for s in (PURCHASES_SHEET, MERCHANTS_SHEET) if s not in wb.sheetnames]
        if missing:
            raise WorkbookFormatError(
                f"Formato inválido: faltan las hojas {', '.join(repr(s) for s in missing)}"
            )

        now = now or datetime.now()
        stamp = int(now.timestamp() * 1000)
        report = ImportReport()
        _read_purchases(wb[PURCHASES_SHEET], report, now, stamp)
        _read_merchants(wb[MERCHANTS_SHEET], report, now, stamp)
        if SETTINGS_SHEET in wb.sheetnames:
            _read_settings(wb[SETTINGS_SHEET], report)
    finally:
        wb.close()

    logger.info(
        "workbook_imported",
        purchases=len(report.purchases),
        merchants=len(report.merchants),
        warnings=len(report.warnings),
    )
    return report
