"""
CSV export of purchases.

One row per purchase, newest first, Spanish headers. The file starts with
a UTF-8 BOM so spreadsheet programs pick the right encoding.
"""

import csv
import io
from datetime import datetime
from typing import Optional

from ledesc.models.benefit import ExportFile, Purchase

CSV_HEADERS = [
    "ID",
    "Monto Original",
    "Fecha",
    "Comercio",
    "Ubicación Compra",
    "Descripción",
    "Descuento Aplicado",
    "Monto Final",
    "URL Recibo",
]

CSV_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
CSV_MIME_TYPE = "text/csv;charset=utf-8"


def csv_filename(now: Optional[datetime] = None) -> str:
    return f"ledesc_transacciones_{(now or datetime.now()):%Y%m%d_%H%M%S}.csv"


def purchases_to_csv(purchases: list[Purchase]) -> str:
    """
    Render purchases as CSV text (without BOM).

    Amounts are written as plain numbers; every text field is quoted,
    with inner quotes doubled.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for p in purchases:
        writer.writerow([
            p.id,
            p.amount,
            p.date.strftime(CSV_DATE_FORMAT),
            p.merchant_name or "",
            p.merchant_location or "",
            p.description or "",
            p.discount_applied,
            p.final_amount,
            p.receipt_image_url or "",
        ])
    return buffer.getvalue()


def export_csv(purchases: list[Purchase], now: Optional[datetime] = None) -> Optional[ExportFile]:
    """
    Build the CSV download.

    Returns None when there is nothing to export.
    """
    if not purchases:
        return None
    content = "\ufeff" + purchases_to_csv(purchases)
    return ExportFile(
        filename=csv_filename(now),
        content=content.encode("utf-8"),
        mime_type=CSV_MIME_TYPE,
    )
