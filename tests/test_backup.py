"""
Tests for exports, imports and cloud backups.

Drive and Sheets are never contacted: the HTTP session and the gspread
client are fakes.
"""

import csv
import io
import json
import os
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from openpyxl import Workbook

from ledesc.models.benefit import AppState, BenefitSettings, Identity, Merchant
from ledesc.services.backup import (
    DriveAuthError,
    DriveBackupService,
    DriveFileNotFoundError,
    SheetsBackupService,
    WorkbookFormatError,
    backup_file_name,
    export_csv,
    export_workbook,
    import_workbook,
    purchases_to_csv,
)
from ledesc.services.backup.workbook import PURCHASE_HEADERS, MERCHANT_HEADERS
from conftest import FakeDriveSession, make_purchase

NOW = datetime(2025, 3, 15, 10, 30, 0)


def workbook_bytes(sheets: dict[str, list[list]]) -> bytes:
    wb = Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title)
        for row in rows:
            ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def buenos_aires_tz(monkeypatch):
    """Run the test with the process clock at UTC-3."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    previous = os.environ.get("TZ")
    monkeypatch.setenv("TZ", "America/Argentina/Buenos_Aires")
    time.tzset()
    yield
    if previous is None:
        monkeypatch.delenv("TZ")
    else:
        monkeypatch.setenv("TZ", previous)
    time.tzset()


class TestCsvExport:
    """Tests for the CSV download."""

    def test_empty_export_returns_none(self):
        assert export_csv([], NOW) is None

    def test_csv_has_bom_and_quotes_text(self):
        """Test BOM, header row and quote doubling."""
        purchase = make_purchase(merchant_name='Bar "El Gato"')
        export = export_csv([purchase], NOW)

        text = export.content.decode("utf-8")
        assert text.startswith("\ufeff")
        assert export.filename == "ledesc_transacciones_20250315_103000.csv"
        assert '"Bar ""El Gato"""' in text

        rows = list(csv.reader(io.StringIO(text.lstrip("\ufeff"))))
        assert rows[0][0] == "ID"
        assert rows[0][4] == "Ubicación Compra"
        assert rows[1][2] == "2025-03-10 13:30:00"

    def test_amounts_are_unquoted(self):
        line = purchases_to_csv([make_purchase(amount="1000", final_amount="300")]).splitlines()[1]
        assert ",1000," in line


class TestWorkbook:
    """Tests for the Excel backup and restore."""

    def test_round_trip(self):
        """Test that an exported workbook restores the same records."""
        purchases = [
            make_purchase("p1", amount="50000", final_amount="15000"),
            make_purchase("p2", amount="1234.56", final_amount="370.37", merchant_location=None),
        ]
        merchants = [Merchant(id="m1", name="Café Tortoni", location="Av. de Mayo 825")]

        export = export_workbook(purchases, merchants, NOW)
        report = import_workbook(export.content, NOW)

        assert export.filename == "LEDESC_Backup_20250315_103000.xlsx"
        assert [p.id for p in report.purchases] == ["p1", "p2"]
        assert report.purchases[1].amount == Decimal("1234.56")
        assert report.purchases[1].merchant_location is None
        assert report.purchases[0].date == purchases[0].date
        assert report.merchants[0].location == "Av. de Mayo 825"
        assert report.issues == []

    def test_missing_sheet_is_rejected(self):
        data = workbook_bytes({"Compras": [PURCHASE_HEADERS]})
        with pytest.raises(WorkbookFormatError, match="Comercios"):
            import_workbook(data, NOW)

    def test_not_a_workbook(self):
        with pytest.raises(WorkbookFormatError):
            import_workbook(b"definitely not a zip file", NOW)

    def test_defaults_are_reported(self):
        """Test bad numbers, bad dates and missing ids become warnings."""
        data = workbook_bytes({
            "Compras": [
                PURCHASE_HEADERS,
                ["", "mucho", "ayer", "Bar", "", "", 0, 0, ""],
                [None] * 9,
                ["p3", 100, "15/03/2025 12:00", "Bar", "", "", 70, 30, ""],
            ],
            "Comercios": [MERCHANT_HEADERS, ["m1", "", ""]],
        })
        report = import_workbook(data, NOW)

        first, second = report.purchases
        assert first.id.startswith("xl_p_")
        assert first.amount == Decimal("0")
        assert first.date == NOW
        assert second.date == datetime(2025, 3, 15, 12, 0)

        fields = {(issue.row, issue.field, issue.severity) for issue in report.issues}
        assert (2, "id", "info") in fields
        assert (2, "amount", "warning") in fields
        assert (2, "date", "warning") in fields
        assert any(issue.sheet == "Comercios" and issue.field == "name" for issue in report.issues)

    def test_web_app_headers_and_excel_serial_dates(self):
        """Test camelCase headers and numeric date cells."""
        data = workbook_bytes({
            "Compras": [
                ["id", "amount", "date", "merchantName", "finalAmount ($)"],
                ["p1", 200, 45731.5, "Bar", 60],
            ],
            "Comercios": [["id", "name", "location"]],
        })
        purchase = import_workbook(data, NOW).purchases[0]
        assert purchase.date == datetime(2025, 3, 15, 12, 0)
        assert purchase.final_amount == Decimal("60")

    def test_settings_sheet_round_trip(self):
        """Test that the benefit settings travel in the workbook."""
        settings = BenefitSettings(
            monthly_allowance=Decimal("90000"),
            discount_percentage=Decimal("65"),
            enable_end_of_month_reminder=True,
            last_end_of_month_reminder_shown_for_month="2025-02",
        )

        export = export_workbook([make_purchase()], [], NOW, settings=settings)
        report = import_workbook(export.content, NOW)

        assert report.settings.monthly_allowance == Decimal("90000")
        assert report.settings.discount_percentage == Decimal("65")
        assert report.settings.enable_end_of_month_reminder is True
        assert report.settings.last_end_of_month_reminder_shown_for_month == "2025-02"
        assert report.issues == []

    def test_settings_sheet_is_optional(self):
        report = import_workbook(export_workbook([make_purchase()], [], NOW).content, NOW)
        assert report.settings is None
        assert len(report.purchases) == 1

    def test_web_app_settings_row_fills_defaults(self):
        """Test a partial settings row merges over the defaults."""
        data = workbook_bytes({
            "Compras": [PURCHASE_HEADERS],
            "Comercios": [MERCHANT_HEADERS],
            "Configuracion": [["monthlyAllowance", "autoBackupToDrive"], [70000, True]],
        })
        settings = import_workbook(data, NOW).settings
        assert settings.monthly_allowance == Decimal("70000")
        assert settings.auto_backup_to_drive is True
        assert settings.discount_percentage == Decimal("70")

    def test_invalid_settings_row_is_reported(self):
        data = workbook_bytes({
            "Compras": [PURCHASE_HEADERS],
            "Comercios": [MERCHANT_HEADERS],
            "Configuracion": [["monthlyAllowance", "discountPercentage"], [-5, 250]],
        })
        report = import_workbook(data, NOW)
        assert report.settings is None
        assert [(i.sheet, i.field, i.severity) for i in report.issues] == [
            ("Configuracion", "settings", "warning")
        ]

    def test_aware_dates_keep_their_wall_time(self, buenos_aires_tz):
        """Test that an aware date is written as shown, not shifted to the local zone."""
        purchase = make_purchase(date=datetime(2026, 10, 31, 22, 0, tzinfo=timezone.utc))
        report = import_workbook(export_workbook([purchase], [], NOW).content, NOW)
        assert report.purchases[0].date == datetime(2026, 10, 31, 22, 0)


class TestExportsAgree:
    """The CSV download and the workbook backup describe the same purchases."""

    def csv_rows(self, purchases):
        text = export_csv(purchases, NOW).content.decode("utf-8").lstrip("\ufeff")
        rows = list(csv.DictReader(io.StringIO(text)))
        return {
            row["ID"]: (
                datetime.strptime(row["Fecha"], "%Y-%m-%d %H:%M:%S"),
                Decimal(row["Monto Final"]),
            )
            for row in rows
        }

    def workbook_rows(self, purchases):
        report = import_workbook(export_workbook(purchases, [], NOW).content, NOW)
        return {p.id: (p.date, p.final_amount) for p in report.purchases}

    def test_same_dates_and_final_amounts(self, buenos_aires_tz):
        """Test naive and UTC-aware dates, including one near a month boundary."""
        purchases = [
            make_purchase("p1", amount="1234.56", final_amount="370.37"),
            make_purchase(
                "p2",
                amount="20000",
                final_amount="6000",
                date=datetime(2026, 10, 31, 22, 0, tzinfo=timezone.utc),
            ),
            make_purchase(
                "p3",
                amount="999.99",
                final_amount="300",
                date=datetime(2026, 11, 1, 1, 0, tzinfo=timezone.utc),
            ),
        ]

        from_csv = self.csv_rows(purchases)
        from_workbook = self.workbook_rows(purchases)

        assert from_csv == from_workbook
        assert from_workbook["p3"][0] == datetime(2026, 11, 1, 1, 0)


IDENTITY = Identity(uid="u1", email="ana@example.com", access_token="tok")


class TestDriveBackup:
    """Tests for the Google Drive JSON backup."""

    def service(self, session):
        return DriveBackupService(session_factory=lambda token: session, timeout=1)

    def test_backup_file_name(self):
        assert backup_file_name("ana.p@example.com", "ledesc_backup") == "ledesc_backup_ana_p_example_com.json"

    def test_no_token_fails_before_any_request(self):
        session = FakeDriveSession()
        no_token = Identity(uid="u1", email="ana@example.com")
        expired = IDENTITY.model_copy(update={"token_expires_at": datetime.now() - timedelta(hours=1)})

        for identity in (no_token, expired):
            with pytest.raises(DriveAuthError):
                self.service(session).backup(identity, AppState())
        assert session.requests == []

    def test_first_backup_creates_folder_and_file(self):
        session = FakeDriveSession()
        state = AppState(purchases=[make_purchase()], settings=BenefitSettings())

        file_id = self.service(session).backup(IDENTITY, state, NOW)

        assert "LEDESC_App_Backups" in session.folders
        assert session.files["ledesc_backup_ana_example_com.json"] == file_id
        payload = json.loads(session.uploads[file_id])
        assert payload["purchases"][0]["merchantName"] == "Café Tortoni"
        assert payload["metadata"]["identity"] == "ana@example.com"

    def test_second_backup_updates_same_file(self):
        session = FakeDriveSession()
        service = self.service(session)
        first = service.backup(IDENTITY, AppState(), NOW)
        second = service.backup(IDENTITY, AppState(purchases=[make_purchase()]), NOW)

        assert first == second
        assert len(session.files) == 1
        assert [m for m, _, _ in session.requests].count("POST") == 2

    def test_restore_round_trip(self):
        session = FakeDriveSession()
        service = self.service(session)
        service.backup(IDENTITY, AppState(purchases=[make_purchase()]), NOW)

        result = service.restore(IDENTITY)

        assert json.loads(result.purchases_data)[0]["id"] == "p1"
        assert json.loads(result.merchants_data) == []
        assert json.loads(result.settings_data)["monthlyAllowance"] == 68500.0

    def test_restore_without_backup(self):
        with pytest.raises(DriveFileNotFoundError):
            self.service(FakeDriveSession()).restore(IDENTITY)

    def test_refused_token(self):
        with pytest.raises(DriveAuthError):
            self.service(FakeDriveSession(status_code=401)).backup(IDENTITY, AppState())


class TestSheetsBackup:
    """Tests for the Google Sheets backup."""

    def test_creates_spreadsheet(self):
        client = MagicMock()
        spreadsheet = client.create.return_value
        spreadsheet.url = "https://docs.google.com/spreadsheets/d/abc"
        service = SheetsBackupService(client_factory=lambda token: client, app_name="LEDESC")

        url = service.backup(IDENTITY, AppState(purchases=[make_purchase()]), NOW)

        assert url == "https://docs.google.com/spreadsheets/d/abc"
        client.create.assert_called_once_with("LEDESC Backup - 2025-03-15_10-30-00")
        spreadsheet.sheet1.update_title.assert_called_once_with("Compras")
        values = spreadsheet.sheet1.update.call_args.kwargs["values"]
        assert values[0][1] == "Monto Original ($)"
        assert values[1][1] == 50000.0
        spreadsheet.add_worksheet.assert_called_once()

    def test_requires_token(self):
        service = SheetsBackupService(client_factory=MagicMock(), app_name="LEDESC")
        with pytest.raises(DriveAuthError):
            service.backup(Identity(uid="u", email="a@b.co"), AppState(), NOW)
