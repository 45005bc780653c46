"""
Export tests: the sales workbook and the PDF documents.

Workbooks are read back with openpyxl; PDFs are only checked for their
signature and headers.
"""

from datetime import datetime
from io import BytesIO

import pytest
from openpyxl import load_workbook

from bizdesk.services.export_service import ExportError, SALES_COLUMNS, resolve_period


def _rows(resp):
    wb = load_workbook(BytesIO(resp.data))
    return [list(row) for row in wb.active.iter_rows(values_only=True)]


# =============================================================================
# PERIODS
# =============================================================================


class TestResolvePeriod:

    NOW = datetime(2024, 5, 15, 13, 45)  # a Wednesday

    def test_daily(self):
        start, end = resolve_period("daily", now=self.NOW)
        assert start == datetime(2024, 5, 15)
        assert end.date() == self.NOW.date()
        assert end.hour == 23

    def test_weekly_runs_sunday_to_saturday(self):
        start, end = resolve_period("weekly", now=self.NOW)
        assert start == datetime(2024, 5, 12)
        assert end.date() == datetime(2024, 5, 18).date()

    def test_weekly_on_sunday(self):
        start, _ = resolve_period("weekly", now=datetime(2024, 5, 19, 8, 0))
        assert start == datetime(2024, 5, 19)

    def test_monthly(self):
        start, end = resolve_period("monthly", now=datetime(2024, 2, 10))
        assert start == datetime(2024, 2, 1)
        assert end.date() == datetime(2024, 2, 29).date()

    def test_custom(self):
        start, end = resolve_period("custom", "2024-01-01", "2024-03-31", now=self.NOW)
        assert start == datetime(2024, 1, 1)
        assert end.date() == datetime(2024, 3, 31).date()

    def test_custom_whole_leap_year(self):
        start, end = resolve_period("custom", "2024-01-01", "2024-12-31", now=self.NOW)
        assert start == datetime(2024, 1, 1)
        assert end.date() == datetime(2024, 12, 31).date()

    @pytest.mark.parametrize(
        "period,start_date,end_date",
        [
            ("custom", None, "2024-03-31"),
            ("custom", "2024-01-01", None),
            ("custom", "2023-01-01", "2024-03-31"),
            ("custom", "2024-04-01", "2024-03-01"),
            ("custom", "first", "last"),
            ("yearly", None, None),
            (None, None, None),
        ],
    )
    def test_invalid(self, period, start_date, end_date):
        with pytest.raises(ExportError):
            resolve_period(period, start_date, end_date, now=self.NOW)


# =============================================================================
# SALES WORKBOOK
# =============================================================================


class TestSalesExport:

    def test_workbook_layout(self, client, admin_headers, product, second_product, client_record, make_sale):
        make_sale(
            admin_headers, client_record.id,
            [{"product_id": product.id, "quantity": 2}, {"product_id": second_product.id, "quantity": 1}],
            initial_payment={"amount_cents": 1000, "method": "MobileMoney"},
        )
        make_sale(admin_headers, client_record.id, [{"product_id": product.id, "quantity": 1}])

        resp = client.get("/api/exports/sales-export?period=daily", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.headers["Content-Type"].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
        assert "sales_daily.xlsx" in resp.headers["Content-Disposition"]

        rows = _rows(resp)
        assert rows[0] == [title for title, _ in SALES_COLUMNS]

        # Newest sale first: one line, then a blank separator row
        newest = rows[1]
        assert newest[3] == "Test Widget"
        assert newest[7] == "Pending"
        assert newest[8] == 15.0
        assert all(value is None for value in rows[2])

        # Older sale: sale-level columns only on its first line
        first_line, second_line = rows[3], rows[4]
        assert first_line[4] == 2
        assert first_line[6] == 30.0
        assert first_line[7] == "Partially paid"
        assert first_line[8] == 38.0
        assert first_line[9] == 10.0
        assert first_line[10] == 28.0
        assert first_line[12] == "MobileMoney"
        assert first_line[13] == "Admin"
        assert second_line[0] is None
        assert second_line[3] == "Test Gadget"
        assert second_line[8] is None
        assert second_line[13] == "Admin"

    def test_status_filter_in_filename(self, client, admin_headers, product, client_record, make_sale):
        make_sale(admin_headers, client_record.id, [{"product_id": product.id, "quantity": 1}])

        resp = client.get("/api/exports/sales-export?period=monthly&status=completed", headers=admin_headers)
        assert resp.status_code == 200
        assert "sales_monthly_completed.xlsx" in resp.headers["Content-Disposition"]
        assert len(_rows(resp)) == 1

    def test_custom_without_dates(self, client, admin_headers):
        resp = client.get("/api/exports/sales-export?period=custom", headers=admin_headers)
        assert resp.status_code == 400

    def test_custom_whole_calendar_year(self, client, admin_headers):
        resp = client.get(
            "/api/exports/sales-export?period=custom&start_date=2024-01-01&end_date=2024-12-31",
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert "sales_custom.xlsx" in resp.headers["Content-Disposition"]

    def test_custom_over_a_year(self, client, admin_headers):
        resp = client.get(
            "/api/exports/sales-export?period=custom&start_date=2022-01-01&end_date=2024-01-01",
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.json["message"] == "The period cannot exceed one year"

    def test_invalid_period(self, client, admin_headers):
        resp = client.get("/api/exports/sales-export?period=hourly", headers=admin_headers)
        assert resp.status_code == 400

    def test_invalid_status(self, client, admin_headers):
        resp = client.get("/api/exports/sales-export?period=daily&status=lost", headers=admin_headers)
        assert resp.status_code == 400

    def test_requires_admin(self, client, user_headers):
        resp = client.get("/api/exports/sales-export?period=daily", headers=user_headers)
        assert resp.status_code == 403


# =============================================================================
# PDF DOCUMENTS
# =============================================================================


class TestPdfExports:

    def test_clients_pdf(self, client, admin_headers, client_record):
        resp = client.get("/api/exports/clients-pdf", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.headers["Content-Type"] == "application/pdf"
        assert resp.data.startswith(b"%PDF")
        assert "clients_" in resp.headers["Content-Disposition"]

    def test_clients_pdf_requires_admin(self, client, user_headers):
        assert client.get("/api/exports/clients-pdf", headers=user_headers).status_code == 403

    def test_invoice(self, client, user_headers, product, client_record, make_sale):
        sale = make_sale(
            user_headers, client_record.id, [{"product_id": product.id, "quantity": 1}],
            initial_payment={"amount_cents": 500, "method": "cash"},
        ).json

        resp = client.get(f"/api/exports/sales/{sale['id']}/invoice", headers=user_headers)
        assert resp.status_code == 200
        assert resp.data.startswith(b"%PDF")
        assert f"invoice_{sale['id']}.pdf" in resp.headers["Content-Disposition"]

    def test_invoice_missing_sale(self, client, user_headers):
        resp = client.get("/api/exports/sales/999999/invoice", headers=user_headers)
        assert resp.status_code == 404
