# Overview: Service-layer operations for exports; sales workbook (openpyxl) and client/invoice PDFs (reportlab).

"""
Export Service

Builds downloadable documents in memory and returns (BytesIO, filename).
Routes stream them with send_file.

Amounts are stored in cents and written in currency units.
"""

import logging
from datetime import timedelta
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import LongTable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..extensions import db
from ..models import Client, Sale
from ..models.sales import SALE_STATUSES
from ..validation import ServiceError
from bizdesk.time_utils import end_of_day, parse_iso_datetime, parse_range_end, start_of_day, utcnow
from .sales_service import get_sale


logger = logging.getLogger(__name__)


class ExportError(ServiceError):
    """Raised for invalid export parameters."""


EXPORT_PERIODS = ("daily", "weekly", "monthly", "custom")
EXPORT_STATUSES = SALE_STATUSES + ("all",)
MAX_CUSTOM_SPAN_DAYS = 365

SALES_COLUMNS = [
    ("Sale ID", 12),
    ("Date", 14),
    ("Client", 25),
    ("Product", 30),
    ("Quantity", 10),
    ("Unit Price", 15),
    ("Line Total", 15),
    ("Status", 18),
    ("Sale Total", 15),
    ("Paid", 15),
    ("Balance", 15),
    ("Last Payment", 16),
    ("Payment Method", 18),
    ("Seller", 25),
]
MONEY_COLUMNS = {"Unit Price", "Line Total", "Sale Total", "Paid", "Balance"}
CURRENCY_FORMAT = '#,##0.00'
HEADER_FILL = PatternFill(fill_type="solid", start_color="FF2C3E50", end_color="FF2C3E50")
HEADER_FONT = Font(bold=True, color="FFFFFFFF")
THIN = Side(style="thin")

STATUS_LABELS = {
    "pending": "Pending",
    "partially_paid": "Partially paid",
    "completed": "Paid",
    "cancelled": "Cancelled",
}


def _units(cents: int | None) -> float:
    return round((cents or 0) / 100, 2)


def resolve_period(period: str | None, start_date: str | None = None, end_date: str | None = None, *, now=None):
    """
    Map an export period to a [start, end] window.

    - daily: today
    - weekly: the current week, Sunday to Saturday
    - monthly: the current calendar month
    - custom: start_date..end_date, both required, at most 365 days apart
    """
    now = now or utcnow()
    if period not in EXPORT_PERIODS:
        raise ExportError(f"Invalid period. Must be one of: {', '.join(EXPORT_PERIODS)}")

    if period == "custom":
        if not start_date or not end_date:
            raise ExportError("start_date and end_date are required for a custom period")
        try:
            start = parse_iso_datetime(start_date)
            end = parse_range_end(end_date)
        except ValueError:
            raise ExportError("Invalid date format")
        if start > end:
            raise ExportError("start_date must be before end_date")
        # Calendar days, so a whole leap year (Jan 1 .. Dec 31) is accepted
        if (end.date() - start.date()).days > MAX_CUSTOM_SPAN_DAYS:
            raise ExportError("The period cannot exceed one year")
        return start, end

    if period == "daily":
        return start_of_day(now), end_of_day(now)

    if period == "weekly":
        # isoweekday: Monday=1 .. Sunday=7; weeks start on Sunday
        week_start = start_of_day(now - timedelta(days=now.isoweekday() % 7))
        return week_start, end_of_day(week_start + timedelta(days=6))

    month_start = start_of_day(now.replace(day=1))
    next_month = (month_start + timedelta(days=32)).replace(day=1)
    return month_start, end_of_day(next_month - timedelta(days=1))


def sales_workbook(period: str | None, *, start_date=None, end_date=None, status: str | None = None, now=None):
    """
    One row per sale line. Sale-level columns are filled on the first line
    of each sale only, and a blank row separates consecutive sales.
    """
    start, end = resolve_period(period, start_date, end_date, now=now)
    status = status or "all"
    if status not in EXPORT_STATUSES:
        raise ExportError(f"Invalid status. Must be one of: {', '.join(EXPORT_STATUSES)}")

    query = db.session.query(Sale).filter(Sale.sale_date >= start, Sale.sale_date <= end)
    if status != "all":
        query = query.filter(Sale.status == status)
    sales = query.order_by(Sale.sale_date.desc(), Sale.id.desc()).all()

    wb = Workbook()
    ws = wb.active
    ws.title = "Sales"
    ws.append([title for title, _ in SALES_COLUMNS])
    for index, (title, width) in enumerate(SALES_COLUMNS, start=1):
        ws.column_dimensions[ws.cell(row=1, column=index).column_letter].width = width

    for cell in ws[1]:
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")
        cell.border = Border(top=THIN, left=THIN, bottom=THIN, right=THIN)
    ws.freeze_panes = "A2"

    money_indexes = {i for i, (title, _) in enumerate(SALES_COLUMNS, start=1) if title in MONEY_COLUMNS}
    quantity_index = [title for title, _ in SALES_COLUMNS].index("Quantity") + 1

    for sale in sales:
        last_payment = sale.payments[-1] if sale.payments else None
        client_name = sale.client.name if sale.client else "N/A"
        seller = sale.user.name if sale.user else "N/A"
        for position, line in enumerate(sale.lines):
            first = position == 0
            ws.append([
                sale.id if first else None,
                sale.sale_date.strftime("%Y-%m-%d"),
                client_name,
                line.product_name,
                line.quantity,
                _units(line.price_at_sale_cents),
                _units(line.quantity * line.price_at_sale_cents),
                STATUS_LABELS.get(sale.status, sale.status) if first else None,
                _units(sale.total_amount_cents) if first else None,
                _units(sale.total_paid_cents) if first else None,
                _units(sale.total_amount_cents - sale.total_paid_cents) if first else None,
                last_payment.payment_date.strftime("%Y-%m-%d") if first and last_payment else None,
                last_payment.method if first and last_payment else None,
                seller,
            ])
            row = ws.max_row
            for column in money_indexes:
                cell = ws.cell(row=row, column=column)
                if cell.value is not None:
                    cell.number_format = CURRENCY_FORMAT
            ws.cell(row=row, column=quantity_index).alignment = Alignment(horizontal="center")
        ws.append([])

    buffer = BytesIO()
    wb.save(buffer)
    buffer.seek(0)

    filename = f"sales_{period}"
    if status != "all":
        filename += f"_{status}"
    filename += ".xlsx"
    logger.info("Exported %s sales to %s", len(sales), filename)
    return buffer, filename


def _table_style(*extra):
    return TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.darkblue),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 8),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 6),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
        *extra,
    ])


def clients_pdf(*, now=None):
    """A4 client list: name, phone, email, total spent, address; plus count and revenue totals."""
    now = now or utcnow()
    clients = db.session.query(Client).order_by(Client.name.asc()).all()

    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, title="Clients")
    styles = getSampleStyleSheet()
    elements = [
        Paragraph("Client list", styles['Title']),
        Paragraph(f"Generated on {now.strftime('%Y-%m-%d %H:%M')} UTC", styles['Normal']),
        Spacer(1, 12),
    ]

    data = [["Name", "Phone", "Email", "Total spent", "Address"]]
    for client in clients:
        data.append([
            client.name,
            client.phone or "",
            client.email,
            f"{_units(client.total_purchases_cents):,.2f}",
            Paragraph(client.address or "", styles['BodyText']),
        ])
    table = LongTable(data, colWidths=[95, 70, 130, 70, 150], repeatRows=1)
    table.setStyle(_table_style(('ALIGN', (3, 1), (3, -1), 'RIGHT')))
    elements.append(table)
    elements.append(Spacer(1, 12))

    revenue = sum(client.total_purchases_cents or 0 for client in clients)
    elements.append(Paragraph(f"Clients: {len(clients)}", styles['Normal']))
    elements.append(Paragraph(f"Total revenue: {_units(revenue):,.2f}", styles['Normal']))

    doc.build(elements)
    buffer.seek(0)
    return buffer, f"clients_{now.strftime('%Y%m%d')}.pdf"


def invoice_pdf(sale_id: int, *, now=None):
    """Invoice for one sale: lines, totals, payments and the remaining balance."""
    now = now or utcnow()
    sale = get_sale(sale_id)

    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, title=f"Invoice {sale.id}")
    styles = getSampleStyleSheet()
    elements = [
        Paragraph(f"Invoice #{sale.id}", styles['Title']),
        Paragraph(f"Date: {sale.sale_date.strftime('%Y-%m-%d')}", styles['Normal']),
        Paragraph(f"Client: {sale.client.name if sale.client else 'N/A'}", styles['Normal']),
        Paragraph(f"Status: {STATUS_LABELS.get(sale.status, sale.status)}", styles['Normal']),
        Spacer(1, 12),
    ]

    lines = [["Product", "Quantity", "Unit price", "Total"]]
    for line in sale.lines:
        lines.append([
            line.product_name,
            str(line.quantity),
            f"{_units(line.price_at_sale_cents):,.2f}",
            f"{_units(line.quantity * line.price_at_sale_cents):,.2f}",
        ])
    lines.append(["Total", "", "", f"{_units(sale.total_amount_cents):,.2f}"])
    table = Table(lines, colWidths=[220, 70, 90, 90], repeatRows=1)
    table.setStyle(_table_style(
        ('ALIGN', (1, 1), (-1, -1), 'RIGHT'),
        ('BACKGROUND', (0, -1), (-1, -1), colors.lightgrey),
        ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
    ))
    elements.append(table)
    elements.append(Spacer(1, 12))

    if sale.payments:
        elements.append(Paragraph("Payments", styles['Heading2']))
        payments = [["Date", "Method", "Amount"]]
        for payment in sale.payments:
            payments.append([
                payment.payment_date.strftime("%Y-%m-%d"),
                payment.method,
                f"{_units(payment.amount_cents):,.2f}",
            ])
        payment_table = Table(payments, colWidths=[120, 120, 90], repeatRows=1)
        payment_table.setStyle(_table_style(('ALIGN', (2, 1), (2, -1), 'RIGHT')))
        elements.append(payment_table)
        elements.append(Spacer(1, 12))

    elements.append(Paragraph(f"Paid: {_units(sale.total_paid_cents):,.2f}", styles['Normal']))
    elements.append(Paragraph(f"Balance due: {_units(sale.balance_cents):,.2f}", styles['Heading3']))

    doc.build(elements)
    buffer.seek(0)
    return buffer, f"invoice_{sale.id}.pdf"
