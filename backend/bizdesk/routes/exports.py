# Overview: Flask API routes for exports; streams the sales workbook and PDF documents.

from flask import Blueprint, request, send_file, jsonify, current_app

from ..services import export_service
from ..services.export_service import ExportError
from ..services.sales_service import SaleError
from ..validation import error_response
from ..decorators import require_auth, require_admin


XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

exports_bp = Blueprint("exports", __name__, url_prefix="/api/exports")


@exports_bp.get("/sales-export")
@require_auth
@require_admin
def sales_export_route():
    """Query params: period=daily|weekly|monthly|custom, start_date, end_date, status."""
    try:
        buffer, filename = export_service.sales_workbook(
            request.args.get("period"),
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
            status=request.args.get("status"),
        )
    except ExportError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Sales export failed")
        return jsonify({"message": "Error generating the report"}), 500
    return send_file(buffer, mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=filename)


@exports_bp.get("/clients-pdf")
@require_auth
@require_admin
def clients_pdf_route():
    try:
        buffer, filename = export_service.clients_pdf()
    except Exception:
        current_app.logger.exception("Client PDF export failed")
        return jsonify({"message": "Error generating the PDF"}), 500
    return send_file(buffer, mimetype="application/pdf", as_attachment=True, download_name=filename)


@exports_bp.get("/sales/<int:sale_id>/invoice")
@require_auth
def invoice_route(sale_id: int):
    try:
        buffer, filename = export_service.invoice_pdf(sale_id)
    except SaleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Invoice generation failed")
        return jsonify({"message": "Error generating the invoice"}), 500
    return send_file(buffer, mimetype="application/pdf", as_attachment=True, download_name=filename)
