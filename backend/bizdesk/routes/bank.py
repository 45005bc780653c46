# Overview: Flask API routes for bank; the current user's deposits, withdrawals and balance.

from flask import Blueprint, request, g, jsonify

from ..services import bank_service
from ..services.bank_service import BankError
from ..validation import ValidationError, error_response, parse_date_arg
from ..decorators import require_auth


bank_bp = Blueprint("bank", __name__, url_prefix="/api/bank")


@bank_bp.get("")
@require_auth
def list_transactions_route():
    """Query params: type, start_date, end_date, search (label)."""
    try:
        transactions = bank_service.list_transactions(
            g.current_user.id,
            tx_type=request.args.get("type") or None,
            start=parse_date_arg(request.args.get("start_date"), "start_date"),
            end=parse_date_arg(request.args.get("end_date"), "end_date", end=True),
            search=request.args.get("search"),
        )
    except (BankError, ValidationError) as e:
        return error_response(e)
    return jsonify({
        "transactions": [t.to_dict() for t in transactions],
        "balance": bank_service.get_balance_cents(g.current_user.id),
    }), 200


@bank_bp.post("")
@require_auth
def create_transaction_route():
    """Body: {type: deposit|withdraw, amount_cents, label}"""
    data = request.get_json(silent=True) or {}
    try:
        transaction = bank_service.record_transaction(
            g.current_user.id,
            data.get("type"),
            data.get("amount_cents"),
            data.get("label"),
        )
    except (BankError, ValidationError) as e:
        return error_response(e)
    return jsonify({
        "transaction": transaction.to_dict(),
        "balance": bank_service.get_balance_cents(g.current_user.id),
    }), 201
