# Overview: Flask API routes for expenses; parses input and returns JSON responses.

from flask import Blueprint, request, g, jsonify, current_app

from ..models import Expense
from ..models.finance import EXPENSE_CATEGORIES, EXPENSE_PAYMENT_METHODS
from ..services import expense_service
from ..services.expense_service import ExpenseError
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    error_response,
    parse_date_arg,
    require_amount_cents,
    require_choice,
    validate_payload,
)
from ..decorators import require_auth, require_admin


EXPENSE_POLICY = ModelValidationPolicy(
    writable_fields={"description", "amount_cents", "category", "date", "payment_method"},
    required_on_create={"description", "amount_cents", "category", "date"},
)

expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


def enforce_rules_expense(patch: dict) -> None:
    if "amount_cents" in patch:
        patch["amount_cents"] = require_amount_cents(patch["amount_cents"])
    if "category" in patch:
        require_choice(patch["category"], EXPENSE_CATEGORIES, "category")
    if patch.get("payment_method") is not None:
        require_choice(patch["payment_method"], EXPENSE_PAYMENT_METHODS, "payment method")


@expenses_bp.get("")
@require_auth
@require_admin
def list_expenses_route():
    """Query params: start_date, end_date, category, search (description or payment method)."""
    try:
        expenses = expense_service.list_expenses(
            start=parse_date_arg(request.args.get("start_date"), "start_date"),
            end=parse_date_arg(request.args.get("end_date"), "end_date", end=True),
            category=request.args.get("category") or None,
            search=request.args.get("search"),
        )
    except ValidationError as e:
        return error_response(e)
    return jsonify([e.to_dict(include_audit=True) for e in expenses]), 200


@expenses_bp.get("/date-range")
@require_auth
def expenses_in_range_route():
    """Both start_date and end_date are required."""
    if not request.args.get("start_date") or not request.args.get("end_date"):
        return jsonify({"message": "start_date and end_date are required"}), 400
    try:
        start = parse_date_arg(request.args.get("start_date"), "start_date")
        end = parse_date_arg(request.args.get("end_date"), "end_date", end=True)
    except ValidationError as e:
        return error_response(e)
    expenses = expense_service.expenses_in_range(start, end)
    return jsonify([e.to_dict() for e in expenses]), 200


@expenses_bp.post("")
@require_auth
@require_admin
def create_expense_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Expense, payload=payload, policy=EXPENSE_POLICY, partial=False)
        enforce_rules_expense(patch)
        expense = expense_service.create_expense(patch, user_id=g.current_user.id)
    except (ValidationError, ExpenseError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Expense creation failed")
        return jsonify({"message": "Server error"}), 500
    return jsonify(expense.to_dict(include_audit=True)), 201


@expenses_bp.put("/<int:expense_id>")
@require_auth
@require_admin
def update_expense_route(expense_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Expense, payload=payload, policy=EXPENSE_POLICY, partial=True)
        enforce_rules_expense(patch)
        expense = expense_service.update_expense(expense_id, patch, user_id=g.current_user.id)
    except (ValidationError, ExpenseError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Expense update failed")
        return jsonify({"message": "Server error"}), 500
    return jsonify(expense.to_dict(include_audit=True)), 200


@expenses_bp.delete("/<int:expense_id>")
@require_auth
@require_admin
def delete_expense_route(expense_id: int):
    try:
        expense_service.delete_expense(expense_id)
    except ExpenseError as e:
        return error_response(e)
    return jsonify({"message": "Expense removed"}), 200
