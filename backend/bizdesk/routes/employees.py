# Overview: Flask API routes for employees; staff records, pay slips and salary advances (admin only).

from flask import Blueprint, request, jsonify, current_app

from ..models import Employee
from ..services import payroll_service
from ..services.payroll_service import PayrollError
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    ConflictError,
    coerce_datetime,
    error_response,
    validate_payload,
)
from ..decorators import require_auth, require_admin


EMPLOYEE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone", "position", "department", "salary_cents", "hire_date"},
    required_on_create={"name", "email", "position", "salary_cents"},
)

PAYROLL_ERRORS = (PayrollError, ValidationError, ConflictError)

employees_bp = Blueprint("employees", __name__, url_prefix="/api/employees")


def _check_salary(patch: dict) -> None:
    if patch.get("salary_cents") is not None and patch["salary_cents"] < 0:
        raise ValidationError("salary_cents must be >= 0")


def _advance_date(data: dict):
    if not data.get("date"):
        return None
    return coerce_datetime(data["date"], "date")


@employees_bp.get("")
@require_auth
@require_admin
def list_employees_route():
    return jsonify([e.to_dict() for e in payroll_service.list_employees()]), 200


@employees_bp.post("")
@require_auth
@require_admin
def create_employee_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Employee, payload=payload, policy=EMPLOYEE_POLICY, partial=False)
        _check_salary(patch)
        employee = payroll_service.create_employee(patch)
    except PAYROLL_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Employee creation failed")
        return jsonify({"message": "Server error"}), 500
    return jsonify(employee.to_dict()), 201


@employees_bp.get("/<int:employee_id>")
@require_auth
@require_admin
def get_employee_route(employee_id: int):
    try:
        employee = payroll_service.get_employee(employee_id)
    except PayrollError as e:
        return error_response(e)
    return jsonify(employee.to_dict(include_payroll=True)), 200


@employees_bp.put("/<int:employee_id>")
@require_auth
@require_admin
def update_employee_route(employee_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Employee, payload=payload, policy=EMPLOYEE_POLICY, partial=True)
        _check_salary(patch)
        employee = payroll_service.update_employee(employee_id, patch)
    except PAYROLL_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Employee update failed")
        return jsonify({"message": "Server error"}), 500
    return jsonify(employee.to_dict()), 200


@employees_bp.delete("/<int:employee_id>")
@require_auth
@require_admin
def delete_employee_route(employee_id: int):
    try:
        payroll_service.delete_employee(employee_id)
    except PayrollError as e:
        return error_response(e)
    return jsonify({"message": "Employee removed"}), 200


@employees_bp.get("/<int:employee_id>/financial-summary")
@require_auth
@require_admin
def financial_summary_route(employee_id: int):
    try:
        return jsonify(payroll_service.financial_summary(employee_id)), 200
    except PayrollError as e:
        return error_response(e)


# =============================================================================
# PAY SLIPS
# =============================================================================

@employees_bp.get("/<int:employee_id>/payroll")
@require_auth
@require_admin
def list_payslips_route(employee_id: int):
    try:
        slips = payroll_service.list_payslips(employee_id)
    except PayrollError as e:
        return error_response(e)
    return jsonify([slip.to_dict() for slip in slips]), 200


@employees_bp.post("/<int:employee_id>/payroll")
@require_auth
@require_admin
def create_payslip_route(employee_id: int):
    """Body: {month, year, deductions_cents?, bonuses_cents?, notes?, status?}"""
    try:
        slip = payroll_service.create_payslip(employee_id, request.get_json(silent=True) or {})
    except PAYROLL_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Pay slip creation failed")
        return jsonify({"message": "Server error"}), 500
    return jsonify(slip.to_dict()), 201


@employees_bp.get("/<int:employee_id>/payroll/<int:payslip_id>")
@require_auth
@require_admin
def get_payslip_route(employee_id: int, payslip_id: int):
    try:
        slip = payroll_service.get_payslip(employee_id, payslip_id)
    except PayrollError as e:
        return error_response(e)
    return jsonify(slip.to_dict()), 200


@employees_bp.put("/<int:employee_id>/payroll/<int:payslip_id>")
@require_auth
@require_admin
def update_payslip_route(employee_id: int, payslip_id: int):
    try:
        slip = payroll_service.update_payslip(employee_id, payslip_id, request.get_json(silent=True) or {})
    except PAYROLL_ERRORS as e:
        return error_response(e)
    return jsonify(slip.to_dict()), 200


@employees_bp.delete("/<int:employee_id>/payroll/<int:payslip_id>")
@require_auth
@require_admin
def delete_payslip_route(employee_id: int, payslip_id: int):
    try:
        payroll_service.delete_payslip(employee_id, payslip_id)
    except PayrollError as e:
        return error_response(e)
    return jsonify({"message": "Pay slip removed"}), 200


# =============================================================================
# SALARY ADVANCES
# =============================================================================

@employees_bp.get("/<int:employee_id>/advances")
@require_auth
@require_admin
def list_advances_route(employee_id: int):
    try:
        advances = payroll_service.list_advances(employee_id)
    except PayrollError as e:
        return error_response(e)
    return jsonify([advance.to_dict() for advance in advances]), 200


@employees_bp.post("/<int:employee_id>/advances")
@require_auth
@require_admin
def create_advance_route(employee_id: int):
    """Body: {amount_cents, reason?, status?, date?}"""
    data = request.get_json(silent=True) or {}
    try:
        advance = payroll_service.create_advance(employee_id, data, when=_advance_date(data))
    except PAYROLL_ERRORS as e:
        return error_response(e)
    return jsonify(advance.to_dict()), 201


@employees_bp.put("/<int:employee_id>/advances/<int:advance_id>")
@require_auth
@require_admin
def update_advance_route(employee_id: int, advance_id: int):
    data = request.get_json(silent=True) or {}
    try:
        advance = payroll_service.update_advance(employee_id, advance_id, data, when=_advance_date(data))
    except PAYROLL_ERRORS as e:
        return error_response(e)
    return jsonify(advance.to_dict()), 200


@employees_bp.delete("/<int:employee_id>/advances/<int:advance_id>")
@require_auth
@require_admin
def delete_advance_route(employee_id: int, advance_id: int):
    try:
        payroll_service.delete_advance(employee_id, advance_id)
    except PayrollError as e:
        return error_response(e)
    return jsonify({"message": "Advance removed"}), 200
