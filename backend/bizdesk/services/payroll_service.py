# Overview: Service-layer operations for payroll; employees, pay slips and salary advances.

"""
Payroll Service

INVARIANTS:
- net_salary_cents = base_salary_cents + bonuses_cents - deductions_cents
- At most one pay slip per employee and (month, year)
- A salary advance may not exceed half of the employee's salary
- Deleting an employee removes their advances and pay slips
"""

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Employee, PaySlip, SalaryAdvance
from ..models.payroll import ADVANCE_STATUSES, PAYSLIP_STATUSES
from ..validation import ConflictError, ServiceError, coerce_int, require_amount_cents, require_choice
from bizdesk.time_utils import utcnow


logger = logging.getLogger(__name__)

MAX_ADVANCE_SHARE = 0.5


class PayrollError(ServiceError):
    """Raised for employee, pay slip and advance errors."""


# =============================================================================
# EMPLOYEES
# =============================================================================

def get_employee(employee_id: int) -> Employee:
    employee = db.session.get(Employee, employee_id)
    if not employee:
        raise PayrollError("Employee not found", status_code=404)
    return employee


def list_employees() -> list[Employee]:
    return db.session.query(Employee).order_by(Employee.name.asc()).all()


def _email_taken(email: str, *, exclude_id: int | None = None) -> bool:
    query = db.session.query(Employee.id).filter(func.lower(Employee.email) == email)
    if exclude_id is not None:
        query = query.filter(Employee.id != exclude_id)
    return query.first() is not None


def create_employee(patch: dict) -> Employee:
    patch = dict(patch)
    patch["email"] = patch["email"].lower()
    if _email_taken(patch["email"]):
        raise ConflictError("An employee with this email already exists")

    employee = Employee(**patch)
    db.session.add(employee)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("An employee with this email already exists")
    return employee


def update_employee(employee_id: int, patch: dict) -> Employee:
    employee = get_employee(employee_id)
    patch = dict(patch)
    if patch.get("email"):
        patch["email"] = patch["email"].lower()
        if _email_taken(patch["email"], exclude_id=employee.id):
            raise ConflictError("An employee with this email already exists")

    for key, value in patch.items():
        setattr(employee, key, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("An employee with this email already exists")
    return employee


def delete_employee(employee_id: int) -> None:
    employee = get_employee(employee_id)
    advances, payslips = len(employee.advances), len(employee.payslips)
    db.session.delete(employee)
    db.session.commit()
    logger.info("Employee %s deleted with %s advances and %s pay slips", employee_id, advances, payslips)


# =============================================================================
# PAY SLIPS
# =============================================================================

def _net(base: int, bonuses: int, deductions: int) -> int:
    return base + bonuses - deductions


def _period(payload: dict) -> tuple[int, int]:
    month = coerce_int(payload.get("month"), "month") if payload.get("month") is not None else None
    year = coerce_int(payload.get("year"), "year") if payload.get("year") is not None else None
    if month is None or year is None:
        raise PayrollError("month and year are required")
    if not 1 <= month <= 12:
        raise PayrollError("month must be between 1 and 12")
    if year < 1900:
        raise PayrollError("Invalid year")
    return month, year


def _optional_cents(payload: dict, key: str) -> int:
    if payload.get(key) is None:
        return 0
    return require_amount_cents(payload[key], key, allow_zero=True)


def get_payslip(employee_id: int, payslip_id: int) -> PaySlip:
    slip = db.session.query(PaySlip).filter_by(id=payslip_id, employee_id=employee_id).first()
    if not slip:
        raise PayrollError("Pay slip not found", status_code=404)
    return slip


def list_payslips(employee_id: int) -> list[PaySlip]:
    get_employee(employee_id)
    return (
        db.session.query(PaySlip)
        .filter_by(employee_id=employee_id)
        .order_by(PaySlip.year.desc(), PaySlip.month.desc())
        .all()
    )


def create_payslip(employee_id: int, payload: dict) -> PaySlip:
    """Create the pay slip for one month, snapshotting the employee's salary as the base."""
    employee = get_employee(employee_id)
    month, year = _period(payload)

    existing = db.session.query(PaySlip.id).filter_by(employee_id=employee.id, month=month, year=year).first()
    if existing:
        raise PayrollError("A pay slip already exists for this month and year")

    deductions = _optional_cents(payload, "deductions_cents")
    bonuses = _optional_cents(payload, "bonuses_cents")
    status = require_choice(payload.get("status") or "pending", PAYSLIP_STATUSES, "status")

    slip = PaySlip(
        employee_id=employee.id,
        month=month,
        year=year,
        base_salary_cents=employee.salary_cents,
        deductions_cents=deductions,
        bonuses_cents=bonuses,
        net_salary_cents=_net(employee.salary_cents, bonuses, deductions),
        notes=(payload.get("notes") or None),
        status=status,
        payment_date=utcnow() if status == "paid" else None,
    )
    db.session.add(slip)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise PayrollError("A pay slip already exists for this month and year")
    return slip


def update_payslip(employee_id: int, payslip_id: int, payload: dict) -> PaySlip:
    """
    Update deductions, bonuses, notes or status.

    The base is re-read from the employee's current salary and the net
    recomputed. Moving to paid stamps payment_date.
    """
    employee = get_employee(employee_id)
    slip = get_payslip(employee.id, payslip_id)

    if "deductions_cents" in payload:
        slip.deductions_cents = _optional_cents(payload, "deductions_cents")
    if "bonuses_cents" in payload:
        slip.bonuses_cents = _optional_cents(payload, "bonuses_cents")
    if "notes" in payload:
        slip.notes = payload.get("notes") or None
    if payload.get("status") is not None:
        status = require_choice(payload["status"], PAYSLIP_STATUSES, "status")
        if status == "paid" and slip.status != "paid":
            slip.payment_date = utcnow()
        elif status == "pending":
            slip.payment_date = None
        slip.status = status

    slip.base_salary_cents = employee.salary_cents
    slip.net_salary_cents = _net(slip.base_salary_cents, slip.bonuses_cents, slip.deductions_cents)
    db.session.commit()
    return slip


def delete_payslip(employee_id: int, payslip_id: int) -> None:
    slip = get_payslip(employee_id, payslip_id)
    db.session.delete(slip)
    db.session.commit()


# =============================================================================
# SALARY ADVANCES
# =============================================================================

def _check_advance_amount(employee: Employee, amount: int) -> None:
    ceiling = int(employee.salary_cents * MAX_ADVANCE_SHARE)
    if amount > ceiling:
        raise PayrollError(
            "Advance amount cannot exceed 50% of the salary",
            details={"max_amount_cents": ceiling},
        )


def get_advance(employee_id: int, advance_id: int) -> SalaryAdvance:
    advance = db.session.query(SalaryAdvance).filter_by(id=advance_id, employee_id=employee_id).first()
    if not advance:
        raise PayrollError("Advance not found", status_code=404)
    return advance


def list_advances(employee_id: int) -> list[SalaryAdvance]:
    get_employee(employee_id)
    return (
        db.session.query(SalaryAdvance)
        .filter_by(employee_id=employee_id)
        .order_by(SalaryAdvance.date.desc(), SalaryAdvance.id.desc())
        .all()
    )


def create_advance(employee_id: int, payload: dict, *, when=None) -> SalaryAdvance:
    employee = get_employee(employee_id)
    amount = require_amount_cents(payload.get("amount_cents"))
    _check_advance_amount(employee, amount)

    advance = SalaryAdvance(
        employee_id=employee.id,
        amount_cents=amount,
        date=when or utcnow(),
        reason=(payload.get("reason") or None),
        status=require_choice(payload.get("status") or "pending", ADVANCE_STATUSES, "status"),
    )
    db.session.add(advance)
    db.session.commit()
    return advance


def update_advance(employee_id: int, advance_id: int, payload: dict, *, when=None) -> SalaryAdvance:
    employee = get_employee(employee_id)
    advance = get_advance(employee.id, advance_id)

    if payload.get("amount_cents") is not None:
        amount = require_amount_cents(payload["amount_cents"])
        _check_advance_amount(employee, amount)
        advance.amount_cents = amount
    if "reason" in payload:
        advance.reason = payload.get("reason") or None
    if payload.get("status") is not None:
        advance.status = require_choice(payload["status"], ADVANCE_STATUSES, "status")
    if when is not None:
        advance.date = when

    db.session.commit()
    return advance


def delete_advance(employee_id: int, advance_id: int) -> None:
    advance = get_advance(employee_id, advance_id)
    db.session.delete(advance)
    db.session.commit()


def financial_summary(employee_id: int) -> dict:
    """
    total_paid sums every pay slip's net salary; total_advances sums the
    approved advances only.
    """
    employee = get_employee(employee_id)
    total_paid = (
        db.session.query(func.coalesce(func.sum(PaySlip.net_salary_cents), 0))
        .filter(PaySlip.employee_id == employee.id)
        .scalar()
    )
    total_advances = (
        db.session.query(func.coalesce(func.sum(SalaryAdvance.amount_cents), 0))
        .filter(SalaryAdvance.employee_id == employee.id, SalaryAdvance.status == "approved")
        .scalar()
    )
    total_paid, total_advances = int(total_paid or 0), int(total_advances or 0)
    return {
        "employee_id": employee.id,
        "salary": employee.salary_cents,
        "total_paid": total_paid,
        "total_advances": total_advances,
        "balance": total_paid - total_advances,
    }
