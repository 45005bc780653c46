# Overview: Service-layer operations for expenses; CRUD and date-range listing.

from ..extensions import db
from ..models import Expense
from ..validation import ServiceError


class ExpenseError(ServiceError):
    """Raised for expense errors."""


def get_expense(expense_id: int) -> Expense:
    expense = db.session.get(Expense, expense_id)
    if not expense:
        raise ExpenseError("Expense not found", status_code=404)
    return expense


def list_expenses(*, start=None, end=None, category: str | None = None, search: str | None = None) -> list[Expense]:
    """Newest first. search matches description or payment method."""
    query = db.session.query(Expense)
    if start is not None:
        query = query.filter(Expense.date >= start)
    if end is not None:
        query = query.filter(Expense.date <= end)
    if category:
        query = query.filter(Expense.category == category)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.filter(
            db.or_(Expense.description.ilike(pattern), Expense.payment_method.ilike(pattern))
        )
    return query.order_by(Expense.date.desc(), Expense.id.desc()).all()


def expenses_in_range(start, end) -> list[Expense]:
    return (
        db.session.query(Expense)
        .filter(Expense.date >= start, Expense.date <= end)
        .order_by(Expense.date.asc(), Expense.id.asc())
        .all()
    )


def create_expense(patch: dict, *, user_id: int | None = None) -> Expense:
    expense = Expense(**patch, created_by_user_id=user_id, updated_by_user_id=user_id)
    if not expense.payment_method:
        expense.payment_method = "cash"
    db.session.add(expense)
    db.session.commit()
    return expense


def update_expense(expense_id: int, patch: dict, *, user_id: int | None = None) -> Expense:
    expense = get_expense(expense_id)
    for key, value in patch.items():
        setattr(expense, key, value)
    expense.updated_by_user_id = user_id
    db.session.commit()
    return expense


def delete_expense(expense_id: int) -> None:
    expense = get_expense(expense_id)
    db.session.delete(expense)
    db.session.commit()
