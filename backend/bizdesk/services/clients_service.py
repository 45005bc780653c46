# Overview: Service-layer operations for clients; CRUD plus the cached purchase metrics.

"""
Clients Service

The purchase metrics on Client (total_purchases_cents, purchase_count,
last_purchase_date) are a cache over the client's non-cancelled sales.
refresh_purchase_metrics() recomputes them from scratch and is called by
every sale operation that touches the client's sales, inside the same
transaction, so the cache cannot drift.
"""

from datetime import timedelta

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Client, Sale
from ..validation import ServiceError, ConflictError
from bizdesk.time_utils import utcnow
from .concurrency import run_in_transaction


class ClientError(ServiceError):
    """Raised for client operation errors."""


def refresh_purchase_metrics(client: Client) -> None:
    """Recompute the client's purchase metrics from its non-cancelled sales (no commit)."""
    db.session.flush()
    total, count, last = (
        db.session.query(
            func.coalesce(func.sum(Sale.total_amount_cents), 0),
            func.count(Sale.id),
            func.max(Sale.sale_date),
        )
        .filter(Sale.client_id == client.id, Sale.status != "cancelled")
        .one()
    )
    client.total_purchases_cents = int(total)
    client.purchase_count = int(count)
    client.last_purchase_date = last


def get_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if not client:
        raise ClientError("Client not found", status_code=404)
    return client


def get_client_refreshed(client_id: int) -> Client:
    """Fetch a client after recomputing its purchase metrics."""
    def _op():
        client = get_client(client_id)
        refresh_purchase_metrics(client)
        return client
    return run_in_transaction(_op)


def list_clients(search: str | None = None) -> list[Client]:
    query = db.session.query(Client)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            db.or_(
                Client.name.ilike(pattern),
                Client.email.ilike(pattern),
                Client.phone.ilike(pattern),
            )
        )
    return query.order_by(Client.name.asc()).all()


def _email_taken(email: str, *, exclude_id: int | None = None) -> bool:
    query = db.session.query(Client.id).filter(func.lower(Client.email) == email)
    if exclude_id is not None:
        query = query.filter(Client.id != exclude_id)
    return query.first() is not None


def create_client(patch: dict, *, user_id: int | None = None) -> Client:
    patch = dict(patch)
    patch["email"] = patch["email"].lower()
    if _email_taken(patch["email"]):
        raise ConflictError("A client with this email already exists")

    def _op():
        client = Client(**patch, created_by_user_id=user_id, updated_by_user_id=user_id)
        db.session.add(client)
        return client

    try:
        return run_in_transaction(_op)
    except IntegrityError:
        raise ConflictError("A client with this email already exists")


def update_client(client_id: int, patch: dict, *, user_id: int | None = None) -> Client:
    patch = dict(patch)
    if "email" in patch and patch["email"]:
        patch["email"] = patch["email"].lower()
        if _email_taken(patch["email"], exclude_id=client_id):
            raise ConflictError("A client with this email already exists")

    def _op():
        client = get_client(client_id)
        for key, value in patch.items():
            setattr(client, key, value)
        client.updated_by_user_id = user_id
        return client

    try:
        return run_in_transaction(_op)
    except IntegrityError:
        raise ConflictError("A client with this email already exists")


def delete_client(client_id: int) -> None:
    def _op():
        client = get_client(client_id)
        if client.sales.count():
            raise ClientError("Cannot delete a client that has sales")
        db.session.delete(client)

    run_in_transaction(_op)


def client_stats() -> dict:
    now = utcnow()
    total_clients = db.session.query(func.count(Client.id)).scalar() or 0
    with_purchases = db.session.query(func.count(Client.id)).filter(Client.purchase_count > 0).scalar() or 0
    active = (
        db.session.query(func.count(Client.id))
        .filter(Client.last_purchase_date >= now - timedelta(days=30))
        .scalar()
        or 0
    )
    total_revenue = db.session.query(func.coalesce(func.sum(Client.total_purchases_cents), 0)).scalar() or 0
    top = (
        db.session.query(Client)
        .order_by(Client.total_purchases_cents.desc(), Client.id.asc())
        .limit(5)
        .all()
    )
    return {
        "total_clients": int(total_clients),
        "clients_with_purchases": int(with_purchases),
        "active_clients": int(active),
        "total_revenue_cents": int(total_revenue),
        "average_revenue_per_client_cents": int(total_revenue // total_clients) if total_clients else 0,
        "top_clients": [c.to_dict() for c in top],
    }


def filter_clients(
    *,
    min_total: int | None = None,
    max_total: int | None = None,
    min_purchases: int | None = None,
    since=None,
    inactive_days: int | None = None,
) -> list[Client]:
    query = db.session.query(Client)
    if min_total is not None:
        query = query.filter(Client.total_purchases_cents >= min_total)
    if max_total is not None:
        query = query.filter(Client.total_purchases_cents <= max_total)
    if min_purchases is not None:
        query = query.filter(Client.purchase_count >= min_purchases)
    if since is not None:
        query = query.filter(Client.last_purchase_date >= since)
    if inactive_days is not None:
        cutoff = utcnow() - timedelta(days=inactive_days)
        query = query.filter(
            db.or_(Client.last_purchase_date.is_(None), Client.last_purchase_date < cutoff)
        )
    return query.order_by(Client.total_purchases_cents.desc()).all()
