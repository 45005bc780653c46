# Overview: Service-layer operations for search; global lookup across products, clients, sales and employees.

from ..extensions import db
from ..models import Client, Employee, Product, Sale
from bizdesk.time_utils import to_utc_z


MIN_QUERY_LENGTH = 2
RESULTS_PER_TYPE = 5


def global_search(q: str | None) -> list[dict]:
    """
    Case-insensitive substring search. Queries shorter than two characters
    return nothing. Every result carries a "type" tag.
    """
    term = (q or "").strip()
    if len(term) < MIN_QUERY_LENGTH:
        return []
    pattern = f"%{term}%"

    products = (
        db.session.query(Product)
        .filter(Product.name.ilike(pattern))
        .order_by(Product.name.asc())
        .limit(RESULTS_PER_TYPE)
        .all()
    )
    clients = (
        db.session.query(Client)
        .filter(Client.name.ilike(pattern))
        .order_by(Client.name.asc())
        .limit(RESULTS_PER_TYPE)
        .all()
    )
    sales = (
        db.session.query(Sale)
        .join(Client, Sale.client_id == Client.id)
        .filter(Client.name.ilike(pattern))
        .order_by(Sale.sale_date.desc())
        .limit(RESULTS_PER_TYPE)
        .all()
    )
    employees = (
        db.session.query(Employee)
        .filter(Employee.name.ilike(pattern))
        .order_by(Employee.name.asc())
        .limit(RESULTS_PER_TYPE)
        .all()
    )

    results = [
        {"type": "product", "id": p.id, "name": p.name, "sku": p.sku,
         "price_cents": p.price_cents, "stock": p.stock}
        for p in products
    ]
    results += [
        {"type": "client", "id": c.id, "name": c.name, "email": c.email, "phone": c.phone}
        for c in clients
    ]
    results += [
        {"type": "sale", "id": s.id, "client_name": s.client.name if s.client else None,
         "total_amount_cents": s.total_amount_cents, "status": s.status,
         "sale_date": to_utc_z(s.sale_date)}
        for s in sales
    ]
    results += [
        {"type": "employee", "id": e.id, "name": e.name, "position": e.position,
         "department": e.department}
        for e in employees
    ]
    return results
