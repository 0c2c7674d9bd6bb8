"""
Store customers.

A customer is the buyer behind one or more orders, keyed by e-mail inside a
tenant. Checkout links every order to its customer, creating the record on
the first purchase.
"""
from __future__ import annotations

import re
from decimal import Decimal
from typing import Any

from sqlalchemy import false, func, or_

from storedash.errors import ConflictError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models_shop import Customer, Order
from storedash.utils import iso, money, paginate_query

SORT_FIELDS = {
    "created_at": Customer.created_at,
    "email": Customer.email,
    "last_name": Customer.last_name,
}

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _totals(c: Customer) -> tuple[int, Decimal]:
    count, spent = (
        db.session.query(func.count(Order.id), func.coalesce(func.sum(Order.total), 0))
        .filter(Order.customer_id == c.id)
        .one()
    )
    return int(count or 0), Decimal(spent or 0)


def serialize(c: Customer) -> dict[str, Any]:
    count, spent = _totals(c)
    return {
        "id": c.id,
        "email": c.email,
        "first_name": c.first_name,
        "last_name": c.last_name,
        "full_name": c.full_name,
        "phone": c.phone,
        "company": c.company,
        "shipping_address": dict(c.shipping_address or {}),
        "billing_address": dict(c.billing_address or {}),
        "notes": c.notes,
        "tags": list(c.tags or []),
        "order_count": count,
        "total_spent": money(spent),
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }


def _email(value: Any) -> str:
    email = (value or "").strip().lower()
    if not _EMAIL.match(email):
        raise ValidationError("A valid email is required")
    return email


def _tags(value: Any) -> list[str]:
    if value in (None, ""):
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError("tags must be a list")
    out = []
    for t in value:
        t = str(t).strip()
        if t and t not in out:
            out.append(t)
    return out


def list_customers(
    tenant_id: int,
    *,
    search: str | None = None,
    tag: str | None = None,
    sort: str = "created_at",
    order: str = "desc",
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    q = Customer.query.filter(Customer.tenant_id == tenant_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            Customer.email.ilike(like),
            Customer.first_name.ilike(like),
            Customer.last_name.ilike(like),
            Customer.company.ilike(like),
        ))
    if tag:
        # tags é JSON; filtra em Python para funcionar igual em SQLite e Postgres
        ids = [c.id for c in q.all() if tag in (c.tags or [])]
        q = Customer.query.filter(Customer.id.in_(ids)) if ids else q.filter(false())
    col = SORT_FIELDS.get(sort, Customer.created_at)
    q = q.order_by(col.asc() if order == "asc" else col.desc(), Customer.id.desc())
    return paginate_query(q, page, limit, serialize)


def get_customer(tenant_id: int, customer_id: int) -> Customer:
    c = Customer.query.filter_by(tenant_id=tenant_id, id=customer_id).first()
    if not c:
        raise NotFoundError("Customer not found")
    return c


def find_by_email(tenant_id: int, email: str | None) -> Customer | None:
    if not email:
        return None
    return Customer.query.filter_by(tenant_id=tenant_id, email=email.strip().lower()).first()


def _apply(c: Customer, data: dict) -> None:
    for field in ("first_name", "last_name", "phone", "company", "notes"):
        if field in data:
            setattr(c, field, data.get(field))
    for field in ("shipping_address", "billing_address"):
        if field in data:
            setattr(c, field, dict(data.get(field) or {}))
    if "tags" in data:
        c.tags = _tags(data.get("tags"))


def create_customer(tenant_id: int, data: dict) -> Customer:
    email = _email(data.get("email"))
    if find_by_email(tenant_id, email):
        raise ConflictError("Customer with this email already exists")
    c = Customer(tenant_id=tenant_id, email=email, tags=[])
    _apply(c, data)
    db.session.add(c)
    db.session.flush()
    return c


def update_customer(c: Customer, data: dict) -> Customer:
    if "email" in data:
        email = _email(data.get("email"))
        if email != c.email:
            other = find_by_email(c.tenant_id, email)
            if other is not None and other.id != c.id:
                raise ConflictError("Email is already taken")
            c.email = email
    _apply(c, data)
    db.session.flush()
    return c


def delete_customer(c: Customer) -> None:
    if c.orders.count():
        raise ValidationError("Cannot delete a customer with orders")
    db.session.delete(c)
    db.session.flush()


def customer_for_order(tenant_id: int, email: str | None, *, name: str | None = None,
                       phone: str | None = None, address: dict | None = None) -> Customer | None:
    """Finds or creates the customer behind an order; None when the order has no e-mail."""
    if not email:
        return None
    email = email.strip().lower()
    c = find_by_email(tenant_id, email)
    if c is not None:
        return c
    address = address or {}
    first, _, last = (name or "").strip().partition(" ")
    c = Customer(
        tenant_id=tenant_id,
        email=email,
        first_name=address.get("first_name") or first or None,
        last_name=address.get("last_name") or last or None,
        phone=phone or address.get("phone"),
        shipping_address=dict(address),
        tags=[],
    )
    db.session.add(c)
    db.session.flush()
    return c


def order_history(c: Customer) -> list[Order]:
    return c.orders.order_by(Order.created_at.desc(), Order.id.desc()).all()


def statistics(c: Customer) -> dict[str, Any]:
    rows = c.orders.order_by(Order.created_at.asc(), Order.id.asc()).all()
    total = sum((Decimal(o.total) for o in rows), Decimal("0"))
    count = len(rows)
    return {
        "total_orders": count,
        "total_spent": money(total),
        "average_order_value": money(total / count if count else Decimal("0")),
        "first_order_date": iso(rows[0].created_at) if rows else None,
        "last_order_date": iso(rows[-1].created_at) if rows else None,
    }
