from __future__ import annotations

import secrets
import string
import time
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from flask import current_app
from sqlalchemy import or_

from storedash.errors import NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import User
from storedash.models_shop import (
    EcommerceSettings, Order, OrderItem, OrderStatusHistory, Product, ProductVariant, ShippingMethod,
)
from storedash.services import customers as customers_svc
from storedash.services import inventory as inventory_svc
from storedash.services import notifications
from storedash.utils import CENTS, iso, money, paginate_query, parse_datetime

STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled", "refunded")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")

# status atual -> próximos permitidos
TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("processing", "cancelled"),
    "processing": ("shipped", "cancelled"),
    "shipped": ("delivered", "cancelled"),
    "delivered": ("refunded",),
    "cancelled": (),
    "refunded": (),
}

_B36 = string.digits + string.ascii_uppercase


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_B36[r])
    return "".join(reversed(out))


def generate_order_number(millis: int | None = None) -> str:
    """``ORD-<base36 epoch millis>-<4 hex>``, retried until unused."""
    while True:
        ms = millis if millis is not None else int(time.time() * 1000)
        number = f"ORD-{_base36(ms)}-{secrets.token_hex(2).upper()}"
        if not db.session.query(Order.query.filter_by(order_number=number).exists()).scalar():
            return number
        millis = None


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, ())


def serialize_item(i: OrderItem) -> dict[str, Any]:
    return {
        "id": i.id,
        "product_id": i.product_id,
        "variant_id": i.variant_id,
        "product_name": i.product_name,
        "variant_name": i.variant_name,
        "sku": i.sku,
        "quantity": i.quantity,
        "unit_price": money(i.unit_price),
        "total_price": money(i.total_price),
    }


def serialize(o: Order, *, include_items: bool = True) -> dict[str, Any]:
    data = {
        "id": o.id,
        "order_number": o.order_number,
        "status": o.status,
        "payment_status": o.payment_status,
        "fulfillment_status": o.fulfillment_status,
        "subtotal": money(o.subtotal),
        "tax": money(o.tax),
        "shipping": money(o.shipping),
        "discount": money(o.discount),
        "total": money(o.total),
        "customer_id": o.customer_id,
        "customer_email": o.customer_email,
        "customer_name": o.customer_name,
        "customer_phone": o.customer_phone,
        "customer_notes": o.customer_notes,
        "internal_notes": o.internal_notes,
        "tracking_number": o.tracking_number,
        "shipping_address": dict(o.shipping_address or {}),
        "billing_address": dict(o.billing_address or {}),
        "shipping_method_id": o.shipping_method_id,
        "payment_method_id": o.payment_method_id,
        "paid_at": iso(o.paid_at),
        "shipped_at": iso(o.shipped_at),
        "delivered_at": iso(o.delivered_at),
        "cancelled_at": iso(o.cancelled_at),
        "created_at": iso(o.created_at),
    }
    if include_items:
        data["items"] = [serialize_item(i) for i in o.items]
    return data


def serialize_history(h: OrderStatusHistory) -> dict[str, Any]:
    return {
        "id": h.id,
        "from_status": h.from_status,
        "to_status": h.to_status,
        "user_id": h.user_id,
        "notes": h.notes,
        "created_at": iso(h.created_at),
    }


# ---------------- consultas ----------------
def list_orders(
    tenant_id: int,
    *,
    status: str | None = None,
    payment_status: str | None = None,
    search: str | None = None,
    date_from: Any = None,
    date_to: Any = None,
    customer_id: int | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    q = Order.query.filter(Order.tenant_id == tenant_id)
    if customer_id:
        q = q.filter(Order.customer_id == int(customer_id))
    if status:
        q = q.filter(Order.status == status)
    if payment_status:
        q = q.filter(Order.payment_status == payment_status)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            Order.order_number.ilike(like),
            Order.customer_email.ilike(like),
            Order.customer_name.ilike(like),
        ))
    start = parse_datetime(date_from, "date_from", allow_none=True)
    end = parse_datetime(date_to, "date_to", allow_none=True)
    if start:
        q = q.filter(Order.created_at >= start)
    if end:
        q = q.filter(Order.created_at <= end)
    q = q.order_by(Order.created_at.desc(), Order.id.desc())
    return paginate_query(q, page, limit, lambda o: serialize(o, include_items=False))


def get_order(tenant_id: int, order_id: int) -> Order:
    o = Order.query.filter_by(tenant_id=tenant_id, id=order_id).first()
    if not o:
        raise NotFoundError("Order not found")
    return o


def get_by_number(tenant_id: int, number: str) -> Order:
    o = Order.query.filter_by(tenant_id=tenant_id, order_number=number).first()
    if not o:
        raise NotFoundError("Order not found")
    return o


def status_history(order: Order) -> list[OrderStatusHistory]:
    return order.history.order_by(OrderStatusHistory.created_at.asc(), OrderStatusHistory.id.asc()).all()


# ---------------- helpers de escrita ----------------
def record_history(
    order: Order,
    from_status: str | None,
    to_status: str,
    *,
    user: User | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> OrderStatusHistory:
    h = OrderStatusHistory(
        order=order,
        from_status=from_status,
        to_status=to_status,
        user_id=user.id if user else None,
        notes=notes,
        created_at=now or datetime.utcnow(),
    )
    db.session.add(h)
    return h


def notify_order_watchers(order: Order, title: str, message: str, *, priority: str = "normal") -> list:
    return notifications.notify_permission_holders(
        order.tenant_id,
        "orders:read",
        title,
        message,
        category="workflow",
        priority=priority,
        action_url=f"/orders/{order.id}",
        action_label="View order",
        metadata={"order_id": order.id, "order_number": order.order_number, "status": order.status},
    )


def compute_totals(
    subtotal: Decimal,
    settings: EcommerceSettings | None,
    shipping_price: Decimal = Decimal("0"),
    *,
    cod_fee: Decimal = Decimal("0"),
    discount: Decimal = Decimal("0"),
) -> dict[str, Decimal]:
    rate = Decimal(str(settings.tax_rate)) if settings else Decimal("0")
    tax = (Decimal(subtotal) * rate / Decimal(100)).quantize(CENTS, rounding=ROUND_HALF_UP)
    subtotal = Decimal(subtotal).quantize(CENTS, rounding=ROUND_HALF_UP)
    shipping_price = Decimal(shipping_price).quantize(CENTS, rounding=ROUND_HALF_UP)
    total = subtotal + tax + shipping_price + Decimal(cod_fee) - Decimal(discount)
    return {
        "subtotal": subtotal,
        "tax": tax,
        "shipping": shipping_price,
        "cod_fee": Decimal(cod_fee).quantize(CENTS),
        "discount": Decimal(discount).quantize(CENTS),
        "total": max(total, Decimal("0")).quantize(CENTS),
    }


# ---------------- criação manual (admin) ----------------
def create_order(tenant_id: int, data: dict, *, user: User | None = None, now: datetime | None = None) -> Order:
    """Creates an order from explicit ``items`` [{product_id, variant_id?, quantity}]."""
    now = now or datetime.utcnow()
    raw_items = data.get("items") or []
    if not raw_items:
        raise ValidationError("Order must contain at least one item")

    lines = []
    for idx, raw in enumerate(raw_items):
        try:
            qty = int(raw.get("quantity") or 0)
        except (TypeError, ValueError):
            qty = 0
        if qty < 1:
            raise ValidationError(f"items[{idx}].quantity must be >= 1")
        product = Product.query.filter_by(tenant_id=tenant_id, id=raw.get("product_id")).first()
        if not product:
            raise NotFoundError(f"Product {raw.get('product_id')} not found")
        variant = None
        if raw.get("variant_id") is not None:
            variant = ProductVariant.query.filter_by(
                tenant_id=tenant_id, id=raw["variant_id"], product_id=product.id
            ).first()
            if not variant:
                raise NotFoundError(f"Variant {raw['variant_id']} not found")
            check = inventory_svc.check_availability(tenant_id, variant.id, qty)
            if not check["available"]:
                raise ValidationError(
                    "Insufficient stock",
                    details={"variant_id": variant.id, "requested": qty, "available": check["current_stock"]},
                )
        unit = variant.effective_price if variant else product.base_price
        lines.append((product, variant, qty, Decimal(unit)))

    shipping_price = Decimal("0")
    method = None
    if data.get("shipping_method_id"):
        method = ShippingMethod.query.filter_by(tenant_id=tenant_id, id=data["shipping_method_id"]).first()
        if not method:
            raise NotFoundError("Shipping method not found")
        shipping_price = Decimal(method.price)

    settings = EcommerceSettings.query.filter_by(tenant_id=tenant_id).first()
    subtotal = sum((unit * qty for _, _, qty, unit in lines), Decimal("0"))
    totals = compute_totals(subtotal, settings, shipping_price, discount=Decimal(str(data.get("discount") or 0)))

    order = Order(
        tenant_id=tenant_id,
        order_number=generate_order_number(),
        user_id=data.get("user_id"),
        status="pending",
        payment_status="pending",
        subtotal=totals["subtotal"],
        tax=totals["tax"],
        shipping=totals["shipping"],
        discount=totals["discount"],
        total=totals["total"],
        shipping_address=dict(data.get("shipping_address") or {}),
        billing_address=dict(data.get("billing_address") or data.get("shipping_address") or {}),
        shipping_method_id=method.id if method else None,
        customer_email=data.get("customer_email"),
        customer_name=data.get("customer_name"),
        customer_phone=data.get("customer_phone"),
        customer_notes=data.get("customer_notes"),
        created_at=now,
    )
    db.session.add(order)
    order.customer = customers_svc.customer_for_order(
        tenant_id, order.customer_email, name=order.customer_name,
        phone=order.customer_phone, address=order.shipping_address,
    )
    for product, variant, qty, unit in lines:
        order.items.append(OrderItem(
            product_id=product.id,
            variant_id=variant.id if variant else None,
            product_name=product.name,
            variant_name=variant.name if variant else None,
            sku=variant.sku if variant else product.sku,
            quantity=qty,
            unit_price=unit,
            total_price=(unit * qty).quantize(CENTS),
        ))
        if variant is not None:
            inventory_svc.reserve_stock(tenant_id, variant.id, qty)
    record_history(order, None, "pending", user=user, notes="Order created", now=now)
    db.session.flush()

    current_app.logger.info("order created %s total=%s", order.order_number, money(order.total))
    notify_order_watchers(order, "New order", f"Order {order.order_number} was created.")
    return order


# ---------------- ciclo de vida ----------------
def update_status(
    order: Order,
    new_status: str,
    *,
    user: User | None = None,
    notes: str | None = None,
    tracking_number: str | None = None,
    now: datetime | None = None,
) -> Order:
    if new_status not in STATUSES:
        raise ValidationError(f"Unknown status: {new_status}")
    old = order.status
    if not can_transition(old, new_status):
        raise ValidationError(
            f"Invalid status transition from {old} to {new_status}",
            details={"allowed": list(TRANSITIONS.get(old, ()))},
        )
    now = now or datetime.utcnow()

    if new_status == "cancelled":
        if old in ("pending", "processing"):
            for item in order.items:
                if item.variant_id is not None:
                    inventory_svc.release_stock(order.tenant_id, item.variant_id, item.quantity)
        order.cancelled_at = now
    elif new_status == "shipped":
        for item in order.items:
            if item.variant_id is not None:
                inventory_svc.fulfill_stock(order.tenant_id, item.variant_id, item.quantity, user=user)
        order.shipped_at = now
        order.fulfillment_status = "fulfilled"
        if tracking_number:
            order.tracking_number = tracking_number
    elif new_status == "delivered":
        order.delivered_at = now
    elif new_status == "refunded":
        order.payment_status = "refunded"

    order.status = new_status
    order.updated_at = now
    record_history(order, old, new_status, user=user, notes=notes, now=now)
    db.session.flush()

    current_app.logger.info("order %s status %s -> %s", order.order_number, old, new_status)
    notify_order_watchers(
        order,
        "Order status updated",
        f"Order {order.order_number} changed from {old} to {new_status}.",
        priority="high" if new_status == "cancelled" else "normal",
    )
    return order


def cancel(order: Order, reason: str | None = None, *, user: User | None = None, now: datetime | None = None) -> Order:
    return update_status(order, "cancelled", user=user, notes=reason or "Order cancelled", now=now)


def add_note(order: Order, note: str, *, user: User | None = None, now: datetime | None = None) -> Order:
    note = (note or "").strip()
    if not note:
        raise ValidationError("note is required")
    now = now or datetime.utcnow()
    who = f"User {user.id}" if user else "System"
    line = f"[{now.isoformat()}] {who}: {note}"
    order.internal_notes = f"{order.internal_notes}\n{line}" if order.internal_notes else line
    db.session.flush()
    return order


def update_payment_status(order: Order, status: str, *, now: datetime | None = None) -> Order:
    if status not in PAYMENT_STATUSES:
        raise ValidationError(f"Unknown payment status: {status}")
    order.payment_status = status
    if status == "paid" and order.paid_at is None:
        order.paid_at = now or datetime.utcnow()
    db.session.flush()
    current_app.logger.info("order %s payment_status=%s", order.order_number, status)
    return order
