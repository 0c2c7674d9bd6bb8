from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from flask import current_app

from storedash.errors import NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models_shop import Cart, CartItem, Product, ProductVariant
from storedash.services import inventory as inventory_svc
from storedash.utils import iso, money

DEFAULT_EXPIRY_DAYS = 30


def _expiry_days() -> int:
    try:
        return int(current_app.config.get("CART_EXPIRY_DAYS", DEFAULT_EXPIRY_DAYS))
    except RuntimeError:
        return DEFAULT_EXPIRY_DAYS


def subtotal(cart: Cart) -> Decimal:
    return sum((i.line_total for i in cart.items), Decimal("0"))


def item_count(cart: Cart) -> int:
    return sum(i.quantity for i in cart.items)


def serialize(cart: Cart) -> dict[str, Any]:
    return {
        "id": cart.id,
        "session_id": cart.session_id,
        "user_id": cart.user_id,
        "items": [
            {
                "id": i.id,
                "product_id": i.product_id,
                "variant_id": i.variant_id,
                "product_name": i.product.name if i.product else None,
                "variant_name": i.variant.name if i.variant else None,
                "quantity": i.quantity,
                "price": money(i.price_snapshot),
                "line_total": money(i.line_total),
            }
            for i in cart.items
        ],
        "subtotal": money(subtotal(cart)),
        "item_count": item_count(cart),
        "expires_at": iso(cart.expires_at),
    }


def get_or_create(
    tenant_id: int,
    *,
    session_id: str | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> Cart:
    if not session_id and not user_id:
        raise ValidationError("session_id or user_id is required")
    now = now or datetime.utcnow()

    q = Cart.query.filter(Cart.tenant_id == tenant_id)
    q = q.filter(Cart.user_id == user_id) if user_id else q.filter(Cart.session_id == session_id)
    cart = q.order_by(Cart.id.desc()).first()
    if cart and (cart.expires_at is None or cart.expires_at >= now):
        return cart

    cart = Cart(
        tenant_id=tenant_id,
        session_id=session_id,
        user_id=user_id,
        created_at=now,
        expires_at=now + timedelta(days=_expiry_days()),
    )
    db.session.add(cart)
    db.session.flush()
    return cart


def add_item(cart: Cart, product_id: int, quantity: int = 1, variant_id: int | None = None) -> Cart:
    if quantity < 1:
        raise ValidationError("quantity must be >= 1")
    product = Product.query.filter_by(tenant_id=cart.tenant_id, id=product_id).first()
    if not product:
        raise NotFoundError("Product not found")
    if product.status != "published":
        raise ValidationError("Product is not available")

    variant = None
    if variant_id is not None:
        variant = ProductVariant.query.filter_by(tenant_id=cart.tenant_id, id=variant_id, product_id=product.id).first()
        if not variant:
            raise NotFoundError("Variant not found")
        if not variant.is_active:
            raise ValidationError("Variant is not available")

    for line in cart.items:
        if line.product_id == product.id and line.variant_id == variant_id:
            line.quantity += quantity
            break
    else:
        price = variant.price if variant is not None and variant.price is not None else product.base_price
        cart.items.append(CartItem(
            product_id=product.id,
            variant_id=variant_id,
            quantity=quantity,
            price_snapshot=price,
            product=product,
            variant=variant,
        ))
    cart.updated_at = datetime.utcnow()
    db.session.flush()
    return cart


def _line(cart: Cart, item_id: int) -> CartItem:
    for line in cart.items:
        if line.id == item_id:
            return line
    raise NotFoundError("Cart item not found")


def update_quantity(cart: Cart, item_id: int, quantity: int) -> Cart:
    if quantity < 0:
        raise ValidationError("quantity must be >= 0")
    line = _line(cart, item_id)
    if quantity == 0:
        cart.items.remove(line)
    else:
        line.quantity = quantity
    db.session.flush()
    return cart


def remove_item(cart: Cart, item_id: int) -> Cart:
    cart.items.remove(_line(cart, item_id))
    db.session.flush()
    return cart


def clear(cart: Cart) -> Cart:
    cart.items.clear()
    db.session.flush()
    return cart


def merge_carts(guest: Cart, target: Cart) -> Cart:
    """Moves the guest lines into ``target`` (quantities summed) and drops the guest cart."""
    if guest.id == target.id:
        return target
    for line in list(guest.items):
        for existing in target.items:
            if existing.product_id == line.product_id and existing.variant_id == line.variant_id:
                existing.quantity += line.quantity
                break
        else:
            target.items.append(CartItem(
                product_id=line.product_id,
                variant_id=line.variant_id,
                quantity=line.quantity,
                price_snapshot=line.price_snapshot,
            ))
    db.session.delete(guest)
    db.session.flush()
    return target


def validate_inventory(cart: Cart) -> list[dict[str, Any]]:
    errors = []
    for line in cart.items:
        if line.variant_id is None:
            continue
        check = inventory_svc.check_availability(cart.tenant_id, line.variant_id, line.quantity)
        if not check["available"]:
            errors.append({
                "item_id": line.id,
                "variant_id": line.variant_id,
                "requested": line.quantity,
                "available": check["current_stock"],
                "message": "Insufficient stock",
            })
    return errors


def cleanup_expired_carts(now: datetime | None = None) -> int:
    """Bulk delete of every cart (any tenant) whose ``expires_at`` is in the past."""
    now = now or datetime.utcnow()
    expired = db.session.query(Cart.id).filter(Cart.expires_at.isnot(None), Cart.expires_at < now)
    ids = [row[0] for row in expired.execution_options(skip_tenant_scope=True).all()]
    if not ids:
        return 0
    CartItem.query.filter(CartItem.cart_id.in_(ids)).delete(synchronize_session=False)
    deleted = Cart.query.filter(Cart.id.in_(ids)).delete(synchronize_session=False)
    db.session.flush()
    return int(deleted or 0)
