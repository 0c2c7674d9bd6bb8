from __future__ import annotations

from datetime import datetime
from typing import Any

from flask import current_app
from sqlalchemy import or_

from storedash.errors import ConflictError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import User
from storedash.models_shop import Inventory, InventoryAdjustment, Product, ProductVariant
from storedash.services import notifications
from storedash.utils import iso, paginate_query

REASONS = ("restock", "sale", "return", "damage", "correction", "other")


def serialize(inv: Inventory) -> dict[str, Any]:
    v = inv.variant
    return {
        "id": inv.id,
        "variant_id": inv.variant_id,
        "variant_name": v.name if v else None,
        "sku": v.sku if v else None,
        "product_id": v.product_id if v else None,
        "product_name": v.product.name if v else None,
        "quantity": inv.quantity,
        "reserved": inv.reserved,
        "available": inv.available,
        "low_stock_threshold": inv.low_stock_threshold,
        "track_inventory": inv.track_inventory,
        "allow_backorder": inv.allow_backorder,
        "is_low_stock": inv.is_low_stock,
        "is_out_of_stock": inv.is_out_of_stock,
        "last_restocked_at": iso(inv.last_restocked_at),
    }


def serialize_adjustment(a: InventoryAdjustment) -> dict[str, Any]:
    return {
        "id": a.id,
        "inventory_id": a.inventory_id,
        "quantity_change": a.quantity_change,
        "reason": a.reason,
        "notes": a.notes,
        "user_id": a.user_id,
        "created_at": iso(a.created_at),
    }


# ---------------- consultas ----------------
def list_inventory(
    tenant_id: int,
    *,
    search: str | None = None,
    low_stock_only: bool = False,
    out_of_stock_only: bool = False,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    q = (
        Inventory.query
        .join(ProductVariant, Inventory.variant_id == ProductVariant.id)
        .join(Product, ProductVariant.product_id == Product.id)
        .filter(Inventory.tenant_id == tenant_id)
    )
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            ProductVariant.name.ilike(like),
            ProductVariant.sku.ilike(like),
            Product.name.ilike(like),
        ))
    if low_stock_only:
        q = q.filter(Inventory.available > 0, Inventory.available <= Inventory.low_stock_threshold)
    if out_of_stock_only:
        q = q.filter(Inventory.available <= 0)
    q = q.order_by(Inventory.available.asc(), Inventory.id.asc())
    return paginate_query(q, page, limit, serialize)


def find_by_variant(tenant_id: int, variant_id: int) -> Inventory | None:
    return Inventory.query.filter_by(tenant_id=tenant_id, variant_id=variant_id).first()


def _require(tenant_id: int, variant_id: int) -> Inventory:
    inv = find_by_variant(tenant_id, variant_id)
    if not inv:
        raise NotFoundError("Inventory not found for variant")
    return inv


def check_availability(tenant_id: int, variant_id: int, quantity: int) -> dict[str, Any]:
    inv = find_by_variant(tenant_id, variant_id)
    if not inv:
        return {"available": False, "current_stock": 0}
    if not inv.track_inventory or inv.allow_backorder:
        return {"available": True, "current_stock": inv.available}
    return {"available": inv.available >= quantity, "current_stock": inv.available}


def low_stock_items(tenant_id: int) -> list[Inventory]:
    return (
        Inventory.query
        .filter(
            Inventory.tenant_id == tenant_id,
            Inventory.track_inventory.is_(True),
            Inventory.available > 0,
            Inventory.available <= Inventory.low_stock_threshold,
        )
        .order_by(Inventory.available.asc())
        .all()
    )


def adjustment_history(tenant_id: int, variant_id: int, limit: int = 50) -> list[InventoryAdjustment]:
    inv = _require(tenant_id, variant_id)
    return (
        inv.adjustments
        .order_by(InventoryAdjustment.created_at.desc(), InventoryAdjustment.id.desc())
        .limit(limit)
        .all()
    )


# ---------------- movimentação ----------------
def adjust_quantity(
    tenant_id: int,
    variant_id: int,
    change: int,
    reason: str,
    *,
    notes: str | None = None,
    user: User | None = None,
    now: datetime | None = None,
) -> Inventory:
    if reason not in REASONS:
        raise ValidationError(f"Unknown reason: {reason}")
    try:
        change = int(change)
    except (TypeError, ValueError):
        raise ValidationError("quantity_change must be an integer")
    now = now or datetime.utcnow()

    inv = find_by_variant(tenant_id, variant_id)
    if inv is None:
        variant = ProductVariant.query.filter_by(tenant_id=tenant_id, id=variant_id).first()
        if not variant:
            raise NotFoundError("Variant not found")
        inv = Inventory(tenant_id=tenant_id, variant_id=variant.id, quantity=0, reserved=0, available=0)
        db.session.add(inv)
        db.session.flush()

    new_quantity = inv.quantity + change
    if new_quantity < 0:
        raise ValidationError("Adjustment would result in negative quantity")
    if new_quantity - inv.reserved < 0:
        raise ValidationError("Adjustment would result in negative available stock")

    inv.quantity = new_quantity
    inv.recompute()
    if change > 0:
        inv.last_restocked_at = now

    db.session.add(InventoryAdjustment(
        tenant_id=tenant_id,
        inventory_id=inv.id,
        quantity_change=change,
        reason=reason,
        notes=notes,
        user_id=user.id if user else None,
        created_at=now,
    ))
    db.session.flush()
    current_app.logger.info(
        "inventory adjusted variant=%s change=%s reason=%s available=%s",
        variant_id, change, reason, inv.available,
    )

    if inv.track_inventory and (inv.is_low_stock or inv.is_out_of_stock):
        send_low_stock_alert(inv)
    return inv


def reserve_stock(tenant_id: int, variant_id: int, quantity: int) -> Inventory:
    inv = _require(tenant_id, variant_id)
    if not inv.track_inventory:
        return inv
    if inv.available - quantity < 0 and not inv.allow_backorder:
        raise ConflictError(
            "Insufficient stock",
            details={"variant_id": variant_id, "requested": quantity, "available": inv.available},
        )
    inv.reserved += quantity
    inv.recompute()
    db.session.flush()
    return inv


def release_stock(tenant_id: int, variant_id: int, quantity: int) -> Inventory:
    inv = _require(tenant_id, variant_id)
    if not inv.track_inventory:
        return inv
    if quantity > inv.reserved:
        raise ValidationError("Cannot release more than reserved")
    inv.reserved -= quantity
    inv.recompute()
    db.session.flush()
    return inv


def fulfill_stock(tenant_id: int, variant_id: int, quantity: int, *, user: User | None = None) -> Inventory:
    """Consumes reserved units (order shipped): quantity and reserved both drop."""
    inv = _require(tenant_id, variant_id)
    if not inv.track_inventory:
        return inv
    consumed = min(quantity, inv.reserved)
    inv.reserved -= consumed
    inv.quantity = max(0, inv.quantity - quantity)
    inv.recompute()
    db.session.add(InventoryAdjustment(
        tenant_id=tenant_id,
        inventory_id=inv.id,
        quantity_change=-quantity,
        reason="sale",
        user_id=user.id if user else None,
    ))
    db.session.flush()
    return inv


def update_settings(inv: Inventory, data: dict) -> Inventory:
    if "low_stock_threshold" in data:
        threshold = int(data["low_stock_threshold"])
        if threshold < 0:
            raise ValidationError("low_stock_threshold must be >= 0")
        inv.low_stock_threshold = threshold
    if "track_inventory" in data:
        inv.track_inventory = bool(data["track_inventory"])
    if "allow_backorder" in data:
        inv.allow_backorder = bool(data["allow_backorder"])
    db.session.flush()
    return inv


def send_low_stock_alert(inv: Inventory) -> list:
    v = inv.variant
    label = f"{v.product.name} ({v.sku})" if v else f"variant {inv.variant_id}"
    if inv.is_out_of_stock:
        title, priority = "Out of stock", "high"
        message = f"{label} is out of stock."
    else:
        title, priority = "Low stock", "normal"
        message = f"{label} is running low: {inv.available} left (threshold {inv.low_stock_threshold})."
    return notifications.notify_permission_holders(
        inv.tenant_id,
        "inventory:read",
        title,
        message,
        category="inventory",
        priority=priority,
        action_url="/inventory",
        metadata={"variant_id": inv.variant_id, "available": inv.available},
    )
