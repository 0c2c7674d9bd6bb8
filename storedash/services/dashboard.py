from __future__ import annotations

from datetime import datetime, time
from decimal import Decimal
from typing import Any

from sqlalchemy import func

from storedash.extensions import db
from storedash.models import Tenant, User
from storedash.models_shop import Inventory, Order
from storedash.models_site import BlogPost
from storedash.services import messaging, notifications
from storedash.services.permissions import user_has_permission
from storedash.utils import money


def _order_stats(tenant_id: int, now: datetime) -> dict[str, Any]:
    by_status = dict(
        db.session.query(Order.status, func.count(Order.id))
        .filter(Order.tenant_id == tenant_id)
        .group_by(Order.status)
        .all()
    )
    revenue = (
        db.session.query(func.coalesce(func.sum(Order.total), 0))
        .filter(Order.tenant_id == tenant_id, Order.status != "cancelled")
        .scalar()
    )
    today = (
        db.session.query(func.count(Order.id))
        .filter(Order.tenant_id == tenant_id, Order.created_at >= datetime.combine(now.date(), time.min))
        .scalar()
    )
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "revenue": money(Decimal(str(revenue or 0))),
        "today": int(today or 0),
    }


def _inventory_stats(tenant_id: int) -> dict[str, Any]:
    base = db.session.query(func.count(Inventory.id)).filter(
        Inventory.tenant_id == tenant_id, Inventory.track_inventory.is_(True)
    )
    low = base.filter(Inventory.available > 0, Inventory.available <= Inventory.low_stock_threshold).scalar()
    out = base.filter(Inventory.available <= 0).scalar()
    return {"low_stock": int(low or 0), "out_of_stock": int(out or 0)}


def _content_stats(tenant_id: int) -> dict[str, Any]:
    rows = dict(
        db.session.query(BlogPost.status, func.count(BlogPost.id))
        .filter(BlogPost.tenant_id == tenant_id)
        .group_by(BlogPost.status)
        .all()
    )
    return {"published_posts": rows.get("published", 0), "draft_posts": rows.get("draft", 0)}


def stats(tenant: Tenant, user: User, *, now: datetime | None = None) -> dict[str, Any]:
    """Only the blocks the user is allowed to see are present in the result."""
    now = now or datetime.utcnow()
    out: dict[str, Any] = {}
    if user_has_permission(user, "orders:read"):
        out["orders"] = _order_stats(tenant.id, now)
    if user_has_permission(user, "inventory:read"):
        out["inventory"] = _inventory_stats(tenant.id)
    if user_has_permission(user, "blog:read"):
        out["content"] = _content_stats(tenant.id)
    if user_has_permission(user, "users:read"):
        active = (
            db.session.query(func.count(User.id))
            .filter(User.tenant_id == tenant.id, User.is_active.is_(True))
            .scalar()
        )
        out["users"] = {"active": int(active or 0)}
    out["notifications"] = {"unread": notifications.unread_count(user)}
    if messaging.get_settings(tenant.id).enabled:
        out["messages"] = {"unread": messaging.unread_count(user)}
    return out
