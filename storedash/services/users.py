from __future__ import annotations

from typing import Any

from sqlalchemy import or_

from storedash.errors import NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import User
from storedash.services.permissions import get_role, user_permissions, user_roles
from storedash.utils import as_bool, iso, paginate_query


def serialize(u: User, *, with_permissions: bool = False) -> dict[str, Any]:
    out = {
        "id": u.id,
        "tenant_id": u.tenant_id,
        "email": u.email,
        "name": u.name,
        "role": u.role.name if u.role else None,
        "role_id": u.role_id,
        "is_active": u.is_active,
        "is_superadmin": u.is_superadmin,
        "last_login_at": iso(u.last_login_at),
        "created_at": iso(u.created_at),
    }
    if with_permissions:
        out["roles"] = user_roles(u)
        out["permissions"] = sorted(user_permissions(u))
    return out


def list_users(
    tenant_id: int,
    *,
    search: str | None = None,
    role_id: int | None = None,
    is_active: Any = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    q = User.query.filter(User.tenant_id == tenant_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(User.name.ilike(like), User.email.ilike(like)))
    if role_id:
        q = q.filter(User.role_id == role_id)
    if is_active is not None and is_active != "":
        q = q.filter(User.is_active.is_(as_bool(is_active)))
    return paginate_query(q.order_by(User.email), page, limit, serialize)


def get_user(tenant_id: int, user_id: int) -> User:
    u = User.query.filter_by(tenant_id=tenant_id, id=user_id).first()
    if not u:
        raise NotFoundError("User not found")
    return u


def update_user(u: User, data: dict, *, acting: User | None = None) -> User:
    if "name" in data:
        u.name = (data.get("name") or "").strip() or None
    if "is_active" in data:
        active = as_bool(data.get("is_active"))
        if acting is not None and acting.id == u.id and not active:
            raise ValidationError("You cannot deactivate your own account")
        u.is_active = active
    if "role_id" in data:
        role_id = data.get("role_id")
        u.role_id = get_role(u.tenant_id, int(role_id)).id if role_id else None
    if data.get("password"):
        if len(data["password"]) < 6:
            raise ValidationError("Password must have at least 6 characters")
        u.set_password(data["password"])
    db.session.flush()
    return u
