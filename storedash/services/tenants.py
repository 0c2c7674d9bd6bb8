from __future__ import annotations

from typing import Any

from flask import current_app

from storedash.errors import ConflictError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import Permission, Role, Tenant, User
from storedash.services.permissions import create_role, ensure_permission
from storedash.utils import iso, slugify

RESOURCES = (
    "products", "categories", "customers", "inventory", "orders", "checkout", "blog", "landing",
    "messaging", "notifications", "calendar", "menus", "widgets",
    "dashboard", "search", "activity", "users", "roles",
)
ACTIONS = ("read", "create", "update", "delete")

# (nome, descrição, permissões)
DEFAULT_ROLES = (
    ("admin", "Full access to the tenant", ["*:*"]),
    ("manager", "Runs the store and its content", [
        "products:*", "categories:*", "customers:*", "inventory:*", "orders:*", "checkout:*", "blog:*",
        "landing:*", "calendar:*", "messaging:*", "notifications:*",
        "dashboard:read", "search:read", "widgets:read", "menus:read",
    ]),
    ("viewer", "Read-only access", ["*:read"]),
)


def serialize(t: Tenant) -> dict[str, Any]:
    return {
        "id": t.id,
        "name": t.name,
        "slug": t.slug,
        "is_blocked": t.is_blocked,
        "users": len(t.users),
        "created_at": iso(t.created_at),
    }


def ensure_permission_catalog() -> int:
    existing = {p.name for p in Permission.query.all()}
    created = 0
    for resource in RESOURCES:
        for action in ACTIONS:
            name = f"{resource}:{action}"
            if name not in existing:
                ensure_permission(name)
                created += 1
    return created


def create_tenant(name: str, slug: str | None = None) -> Tenant:
    """Creates the tenant with its system roles (admin, manager, viewer)."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Tenant name is required")
    slug = slugify(slug or name)
    if not slug:
        raise ValidationError("Tenant slug is required")
    if Tenant.query.filter_by(slug=slug).first():
        raise ConflictError(f"Tenant slug '{slug}' is already in use")

    tenant = Tenant(name=name, slug=slug)
    db.session.add(tenant)
    db.session.flush()

    ensure_permission_catalog()
    for role_name, description, perms in DEFAULT_ROLES:
        create_role(tenant.id, role_name, description, perms, is_system=True)

    current_app.logger.info("tenant %s created (id=%s)", slug, tenant.id)
    return tenant


def get_tenant(tenant_id: int) -> Tenant:
    t = db.session.get(Tenant, tenant_id)
    if not t:
        raise NotFoundError("Tenant not found")
    return t


def list_tenants(q: str | None = None) -> list[Tenant]:
    qry = Tenant.query
    if q:
        like = f"%{q.strip()}%"
        qry = qry.filter((Tenant.name.ilike(like)) | (Tenant.slug.ilike(like)))
    return qry.order_by(Tenant.created_at.desc()).limit(200).all()


def set_blocked(t: Tenant, blocked: bool) -> Tenant:
    t.is_blocked = bool(blocked)
    db.session.flush()
    current_app.logger.info("tenant %s %s", t.slug, "blocked" if blocked else "unblocked")
    return t


def create_user(
    tenant: Tenant,
    email: str,
    password: str,
    *,
    name: str | None = None,
    role_name: str | None = None,
    is_superadmin: bool = False,
) -> User:
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if not password or len(password) < 6:
        raise ValidationError("Password must have at least 6 characters")
    if User.query.filter_by(tenant_id=tenant.id, email=email).first():
        raise ConflictError(f"User '{email}' already exists in this tenant")

    role = None
    if role_name:
        role = Role.query.filter_by(tenant_id=tenant.id, name=role_name).first()
        if not role:
            raise NotFoundError(f"Role '{role_name}' not found")

    user = User(tenant_id=tenant.id, email=email, name=name, role_id=role.id if role else None,
                is_superadmin=is_superadmin)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    return user
