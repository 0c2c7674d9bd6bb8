from __future__ import annotations

import re
from functools import wraps
from typing import Iterable

from flask_login import current_user, login_required

from storedash.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import Permission, Role, RolePermission, User

PERMISSION_RE = re.compile(r"^[a-z*][a-z0-9_-]*:[a-z*][a-z0-9_-]*$")


# -------------------------------------------------------------
# Checagem (resource:action com curingas)
# -------------------------------------------------------------
def permission_matches(granted: Iterable[str], required: str) -> bool:
    """
    True when ``required`` is covered by ``granted``.

    Wildcards: ``*:*`` grants everything, ``resource:*`` every action of a
    resource and ``*:action`` one action on every resource.
    """
    granted = set(granted or ())
    if required in granted or "*:*" in granted:
        return True
    resource, _, action = required.partition(":")
    return f"{resource}:*" in granted or f"*:{action}" in granted


def user_permissions(user: User | None) -> set[str]:
    if user is None or getattr(user, "role", None) is None:
        return set()
    return set(user.role.permission_names)


def user_roles(user: User | None) -> list[str]:
    if user is None:
        return []
    roles = []
    if getattr(user, "role", None) is not None:
        roles.append(user.role.name)
    if getattr(user, "is_superadmin", False):
        roles.append("superadmin")
    return roles


def user_has_permission(user: User | None, name: str) -> bool:
    if user is None:
        return False
    if getattr(user, "is_superadmin", False):
        return True
    return permission_matches(user_permissions(user), name)


def user_has_all(user: User | None, names: Iterable[str]) -> bool:
    return all(user_has_permission(user, n) for n in names)


def users_with_permission(tenant_id: int, name: str) -> list[User]:
    users = (
        User.query
        .filter(User.tenant_id == tenant_id, User.is_active.is_(True))
        .order_by(User.id)
        .all()
    )
    return [u for u in users if user_has_permission(u, name)]


def permission_required(*names: str):
    """View decorator: 401 without a session, 403 unless every name is granted."""
    def decorator(view):
        @wraps(view)
        @login_required
        def wrapper(*args, **kwargs):
            missing = [n for n in names if not user_has_permission(current_user, n)]
            if missing:
                raise ForbiddenError("Missing permission", details={"required": missing})
            return view(*args, **kwargs)
        return wrapper
    return decorator


# -------------------------------------------------------------
# Registro de permissões
# -------------------------------------------------------------
def validate_permission_name(name: str) -> str:
    name = (name or "").strip().lower()
    if not PERMISSION_RE.match(name):
        raise ValidationError(f"Invalid permission name: {name!r}")
    return name


def ensure_permission(name: str, description: str | None = None) -> Permission:
    name = validate_permission_name(name)
    perm = Permission.query.filter_by(name=name).first()
    if perm:
        return perm
    resource, _, action = name.partition(":")
    perm = Permission(name=name, resource=resource, action=action, description=description)
    db.session.add(perm)
    db.session.flush()
    return perm


def list_permissions() -> list[Permission]:
    return Permission.query.order_by(Permission.resource, Permission.action).all()


# -------------------------------------------------------------
# Roles
# -------------------------------------------------------------
def get_role(tenant_id: int, role_id: int) -> Role:
    role = Role.query.filter_by(tenant_id=tenant_id, id=role_id).first()
    if not role:
        raise NotFoundError("Role not found")
    return role


def list_roles(tenant_id: int) -> list[Role]:
    return Role.query.filter_by(tenant_id=tenant_id).order_by(Role.name).all()


def _name_taken(tenant_id: int, name: str, exclude_id: int | None = None) -> bool:
    q = Role.query.filter(Role.tenant_id == tenant_id, Role.name == name)
    if exclude_id:
        q = q.filter(Role.id != exclude_id)
    return db.session.query(q.exists()).scalar()


def create_role(
    tenant_id: int,
    name: str,
    description: str | None = None,
    permissions: Iterable[str] = (),
    *,
    is_system: bool = False,
) -> Role:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Role name is required")
    if _name_taken(tenant_id, name):
        raise ConflictError(f"Role '{name}' already exists")
    role = Role(tenant_id=tenant_id, name=name, description=description, is_system=is_system)
    db.session.add(role)
    db.session.flush()
    set_role_permissions(role, permissions)
    return role


def update_role(role: Role, data: dict) -> Role:
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Role name is required")
        if role.is_system and name != role.name:
            raise ValidationError("System roles cannot be renamed")
        if _name_taken(role.tenant_id, name, exclude_id=role.id):
            raise ConflictError(f"Role '{name}' already exists")
        role.name = name
    if "description" in data:
        role.description = data.get("description")
    if "permissions" in data:
        set_role_permissions(role, data.get("permissions") or [])
    db.session.flush()
    return role


def delete_role(role: Role) -> None:
    if role.is_system:
        raise ValidationError("System roles cannot be deleted")
    if role.users.count():
        raise ValidationError("Role is assigned to users")
    db.session.delete(role)
    db.session.flush()


def set_role_permissions(role: Role, names: Iterable[str]) -> Role:
    wanted = {validate_permission_name(n) for n in names}
    for rp in list(role.role_permissions):
        if rp.permission.name not in wanted:
            role.role_permissions.remove(rp)
    current = role.permission_names
    for n in sorted(wanted - current):
        perm = ensure_permission(n)
        role.role_permissions.append(RolePermission(permission_id=perm.id, permission=perm))
    db.session.flush()
    return role


def assign_permission(role: Role, name: str) -> Role:
    return set_role_permissions(role, role.permission_names | {validate_permission_name(name)})


def revoke_permission(role: Role, name: str) -> Role:
    return set_role_permissions(role, role.permission_names - {validate_permission_name(name)})


def assign_role(user: User, role: Role | None) -> User:
    if role is not None and role.tenant_id != user.tenant_id:
        raise ValidationError("Role belongs to another tenant")
    user.role = role
    db.session.flush()
    return user


def serialize_permission(p: Permission) -> dict:
    return {"id": p.id, "name": p.name, "resource": p.resource, "action": p.action, "description": p.description}


def serialize_role(role: Role) -> dict:
    return {
        "id": role.id,
        "name": role.name,
        "description": role.description,
        "is_system": role.is_system,
        "permissions": sorted(role.permission_names),
        "users": role.users.count(),
    }
