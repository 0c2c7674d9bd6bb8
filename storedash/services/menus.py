from __future__ import annotations

from typing import Any, Iterable

from storedash.errors import ConflictError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import User
from storedash.models_shop import EcommerceSettings
from storedash.models_site import DashboardMenu
from storedash.services.permissions import permission_matches, user_permissions, user_roles

# flag -> leitura a partir das configurações da loja
FEATURE_FLAGS = {
    "ecommerce_enabled": lambda s: True,
    "inventory_enabled": lambda s: bool(s.track_inventory),
    "shipping_enabled": lambda s: bool(s.shipping_enabled),
    "cod_enabled": lambda s: bool(s.cod_enabled),
    "portal_enabled": lambda s: bool(s.portal_enabled),
}


def serialize(m: DashboardMenu, children: list[dict] | None = None) -> dict[str, Any]:
    data = {
        "id": m.id,
        "key": m.key,
        "label": m.label,
        "icon": m.icon,
        "route": m.route,
        "parent_id": m.parent_id,
        "order": m.order,
        "is_active": m.is_active,
        "required_roles": list(m.required_roles or []),
        "required_permissions": list(m.required_permissions or []),
        "feature_flag": m.feature_flag,
        "page_type": m.page_type,
        "badge": m.badge,
    }
    if children is not None:
        data["children"] = children
    return data


# ============================ Filtros puros ============================

def filter_by_role(menus: Iterable[DashboardMenu], roles: Iterable[str]) -> list[DashboardMenu]:
    roles = set(roles)
    return [m for m in menus if not m.required_roles or roles.intersection(m.required_roles)]


def filter_by_permission(menus: Iterable[DashboardMenu], permissions: Iterable[str]) -> list[DashboardMenu]:
    granted = set(permissions)
    return [
        m for m in menus
        if all(permission_matches(granted, p) for p in (m.required_permissions or []))
    ]


def filter_by_feature_flags(menus: Iterable[DashboardMenu], settings: EcommerceSettings | None) -> list[DashboardMenu]:
    out = []
    for m in menus:
        if not m.feature_flag:
            out.append(m)
            continue
        check = FEATURE_FLAGS.get(m.feature_flag)
        if check is None or settings is None:
            continue
        if check(settings):
            out.append(m)
    return out


def sort_by_order(menus: Iterable[DashboardMenu]) -> list[DashboardMenu]:
    return sorted(menus, key=lambda m: (m.order or 0, m.id or 0))


def build_hierarchy(menus: Iterable[DashboardMenu]) -> list[dict[str, Any]]:
    menus = sort_by_order(menus)
    ids = {m.id for m in menus}
    children: dict[int, list[DashboardMenu]] = {}
    roots = []
    for m in menus:
        if m.parent_id and m.parent_id in ids:
            children.setdefault(m.parent_id, []).append(m)
        else:
            roots.append(m)  # órfãos sobem para a raiz

    def build(m: DashboardMenu) -> dict[str, Any]:
        return serialize(m, [build(c) for c in children.get(m.id, [])])

    return [build(m) for m in roots]


def cascade_visibility(visible: Iterable[DashboardMenu], all_menus: Iterable[DashboardMenu]) -> list[DashboardMenu]:
    """Drops items whose parent chain contains a hidden item."""
    visible = list(visible)
    visible_ids = {m.id for m in visible}
    by_id = {m.id: m for m in all_menus}

    def ancestors_visible(m: DashboardMenu) -> bool:
        seen = set()
        parent_id = m.parent_id
        while parent_id and parent_id not in seen:
            seen.add(parent_id)
            if parent_id in by_id and parent_id not in visible_ids:
                return False
            parent = by_id.get(parent_id)
            parent_id = parent.parent_id if parent else None
        return True

    return [m for m in visible if ancestors_visible(m)]


# ============================ Consultas ============================

def list_all(tenant_id: int) -> list[DashboardMenu]:
    return sort_by_order(DashboardMenu.query.filter_by(tenant_id=tenant_id).all())


def user_menus(user: User) -> list[dict[str, Any]]:
    all_menus = DashboardMenu.query.filter_by(tenant_id=user.tenant_id).all()
    items = [m for m in all_menus if m.is_active]
    if not getattr(user, "is_superadmin", False):
        items = filter_by_role(items, user_roles(user))
        items = filter_by_permission(items, user_permissions(user))
    settings = EcommerceSettings.query.filter_by(tenant_id=user.tenant_id).first()
    items = filter_by_feature_flags(items, settings)
    items = cascade_visibility(items, all_menus)
    return build_hierarchy(items)


def get_menu(tenant_id: int, menu_id: int) -> DashboardMenu:
    m = DashboardMenu.query.filter_by(tenant_id=tenant_id, id=menu_id).first()
    if not m:
        raise NotFoundError("Menu not found")
    return m


def get_by_route(tenant_id: int, route: str) -> DashboardMenu:
    m = DashboardMenu.query.filter_by(tenant_id=tenant_id, route=route).first()
    if not m:
        raise NotFoundError("Menu not found")
    return m


# ============================ Escrita ============================

def _string_list(value: Any, field: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be a list")
    return [str(v) for v in value]


def _apply(m: DashboardMenu, data: dict) -> None:
    for field in ("label", "icon", "route", "feature_flag", "page_type", "badge"):
        if field in data:
            setattr(m, field, data.get(field))
    if "order" in data:
        m.order = int(data.get("order") or 0)
    if "is_active" in data:
        m.is_active = bool(data["is_active"])
    if "required_roles" in data:
        m.required_roles = _string_list(data.get("required_roles"), "required_roles")
    if "required_permissions" in data:
        m.required_permissions = _string_list(data.get("required_permissions"), "required_permissions")
    if m.feature_flag and m.feature_flag not in FEATURE_FLAGS:
        raise ValidationError(f"Unknown feature flag: {m.feature_flag}")


def create_menu(tenant_id: int, data: dict) -> DashboardMenu:
    key = (data.get("key") or "").strip()
    label = (data.get("label") or "").strip()
    if not key or not label:
        raise ValidationError("key and label are required")
    if DashboardMenu.query.filter_by(tenant_id=tenant_id, key=key).first():
        raise ConflictError(f"Menu with key '{key}' already exists")
    parent_id = data.get("parent_id")
    if parent_id is not None:
        get_menu(tenant_id, parent_id)
    m = DashboardMenu(tenant_id=tenant_id, key=key, label=label, parent_id=parent_id)
    _apply(m, data)
    db.session.add(m)
    db.session.flush()
    return m


def update_menu(m: DashboardMenu, data: dict) -> DashboardMenu:
    if "key" in data and data["key"] != m.key:
        key = (data.get("key") or "").strip()
        if not key:
            raise ValidationError("key is required")
        if DashboardMenu.query.filter(
            DashboardMenu.tenant_id == m.tenant_id, DashboardMenu.key == key, DashboardMenu.id != m.id
        ).first():
            raise ConflictError(f"Menu with key '{key}' already exists")
        m.key = key
    if "parent_id" in data:
        parent_id = data.get("parent_id")
        if parent_id is not None:
            if parent_id == m.id:
                raise ValidationError("A menu cannot be its own parent")
            parent = get_menu(m.tenant_id, parent_id)
            seen = set()
            while parent is not None and parent.id not in seen:
                if parent.parent_id == m.id:
                    raise ValidationError("Parent assignment would create a cycle")
                seen.add(parent.id)
                parent = db.session.get(DashboardMenu, parent.parent_id) if parent.parent_id else None
        m.parent_id = parent_id
    if "label" in data and not (data.get("label") or "").strip():
        raise ValidationError("label is required")
    _apply(m, data)
    db.session.flush()
    return m


def delete_menu(m: DashboardMenu) -> None:
    if DashboardMenu.query.filter_by(tenant_id=m.tenant_id, parent_id=m.id).count():
        raise ValidationError("Cannot delete a menu that has children")
    db.session.delete(m)
    db.session.flush()


def reorder(tenant_id: int, items: list[dict]) -> list[DashboardMenu]:
    """``items`` = [{id, order}]; every id must exist."""
    ids = [int(i.get("id")) for i in items]
    rows = {m.id: m for m in DashboardMenu.query.filter(
        DashboardMenu.tenant_id == tenant_id, DashboardMenu.id.in_(ids)
    ).all()}
    missing = [i for i in ids if i not in rows]
    if missing:
        raise NotFoundError("Menus not found", details={"ids": missing})
    for item in items:
        rows[int(item["id"])].order = int(item.get("order") or 0)
    db.session.flush()
    return sort_by_order(rows.values())


def toggle_active(m: DashboardMenu) -> DashboardMenu:
    m.is_active = not m.is_active
    db.session.flush()
    return m
