from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import or_

from storedash.errors import ForbiddenError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import User
from storedash.models_site import DashboardLayout, WidgetDefinition, WidgetInstance
from storedash.services.permissions import user_has_all

MAX_SCORE = 50

# palavra da consulta -> termos relacionados
INTENT_MAP = {
    "show": ["display", "view", "visualize", "chart", "graph"],
    "revenue": ["sales", "income", "earnings", "profit"],
    "time": ["timeline", "period", "date", "temporal", "trend"],
    "user": ["customer", "account", "profile", "member"],
    "data": ["information", "stats", "statistics", "metrics"],
    "list": ["table", "grid", "items", "records"],
    "create": ["add", "new", "make", "generate"],
    "edit": ["update", "modify", "change"],
    "analytics": ["analysis", "insights", "reports", "metrics"],
    "performance": ["speed", "efficiency", "optimization"],
}


def serialize(w: WidgetDefinition) -> dict[str, Any]:
    return {
        "id": w.id,
        "key": w.key,
        "name": w.name,
        "description": w.description,
        "category": w.category,
        "component": w.component,
        "tags": list(w.tags or []),
        "use_cases": list(w.use_cases or []),
        "config_schema": dict(w.config_schema or {}),
        "data_requirements": dict(w.data_requirements or {}),
        "examples": list(w.examples or []),
        "is_active": w.is_active,
    }


def serialize_instance(i: WidgetInstance) -> dict[str, Any]:
    return {
        "id": i.id,
        "widget_key": i.widget_key,
        "position": i.position,
        "col_span": i.col_span,
        "row_span": i.row_span,
        "config": dict(i.config or {}),
        "is_visible": i.is_visible,
    }


def serialize_layout(layout: DashboardLayout) -> dict[str, Any]:
    return {
        "id": layout.id,
        "page_id": layout.page_id,
        "name": layout.name,
        "scope": layout.scope,
        "user_id": layout.user_id,
        "is_default": layout.is_default,
        "widgets": [serialize_instance(i) for i in layout.widgets],
    }


# ============================ Catálogo ============================

def validate_config_schema(schema: Any) -> dict:
    if schema in (None, {}):
        return {}
    if not isinstance(schema, dict):
        raise ValidationError("config_schema must be an object")
    if not schema.get("type"):
        raise ValidationError("config_schema must declare a type")
    if schema["type"] == "object" and not isinstance(schema.get("properties"), dict):
        raise ValidationError("config_schema of type object must define properties")
    return schema


def _visible_to_tenant(tenant_id: int | None):
    if tenant_id is None:
        return WidgetDefinition.tenant_id.is_(None)
    return or_(WidgetDefinition.tenant_id.is_(None), WidgetDefinition.tenant_id == tenant_id)


def list_widgets(
    tenant_id: int | None = None,
    *,
    category: str | None = None,
    is_active: bool | None = None,
    tags: Iterable[str] | None = None,
    search: str | None = None,
) -> list[WidgetDefinition]:
    q = WidgetDefinition.query.filter(_visible_to_tenant(tenant_id))
    if category:
        q = q.filter(WidgetDefinition.category == category)
    if is_active is not None:
        q = q.filter(WidgetDefinition.is_active.is_(bool(is_active)))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(WidgetDefinition.name.ilike(like), WidgetDefinition.description.ilike(like)))
    rows = q.order_by(WidgetDefinition.category, WidgetDefinition.name).all()
    wanted = {t.lower() for t in (tags or []) if t}
    if wanted:
        rows = [w for w in rows if wanted & {t.lower() for t in (w.tags or [])}]
    return rows


def get_widget(key: str, tenant_id: int | None = None) -> WidgetDefinition:
    w = WidgetDefinition.query.filter(WidgetDefinition.key == key, _visible_to_tenant(tenant_id)).first()
    if not w:
        raise NotFoundError(f"Widget '{key}' not found")
    return w


def create_widget(data: dict, tenant_id: int | None = None) -> WidgetDefinition:
    key = (data.get("key") or "").strip()
    name = (data.get("name") or "").strip()
    if not key or not name:
        raise ValidationError("key and name are required")
    if WidgetDefinition.query.filter_by(key=key).first():
        raise ValidationError(f"Widget with key '{key}' already exists")
    w = WidgetDefinition(
        tenant_id=tenant_id,
        key=key,
        name=name,
        description=data.get("description") or "",
        category=data.get("category") or "general",
        component=data.get("component"),
        tags=list(data.get("tags") or []),
        use_cases=list(data.get("use_cases") or []),
        config_schema=validate_config_schema(data.get("config_schema")),
        data_requirements=dict(data.get("data_requirements") or {}),
        examples=list(data.get("examples") or []),
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(w)
    db.session.flush()
    return w


def update_widget(w: WidgetDefinition, data: dict) -> WidgetDefinition:
    for field in ("name", "description", "category", "component"):
        if field in data:
            setattr(w, field, data.get(field))
    for field in ("tags", "use_cases", "examples"):
        if field in data:
            setattr(w, field, list(data.get(field) or []))
    if "config_schema" in data:
        w.config_schema = validate_config_schema(data.get("config_schema"))
    if "data_requirements" in data:
        w.data_requirements = dict(data.get("data_requirements") or {})
    if "is_active" in data:
        w.is_active = bool(data["is_active"])
    db.session.flush()
    return w


def soft_delete(w: WidgetDefinition) -> WidgetDefinition:
    w.is_active = False
    db.session.flush()
    return w


def categories(tenant_id: int | None = None) -> list[str]:
    rows = (
        db.session.query(WidgetDefinition.category)
        .filter(_visible_to_tenant(tenant_id), WidgetDefinition.is_active.is_(True))
        .distinct()
        .all()
    )
    return sorted(r[0] for r in rows if r[0])


def filter_by_permissions(widgets: Iterable[WidgetDefinition], user: User) -> list[WidgetDefinition]:
    return [w for w in widgets if user_has_all(user, w.required_permissions)]


# ============================ Busca por intenção ============================

def _intent_keywords(query: str) -> list[str]:
    out: list[str] = []
    for word in query.split():
        out.extend(INTENT_MAP.get(word, []))
    return out


def score_widget(w: WidgetDefinition, query: str) -> int:
    q = query.lower().strip()
    words = [x for x in q.split() if len(x) > 2]
    name = (w.name or "").lower()
    desc = (w.description or "").lower()
    tags = [t.lower() for t in (w.tags or [])]
    use_cases = [u.lower() for u in (w.use_cases or [])]

    score = 0
    if name == q:
        score += 20
    elif q in name:
        score += 10
    score += 3 * sum(1 for word in words if word in name)

    if q in desc:
        score += 7
    score += 2 * sum(1 for word in words if word in desc)

    for tag in tags:
        if tag == q:
            score += 8
        elif q in tag:
            score += 4
    for uc in use_cases:
        if q in uc:
            score += 6

    if q in (w.category or "").lower():
        score += 2

    for kw in _intent_keywords(q):
        if kw in name or kw in desc or any(kw in t for t in tags) or any(kw in u for u in use_cases):
            score += 1
    return score


def search_by_intent(query: str, limit: int = 10, *, tenant_id: int | None = None, user: User | None = None) -> list[dict[str, Any]]:
    query = (query or "").strip()
    if not query:
        raise ValidationError("query is required")
    widgets = list_widgets(tenant_id, is_active=True)
    if user is not None:
        widgets = filter_by_permissions(widgets, user)
    scored = []
    for w in widgets:
        score = score_widget(w, query)
        if score <= 0:
            continue
        scored.append({
            "widget": serialize(w),
            "score": score,
            "relevance": min(100, round(score / MAX_SCORE * 100)),
        })
    scored.sort(key=lambda r: r["score"], reverse=True)
    return scored[:limit]


# ============================ Layouts ============================

def layout_for(user: User, page_id: str = "home") -> DashboardLayout | None:
    """The user's own layout wins over the tenant's global one."""
    own = DashboardLayout.query.filter_by(
        tenant_id=user.tenant_id, page_id=page_id, scope="user", user_id=user.id
    ).first()
    if own is not None:
        return own
    return (
        DashboardLayout.query
        .filter_by(tenant_id=user.tenant_id, page_id=page_id, scope="global")
        .order_by(DashboardLayout.is_default.desc(), DashboardLayout.id.asc())
        .first()
    )


def create_layout(user: User, data: dict) -> DashboardLayout:
    scope = data.get("scope") or "user"
    if scope not in ("global", "user"):
        raise ValidationError("scope must be global or user")
    page_id = (data.get("page_id") or "home").strip()
    if scope == "user":
        existing = DashboardLayout.query.filter_by(
            tenant_id=user.tenant_id, page_id=page_id, scope="user", user_id=user.id
        ).first()
        if existing:
            return existing
    layout = DashboardLayout(
        tenant_id=user.tenant_id,
        user_id=user.id if scope == "user" else None,
        page_id=page_id,
        name=data.get("name") or "Default",
        scope=scope,
        is_default=bool(data.get("is_default", scope == "global")),
    )
    db.session.add(layout)
    db.session.flush()
    return layout


def get_layout(user: User, layout_id: int) -> DashboardLayout:
    layout = DashboardLayout.query.filter_by(tenant_id=user.tenant_id, id=layout_id).first()
    if not layout:
        raise NotFoundError("Layout not found")
    if layout.scope == "user" and layout.user_id != user.id:
        raise ForbiddenError("Not your layout")
    return layout


def _span(value: Any, default: int, lo: int, hi: int, field: str) -> int:
    try:
        n = int(value if value is not None else default)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if not lo <= n <= hi:
        raise ValidationError(f"{field} must be between {lo} and {hi}")
    return n


def add_widget(user: User, layout: DashboardLayout, data: dict) -> WidgetInstance:
    key = data.get("widget_key")
    w = get_widget(key, user.tenant_id)
    if not w.is_active:
        raise ValidationError(f"Widget '{key}' is not active")
    if not user_has_all(user, w.required_permissions):
        raise ForbiddenError(f"Missing permissions for widget '{key}'")
    position = data.get("position")
    if position is None:
        position = max((i.position for i in layout.widgets), default=-1) + 1
    inst = WidgetInstance(
        widget_key=w.key,
        position=int(position),
        col_span=_span(data.get("col_span"), 4, 1, 12, "col_span"),
        row_span=_span(data.get("row_span"), 1, 1, 12, "row_span"),
        config=dict(data.get("config") or {}),
        is_visible=bool(data.get("is_visible", True)),
    )
    layout.widgets.append(inst)
    db.session.flush()
    return inst


def _instance(layout: DashboardLayout, instance_id: int) -> WidgetInstance:
    for i in layout.widgets:
        if i.id == instance_id:
            return i
    raise NotFoundError("Widget instance not found")


def update_widget_instance(layout: DashboardLayout, instance_id: int, data: dict) -> WidgetInstance:
    inst = _instance(layout, instance_id)
    if "position" in data:
        inst.position = int(data["position"])
    if "col_span" in data:
        inst.col_span = _span(data["col_span"], 4, 1, 12, "col_span")
    if "row_span" in data:
        inst.row_span = _span(data["row_span"], 1, 1, 12, "row_span")
    if "config" in data:
        inst.config = dict(data.get("config") or {})
    if "is_visible" in data:
        inst.is_visible = bool(data["is_visible"])
    db.session.flush()
    return inst


def remove_widget(layout: DashboardLayout, instance_id: int) -> None:
    layout.widgets.remove(_instance(layout, instance_id))
    db.session.flush()


def reorder_widgets(layout: DashboardLayout, instance_ids: list[int]) -> DashboardLayout:
    current = {i.id: i for i in layout.widgets}
    if sorted(instance_ids) != sorted(current):
        raise ValidationError("instance_ids must list every widget of the layout exactly once")
    for pos, iid in enumerate(instance_ids):
        current[iid].position = pos
    db.session.flush()
    db.session.expire(layout, ["widgets"])
    return layout


def reset_user_layout(user: User, page_id: str = "home") -> DashboardLayout | None:
    own = DashboardLayout.query.filter_by(
        tenant_id=user.tenant_id, page_id=page_id, scope="user", user_id=user.id
    ).first()
    if own is not None:
        db.session.delete(own)
        db.session.flush()
    return layout_for(user, page_id)


def available_widgets(user: User, page_id: str = "home") -> list[WidgetDefinition]:
    """Active widgets the user may use that are not on the current layout yet."""
    layout = layout_for(user, page_id)
    used = {i.widget_key for i in layout.widgets} if layout else set()
    widgets = filter_by_permissions(list_widgets(user.tenant_id, is_active=True), user)
    return [w for w in widgets if w.key not in used]
