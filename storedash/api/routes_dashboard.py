# storedash/api/routes_dashboard.py
from __future__ import annotations

from flask import g, jsonify, request
from flask_login import current_user

from storedash.errors import ForbiddenError, ValidationError
from storedash.extensions import db
from storedash.services import activity_log, dashboard, menus, search, tenants, users, widgets
from storedash.services import permissions as perms
from storedash.services.permissions import permission_required
from storedash.utils import as_bool, json_body, page_args, to_int
from . import api_bp


def _list_body(key: str) -> list:
    value = json_body().get(key)
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list")
    return value


# =====================================================================
# DASHBOARD / BUSCA
# =====================================================================
@api_bp.get("/dashboard/stats")
@permission_required("dashboard:read")
def dashboard_stats():
    out = dashboard.stats(g.tenant, current_user)
    db.session.commit()
    return jsonify(out)


@api_bp.get("/search")
@permission_required("search:read")
def search_all():
    search.enforce_rate_limit(current_user)
    page, limit = page_args()
    a = request.args
    out = search.search(
        current_user,
        a.get("q"),
        type=a.get("type") or "all",
        page=page,
        limit=limit,
        sort_by=a.get("sort_by") or "relevance",
    )
    db.session.commit()
    return jsonify(out)


@api_bp.get("/search/quick")
@permission_required("search:read")
def search_quick():
    search.enforce_rate_limit(current_user)
    return jsonify({"results": search.quick_search(current_user, request.args.get("q"))})


# =====================================================================
# MENUS
# =====================================================================
@api_bp.get("/menus")
@permission_required("menus:read")
def menus_all():
    return jsonify({"data": [menus.serialize(m) for m in menus.list_all(g.tenant.id)]})


@api_bp.get("/menus/mine")
@permission_required("dashboard:read")
def menus_mine():
    return jsonify({"data": menus.user_menus(current_user)})


@api_bp.get("/menus/by-route")
@permission_required("menus:read")
def menus_by_route():
    return jsonify(menus.serialize(menus.get_by_route(g.tenant.id, request.args.get("route") or "")))


@api_bp.post("/menus")
@permission_required("menus:create")
def menus_create():
    m = menus.create_menu(g.tenant.id, json_body())
    db.session.commit()
    return jsonify(menus.serialize(m)), 201


@api_bp.put("/menus/<int:menu_id>")
@permission_required("menus:update")
def menus_update(menu_id: int):
    m = menus.update_menu(menus.get_menu(g.tenant.id, menu_id), json_body())
    db.session.commit()
    return jsonify(menus.serialize(m))


@api_bp.post("/menus/<int:menu_id>/toggle")
@permission_required("menus:update")
def menus_toggle(menu_id: int):
    m = menus.toggle_active(menus.get_menu(g.tenant.id, menu_id))
    db.session.commit()
    return jsonify(menus.serialize(m))


@api_bp.post("/menus/reorder")
@permission_required("menus:update")
def menus_reorder():
    rows = menus.reorder(g.tenant.id, _list_body("items"))
    db.session.commit()
    return jsonify({"data": [menus.serialize(m) for m in rows]})


@api_bp.delete("/menus/<int:menu_id>")
@permission_required("menus:delete")
def menus_delete(menu_id: int):
    menus.delete_menu(menus.get_menu(g.tenant.id, menu_id))
    db.session.commit()
    return jsonify({"ok": True})


# =====================================================================
# WIDGETS
# =====================================================================
@api_bp.get("/widgets")
@permission_required("widgets:read")
def widgets_list():
    a = request.args
    is_active = a.get("is_active")
    rows = widgets.list_widgets(
        g.tenant.id,
        category=a.get("category"),
        is_active=as_bool(is_active) if is_active not in (None, "") else None,
        tags=[t for t in (a.get("tags") or "").split(",") if t],
        search=a.get("search"),
    )
    return jsonify({"data": [widgets.serialize(w) for w in rows]})


@api_bp.get("/widgets/categories")
@permission_required("widgets:read")
def widgets_categories():
    return jsonify({"data": widgets.categories(g.tenant.id)})


@api_bp.get("/widgets/search")
@permission_required("widgets:read")
def widgets_search():
    limit = to_int(request.args.get("limit"), "limit", default=10, minimum=1)
    hits = widgets.search_by_intent(request.args.get("q") or "", limit, tenant_id=g.tenant.id, user=current_user)
    return jsonify({"data": hits})


@api_bp.get("/widgets/<key>")
@permission_required("widgets:read")
def widgets_get(key: str):
    return jsonify(widgets.serialize(widgets.get_widget(key, g.tenant.id)))


@api_bp.post("/widgets")
@permission_required("widgets:create")
def widgets_create():
    w = widgets.create_widget(json_body(), g.tenant.id)
    db.session.commit()
    return jsonify(widgets.serialize(w)), 201


@api_bp.put("/widgets/<key>")
@permission_required("widgets:update")
def widgets_update(key: str):
    w = widgets.update_widget(widgets.get_widget(key, g.tenant.id), json_body())
    db.session.commit()
    return jsonify(widgets.serialize(w))


@api_bp.delete("/widgets/<key>")
@permission_required("widgets:delete")
def widgets_delete(key: str):
    w = widgets.soft_delete(widgets.get_widget(key, g.tenant.id))
    db.session.commit()
    return jsonify(widgets.serialize(w))


# ---------------- Layouts ----------------
@api_bp.get("/layouts/<page_id>")
@permission_required("dashboard:read")
def layouts_get(page_id: str):
    layout = widgets.layout_for(current_user, page_id)
    return jsonify(widgets.serialize_layout(layout) if layout else None)


@api_bp.get("/layouts/<page_id>/available-widgets")
@permission_required("dashboard:read")
def layouts_available(page_id: str):
    return jsonify({"data": [widgets.serialize(w) for w in widgets.available_widgets(current_user, page_id)]})


@api_bp.post("/layouts")
@permission_required("dashboard:read")
def layouts_create():
    data = json_body()
    if data.get("scope") == "global" and not perms.user_has_permission(current_user, "widgets:update"):
        raise ForbiddenError("Global layouts need widgets:update", details={"required": ["widgets:update"]})
    layout = widgets.create_layout(current_user, data)
    db.session.commit()
    return jsonify(widgets.serialize_layout(layout)), 201


@api_bp.post("/layouts/<int:layout_id>/widgets")
@permission_required("dashboard:read")
def layouts_add_widget(layout_id: int):
    layout = widgets.get_layout(current_user, layout_id)
    inst = widgets.add_widget(current_user, layout, json_body())
    db.session.commit()
    return jsonify(widgets.serialize_instance(inst)), 201


@api_bp.put("/layouts/<int:layout_id>/widgets/<int:instance_id>")
@permission_required("dashboard:read")
def layouts_update_widget(layout_id: int, instance_id: int):
    layout = widgets.get_layout(current_user, layout_id)
    inst = widgets.update_widget_instance(layout, instance_id, json_body())
    db.session.commit()
    return jsonify(widgets.serialize_instance(inst))


@api_bp.delete("/layouts/<int:layout_id>/widgets/<int:instance_id>")
@permission_required("dashboard:read")
def layouts_remove_widget(layout_id: int, instance_id: int):
    widgets.remove_widget(widgets.get_layout(current_user, layout_id), instance_id)
    db.session.commit()
    return jsonify({"ok": True})


@api_bp.post("/layouts/<int:layout_id>/reorder")
@permission_required("dashboard:read")
def layouts_reorder(layout_id: int):
    ids = [int(i) for i in _list_body("instance_ids")]
    layout = widgets.reorder_widgets(widgets.get_layout(current_user, layout_id), ids)
    db.session.commit()
    return jsonify(widgets.serialize_layout(layout))


@api_bp.post("/layouts/<page_id>/reset")
@permission_required("dashboard:read")
def layouts_reset(page_id: str):
    layout = widgets.reset_user_layout(current_user, page_id)
    db.session.commit()
    return jsonify(widgets.serialize_layout(layout) if layout else None)


# =====================================================================
# ACTIVITY LOG
# =====================================================================
@api_bp.get("/activity")
@permission_required("activity:read")
def activity_list():
    page, limit = page_args()
    a = request.args
    user_id = a.get("user_id")
    return jsonify(activity_log.list_logs(
        g.tenant.id,
        user_id=to_int(user_id, "user_id") if user_id else None,
        action=a.get("action"),
        entity_type=a.get("entity_type"),
        entity_id=a.get("entity_id"),
        date_from=a.get("date_from"),
        date_to=a.get("date_to"),
        page=page,
        limit=limit,
    ))


# =====================================================================
# ROLES / PERMISSIONS / USERS
# =====================================================================
@api_bp.get("/permissions")
@permission_required("roles:read")
def permissions_list():
    return jsonify({"data": [perms.serialize_permission(p) for p in perms.list_permissions()]})


@api_bp.get("/roles")
@permission_required("roles:read")
def roles_list():
    return jsonify({"data": [perms.serialize_role(r) for r in perms.list_roles(g.tenant.id)]})


@api_bp.post("/roles")
@permission_required("roles:create")
def roles_create():
    data = json_body()
    role = perms.create_role(g.tenant.id, data.get("name"), data.get("description"), data.get("permissions") or [])
    db.session.commit()
    return jsonify(perms.serialize_role(role)), 201


@api_bp.put("/roles/<int:role_id>")
@permission_required("roles:update")
def roles_update(role_id: int):
    role = perms.update_role(perms.get_role(g.tenant.id, role_id), json_body())
    db.session.commit()
    return jsonify(perms.serialize_role(role))


@api_bp.post("/roles/<int:role_id>/permissions")
@permission_required("roles:update")
def roles_assign_permission(role_id: int):
    role = perms.assign_permission(perms.get_role(g.tenant.id, role_id), json_body().get("permission") or "")
    db.session.commit()
    return jsonify(perms.serialize_role(role))


@api_bp.delete("/roles/<int:role_id>/permissions/<path:name>")
@permission_required("roles:update")
def roles_revoke_permission(role_id: int, name: str):
    role = perms.revoke_permission(perms.get_role(g.tenant.id, role_id), name)
    db.session.commit()
    return jsonify(perms.serialize_role(role))


@api_bp.delete("/roles/<int:role_id>")
@permission_required("roles:delete")
def roles_delete(role_id: int):
    perms.delete_role(perms.get_role(g.tenant.id, role_id))
    db.session.commit()
    return jsonify({"ok": True})


@api_bp.get("/users")
@permission_required("users:read")
def users_list():
    page, limit = page_args()
    a = request.args
    role_id = a.get("role_id")
    return jsonify(users.list_users(
        g.tenant.id,
        search=a.get("search"),
        role_id=to_int(role_id, "role_id") if role_id else None,
        is_active=a.get("is_active"),
        page=page,
        limit=limit,
    ))


@api_bp.get("/users/<int:user_id>")
@permission_required("users:read")
def users_get(user_id: int):
    return jsonify(users.serialize(users.get_user(g.tenant.id, user_id), with_permissions=True))


@api_bp.put("/users/<int:user_id>")
@permission_required("users:update")
def users_update(user_id: int):
    u = users.update_user(users.get_user(g.tenant.id, user_id), json_body(), acting=current_user)
    db.session.commit()
    return jsonify(users.serialize(u))


@api_bp.post("/users")
@permission_required("users:create")
def users_create():
    data = json_body()
    u = tenants.create_user(
        g.tenant,
        data.get("email"),
        data.get("password"),
        name=data.get("name"),
        role_name=data.get("role"),
    )
    db.session.commit()
    return jsonify(users.serialize(u)), 201
