# storedash/api/routes_content.py
from __future__ import annotations

from flask import g, jsonify, request
from flask_login import current_user

from storedash.errors import ValidationError
from storedash.extensions import db
from storedash.services import blog, landing
from storedash.services.permissions import permission_required
from storedash.utils import json_body, page_args, to_int
from . import api_bp


# =====================================================================
# BLOG
# =====================================================================
@api_bp.get("/blog/posts")
@permission_required("blog:read")
def blog_list():
    page, limit = page_args()
    a = request.args
    return jsonify(blog.list_posts(
        g.tenant.id,
        status=a.get("status"),
        category=a.get("category"),
        tag=a.get("tag"),
        search=a.get("search"),
        page=page,
        limit=limit,
    ))


@api_bp.get("/blog/posts/validate-slug")
@permission_required("blog:read")
def blog_validate_slug():
    exclude = request.args.get("exclude_id")
    return jsonify(blog.validate_slug(
        g.tenant.id,
        request.args.get("slug") or "",
        exclude_id=to_int(exclude, "exclude_id") if exclude else None,
    ))


@api_bp.post("/blog/posts")
@permission_required("blog:create")
def blog_create():
    p = blog.create_post(g.tenant.id, json_body(), author=current_user)
    db.session.commit()
    return jsonify(blog.serialize(p)), 201


@api_bp.get("/blog/posts/<int:post_id>")
@permission_required("blog:read")
def blog_get(post_id: int):
    return jsonify(blog.serialize(blog.get_post(g.tenant.id, post_id)))


@api_bp.put("/blog/posts/<int:post_id>")
@permission_required("blog:update")
def blog_update(post_id: int):
    p = blog.update_post(blog.get_post(g.tenant.id, post_id), json_body())
    db.session.commit()
    return jsonify(blog.serialize(p))


@api_bp.post("/blog/posts/<int:post_id>/<action>")
@permission_required("blog:update")
def blog_transition(post_id: int, action: str):
    handlers = {"publish": blog.publish, "unpublish": blog.unpublish, "archive": blog.archive}
    if action not in handlers:
        raise ValidationError(f"Unknown action: {action}")
    p = handlers[action](blog.get_post(g.tenant.id, post_id))
    db.session.commit()
    return jsonify(blog.serialize(p))


@api_bp.delete("/blog/posts/<int:post_id>")
@permission_required("blog:delete")
def blog_delete(post_id: int):
    blog.delete_post(blog.get_post(g.tenant.id, post_id))
    db.session.commit()
    return jsonify({"ok": True})


@api_bp.get("/blog/categories")
@permission_required("blog:read")
def blog_categories():
    return jsonify({"data": blog.list_categories(g.tenant.id)})


@api_bp.put("/blog/categories/<path:name>")
@permission_required("blog:update")
def blog_category_rename(name: str):
    moved = blog.rename_category(g.tenant.id, name, json_body().get("name"))
    db.session.commit()
    return jsonify({"updated": moved})


@api_bp.delete("/blog/categories/<path:name>")
@permission_required("blog:update")
def blog_category_remove(name: str):
    moved = blog.remove_category(g.tenant.id, name)
    db.session.commit()
    return jsonify({"updated": moved})


@api_bp.get("/blog/tags")
@permission_required("blog:read")
def blog_tags():
    return jsonify({"data": blog.list_tags(g.tenant.id)})


@api_bp.put("/blog/tags/<path:name>")
@permission_required("blog:update")
def blog_tag_rename(name: str):
    moved = blog.rename_tag(g.tenant.id, name, json_body().get("name"))
    db.session.commit()
    return jsonify({"updated": moved})


@api_bp.delete("/blog/tags/<path:name>")
@permission_required("blog:update")
def blog_tag_remove(name: str):
    moved = blog.remove_tag(g.tenant.id, name)
    db.session.commit()
    return jsonify({"updated": moved})


# =====================================================================
# LANDING PAGES
# =====================================================================
@api_bp.get("/landing-pages")
@permission_required("landing:read")
def landing_list():
    page, limit = page_args()
    return jsonify(landing.list_pages(g.tenant.id, page=page, limit=limit))


@api_bp.post("/landing-pages")
@permission_required("landing:create")
def landing_create():
    p = landing.create_page(g.tenant.id, json_body())
    db.session.commit()
    return jsonify(landing.serialize(p)), 201


@api_bp.get("/landing-pages/<int:page_id>")
@permission_required("landing:read")
def landing_get(page_id: int):
    return jsonify(landing.serialize(landing.get_page(g.tenant.id, page_id)))


@api_bp.put("/landing-pages/<int:page_id>")
@permission_required("landing:update")
def landing_update(page_id: int):
    p = landing.update_page(landing.get_page(g.tenant.id, page_id), json_body())
    db.session.commit()
    return jsonify(landing.serialize(p))


@api_bp.post("/landing-pages/<int:page_id>/publish")
@permission_required("landing:update")
def landing_publish(page_id: int):
    p = landing.publish(landing.get_page(g.tenant.id, page_id))
    db.session.commit()
    return jsonify(landing.serialize(p))


@api_bp.post("/landing-pages/<int:page_id>/unpublish")
@permission_required("landing:update")
def landing_unpublish(page_id: int):
    p = landing.unpublish(landing.get_page(g.tenant.id, page_id))
    db.session.commit()
    return jsonify(landing.serialize(p))


@api_bp.post("/landing-pages/<int:page_id>/reorder")
@permission_required("landing:update")
def landing_reorder(page_id: int):
    ids = json_body().get("section_ids")
    if not isinstance(ids, list):
        raise ValidationError("section_ids must be a list")
    p = landing.reorder_sections(landing.get_page(g.tenant.id, page_id), ids)
    db.session.commit()
    return jsonify(landing.serialize(p))


@api_bp.get("/landing-pages/<int:page_id>/analytics")
@permission_required("landing:read")
def landing_analytics(page_id: int):
    days = to_int(request.args.get("days"), "days", default=30, minimum=1)
    return jsonify(landing.analytics(landing.get_page(g.tenant.id, page_id), days))


@api_bp.delete("/landing-pages/<int:page_id>")
@permission_required("landing:delete")
def landing_delete(page_id: int):
    landing.delete_page(landing.get_page(g.tenant.id, page_id))
    db.session.commit()
    return jsonify({"ok": True})
