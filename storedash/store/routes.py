# storedash/store/routes.py
from __future__ import annotations

from flask import abort, current_app, g, jsonify, request
from flask_login import current_user

from storedash.errors import NotFoundError, ValidationError
from storedash.extensions import db
from storedash.services import blog, cart as cart_svc, categories, checkout, landing, orders, products
from storedash.tenant_scope import bind_tenant_urls
from storedash.utils import json_body, page_args, to_int
from . import store_bp

bind_tenant_urls(store_bp)

# rotas que seguem no ar mesmo com a loja desligada
_CONTENT_ENDPOINTS = {"blog_list", "blog_post", "blog_taxonomy", "landing_page"}


@store_bp.before_request
def require_portal():
    endpoint = (request.endpoint or "").split(".")[-1]
    if endpoint in _CONTENT_ENDPOINTS:
        return
    settings = checkout.get_settings(g.tenant.id)
    if settings is not None and not settings.portal_enabled:
        abort(404)


def _customer_id() -> int | None:
    if current_user.is_authenticated and current_user.tenant_id == g.tenant.id:
        return current_user.id
    return None


def _session_id() -> str | None:
    return (request.headers.get("X-Session-Id") or "").strip() or None


def _current_cart():
    user_id = _customer_id()
    session_id = _session_id()
    if not user_id and not session_id:
        raise ValidationError("X-Session-Id header is required for guest carts")
    return cart_svc.get_or_create(g.tenant.id, session_id=session_id, user_id=user_id)


# ---------------- Catálogo ----------------
@store_bp.get("/products")
def product_list():
    page, limit = page_args()
    return jsonify(products.list_products(
        g.tenant.id,
        search=request.args.get("search"),
        category_slug=request.args.get("category"),
        sort=request.args.get("sort", "created_at"),
        order=request.args.get("order", "desc"),
        page=page,
        limit=limit,
        published_only=True,
    ))


@store_bp.get("/products/<slug>")
def product_detail(slug: str):
    return jsonify(products.serialize(products.get_product_by_slug(g.tenant.id, slug)))


@store_bp.get("/products/<slug>/related")
def product_related(slug: str):
    product = products.get_product_by_slug(g.tenant.id, slug)
    limit = to_int(request.args.get("limit"), "limit", default=6, minimum=1)
    return jsonify({"data": [products.serialize(p) for p in categories.related_products(product, min(limit, 24))]})


@store_bp.get("/categories")
def category_list():
    return jsonify({"data": categories.list_categories(g.tenant.id, visible_only=True)})


@store_bp.get("/categories/<slug>/products")
def category_products(slug: str):
    category = categories.get_by_slug(g.tenant.id, slug, visible_only=True)
    page, limit = page_args()
    out = products.list_products(
        g.tenant.id,
        category_id=category.id,
        sort=request.args.get("sort", "created_at"),
        order=request.args.get("order", "desc"),
        page=page,
        limit=limit,
        published_only=True,
    )
    out["category"] = categories.serialize(category)
    return jsonify(out)


# ---------------- Carrinho ----------------
@store_bp.get("/cart")
def cart_get():
    cart = _current_cart()
    db.session.commit()
    return jsonify(cart_svc.serialize(cart))


@store_bp.post("/cart/items")
def cart_add():
    data = json_body()
    cart = _current_cart()
    variant_id = data.get("variant_id")
    cart_svc.add_item(
        cart,
        to_int(data.get("product_id"), "product_id"),
        to_int(data.get("quantity"), "quantity", default=1, minimum=1),
        to_int(variant_id, "variant_id") if variant_id is not None else None,
    )
    db.session.commit()
    return jsonify(cart_svc.serialize(cart)), 201


@store_bp.put("/cart/items/<int:item_id>")
def cart_update(item_id: int):
    cart = _current_cart()
    cart_svc.update_quantity(cart, item_id, to_int(json_body().get("quantity"), "quantity", minimum=0))
    db.session.commit()
    return jsonify(cart_svc.serialize(cart))


@store_bp.delete("/cart/items/<int:item_id>")
def cart_remove(item_id: int):
    cart = _current_cart()
    cart_svc.remove_item(cart, item_id)
    db.session.commit()
    return jsonify(cart_svc.serialize(cart))


@store_bp.delete("/cart")
def cart_clear():
    cart = _current_cart()
    cart_svc.clear(cart)
    db.session.commit()
    return jsonify(cart_svc.serialize(cart))


@store_bp.get("/cart/validate")
def cart_validate():
    cart = _current_cart()
    problems = cart_svc.validate_inventory(cart)
    return jsonify({"valid": not problems, "errors": problems})


# ---------------- Checkout ----------------
@store_bp.get("/checkout/options")
def checkout_options():
    tid = g.tenant.id
    return jsonify({
        "shipping_methods": [checkout.serialize_shipping_method(m) for m in checkout.list_shipping_methods(tid)],
        "payment_methods": [checkout.serialize_payment_method(m) for m in checkout.list_payment_methods(tid)],
    })


@store_bp.post("/checkout/totals")
def checkout_totals():
    return jsonify(checkout.totals_for(_current_cart(), json_body()))


@store_bp.post("/checkout/validate")
def checkout_validate():
    return jsonify(checkout.validate_checkout(_current_cart(), json_body()))


@store_bp.post("/checkout")
def checkout_place():
    cart = _current_cart()
    user = current_user if _customer_id() else None
    order = checkout.create_order_from_cart(cart, json_body(), user=user)
    db.session.commit()
    current_app.logger.info("order %s placed on tenant %s", order.order_number, g.tenant.slug)
    return jsonify(orders.serialize(order)), 201


@store_bp.get("/orders/<number>")
def order_lookup(number: str):
    email = (request.args.get("email") or "").strip().lower()
    order = orders.get_by_number(g.tenant.id, number)
    own = _customer_id() is not None and order.user_id == _customer_id()
    if not own and (not email or (order.customer_email or "").lower() != email):
        raise NotFoundError("Order not found")
    return jsonify(orders.serialize(order))


# ---------------- Conteúdo ----------------
@store_bp.get("/blog")
def blog_list():
    page, limit = page_args()
    a = request.args
    return jsonify(blog.list_published(
        g.tenant.id,
        category=a.get("category"),
        tag=a.get("tag"),
        search=a.get("search"),
        page=page,
        limit=limit,
    ))


@store_bp.get("/blog/taxonomy")
def blog_taxonomy():
    return jsonify({
        "categories": blog.list_categories(g.tenant.id, published_only=True),
        "tags": blog.list_tags(g.tenant.id, published_only=True),
    })


@store_bp.get("/blog/<slug>")
def blog_post(slug: str):
    return jsonify(blog.serialize(blog.find_by_slug(g.tenant.id, slug)))


@store_bp.get("/pages/<slug>")
def landing_page(slug: str):
    page = landing.get_public(g.tenant.id, slug)
    landing.record_view(
        page,
        session_id=_session_id(),
        referrer=request.referrer,
        user_agent=request.user_agent.string,
    )
    db.session.commit()
    return jsonify(landing.serialize(page, public=True))
