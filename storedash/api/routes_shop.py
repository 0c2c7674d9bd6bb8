# storedash/api/routes_shop.py
from __future__ import annotations

from flask import current_app, g, jsonify, request
from flask_login import current_user

from storedash.errors import NotFoundError, ValidationError
from storedash.extensions import db
from storedash.services import categories, checkout, customers, inventory, orders, products
from storedash.services.permissions import permission_required
from storedash.utils import as_bool, json_body, page_args, to_int
from . import api_bp


def _tid() -> int:
    return g.tenant.id


# =====================================================================
# PRODUCTS
# =====================================================================
@api_bp.get("/products")
@permission_required("products:read")
def products_list():
    page, limit = page_args()
    a = request.args
    return jsonify(products.list_products(
        _tid(),
        search=a.get("search"),
        status=a.get("status"),
        category_id=to_int(a.get("category_id"), "category_id") if a.get("category_id") else None,
        sort=a.get("sort", "created_at"),
        order=a.get("order", "desc"),
        page=page,
        limit=limit,
    ))


@api_bp.post("/products")
@permission_required("products:create")
def products_create():
    p = products.create_product(_tid(), json_body())
    db.session.commit()
    current_app.logger.info("product %s created by user %s", p.id, current_user.id)
    return jsonify(products.serialize(p)), 201


@api_bp.get("/products/<int:product_id>")
@permission_required("products:read")
def products_get(product_id: int):
    return jsonify(products.serialize(products.get_product(_tid(), product_id)))


@api_bp.put("/products/<int:product_id>")
@permission_required("products:update")
def products_update(product_id: int):
    p = products.update_product(products.get_product(_tid(), product_id), json_body())
    db.session.commit()
    return jsonify(products.serialize(p))


@api_bp.post("/products/<int:product_id>/status")
@permission_required("products:update")
def products_status(product_id: int):
    p = products.set_status(products.get_product(_tid(), product_id), json_body().get("status"))
    db.session.commit()
    return jsonify(products.serialize(p))


@api_bp.post("/products/bulk-status")
@permission_required("products:update")
def products_bulk_status():
    data = json_body()
    ids = data.get("ids") or []
    if not isinstance(ids, list):
        raise ValidationError("ids must be a list")
    count = products.bulk_update_status(_tid(), [int(i) for i in ids], data.get("status"))
    db.session.commit()
    return jsonify({"updated": count})


@api_bp.delete("/products/<int:product_id>")
@permission_required("products:delete")
def products_delete(product_id: int):
    products.delete_product(products.get_product(_tid(), product_id))
    db.session.commit()
    return jsonify({"ok": True})


@api_bp.post("/products/<int:product_id>/variants")
@permission_required("products:update")
def variants_create(product_id: int):
    v = products.add_variant(products.get_product(_tid(), product_id), json_body())
    db.session.commit()
    return jsonify(products.serialize_variant(v)), 201


@api_bp.put("/variants/<int:variant_id>")
@permission_required("products:update")
def variants_update(variant_id: int):
    v = products.update_variant(products.get_variant(_tid(), variant_id), json_body())
    db.session.commit()
    return jsonify(products.serialize_variant(v))


@api_bp.delete("/variants/<int:variant_id>")
@permission_required("products:delete")
def variants_delete(variant_id: int):
    products.delete_variant(products.get_variant(_tid(), variant_id))
    db.session.commit()
    return jsonify({"ok": True})


# =====================================================================
# CATEGORIES
# =====================================================================
@api_bp.get("/categories")
@permission_required("categories:read")
def categories_list():
    return jsonify({"data": categories.list_categories(_tid())})


@api_bp.post("/categories")
@permission_required("categories:create")
def categories_create():
    c = categories.create_category(_tid(), json_body())
    db.session.commit()
    return jsonify(categories.serialize(c)), 201


@api_bp.get("/categories/<int:category_id>")
@permission_required("categories:read")
def categories_get(category_id: int):
    return jsonify(categories.serialize(categories.get_category(_tid(), category_id)))


@api_bp.put("/categories/<int:category_id>")
@permission_required("categories:update")
def categories_update(category_id: int):
    c = categories.update_category(categories.get_category(_tid(), category_id), json_body())
    db.session.commit()
    return jsonify(categories.serialize(c))


@api_bp.delete("/categories/<int:category_id>")
@permission_required("categories:delete")
def categories_delete(category_id: int):
    categories.delete_category(categories.get_category(_tid(), category_id))
    db.session.commit()
    return jsonify({"ok": True})


@api_bp.put("/products/<int:product_id>/categories")
@permission_required("products:update")
def products_set_categories(product_id: int):
    ids = json_body().get("category_ids") or []
    if not isinstance(ids, list):
        raise ValidationError("category_ids must be a list")
    p = categories.set_product_categories(products.get_product(_tid(), product_id), ids)
    db.session.commit()
    return jsonify(products.serialize(p))


# =====================================================================
# INVENTORY
# =====================================================================
@api_bp.get("/inventory")
@permission_required("inventory:read")
def inventory_list():
    page, limit = page_args()
    a = request.args
    return jsonify(inventory.list_inventory(
        _tid(),
        search=a.get("search"),
        low_stock_only=as_bool(a.get("low_stock")),
        out_of_stock_only=as_bool(a.get("out_of_stock")),
        page=page,
        limit=limit,
    ))


@api_bp.get("/inventory/low-stock")
@permission_required("inventory:read")
def inventory_low_stock():
    return jsonify({"data": [inventory.serialize(i) for i in inventory.low_stock_items(_tid())]})


@api_bp.get("/inventory/<int:variant_id>/availability")
@permission_required("inventory:read")
def inventory_availability(variant_id: int):
    qty = to_int(request.args.get("quantity"), "quantity", default=1, minimum=1)
    return jsonify(inventory.check_availability(_tid(), variant_id, qty))


@api_bp.get("/inventory/<int:variant_id>/history")
@permission_required("inventory:read")
def inventory_history(variant_id: int):
    rows = inventory.adjustment_history(_tid(), variant_id)
    return jsonify({"data": [inventory.serialize_adjustment(a) for a in rows]})


@api_bp.post("/inventory/<int:variant_id>/adjust")
@permission_required("inventory:update")
def inventory_adjust(variant_id: int):
    data = json_body()
    inv = inventory.adjust_quantity(
        _tid(), variant_id,
        to_int(data.get("change"), "change"),
        data.get("reason") or "correction",
        notes=data.get("notes"),
        user=current_user,
    )
    db.session.commit()
    return jsonify(inventory.serialize(inv))


@api_bp.post("/inventory/<int:variant_id>/reserve")
@permission_required("inventory:update")
def inventory_reserve(variant_id: int):
    qty = to_int(json_body().get("quantity"), "quantity", minimum=1)
    inv = inventory.reserve_stock(_tid(), variant_id, qty)
    db.session.commit()
    return jsonify(inventory.serialize(inv))


@api_bp.post("/inventory/<int:variant_id>/release")
@permission_required("inventory:update")
def inventory_release(variant_id: int):
    qty = to_int(json_body().get("quantity"), "quantity", minimum=1)
    inv = inventory.release_stock(_tid(), variant_id, qty)
    db.session.commit()
    return jsonify(inventory.serialize(inv))


@api_bp.put("/inventory/<int:variant_id>/settings")
@permission_required("inventory:update")
def inventory_settings(variant_id: int):
    inv = inventory.find_by_variant(_tid(), variant_id)
    if inv is None:
        raise NotFoundError("Inventory record not found")
    inv = inventory.update_settings(inv, json_body())
    db.session.commit()
    return jsonify(inventory.serialize(inv))


# =====================================================================
# ORDERS
# =====================================================================
@api_bp.get("/orders")
@permission_required("orders:read")
def orders_list():
    page, limit = page_args()
    a = request.args
    return jsonify(orders.list_orders(
        _tid(),
        status=a.get("status"),
        payment_status=a.get("payment_status"),
        search=a.get("search"),
        date_from=a.get("date_from"),
        date_to=a.get("date_to"),
        customer_id=to_int(a.get("customer_id"), "customer_id") if a.get("customer_id") else None,
        page=page,
        limit=limit,
    ))


@api_bp.post("/orders")
@permission_required("orders:create")
def orders_create():
    o = orders.create_order(_tid(), json_body(), user=current_user)
    db.session.commit()
    return jsonify(orders.serialize(o)), 201


@api_bp.get("/orders/<int:order_id>")
@permission_required("orders:read")
def orders_get(order_id: int):
    return jsonify(orders.serialize(orders.get_order(_tid(), order_id)))


@api_bp.get("/orders/by-number/<number>")
@permission_required("orders:read")
def orders_by_number(number: str):
    return jsonify(orders.serialize(orders.get_by_number(_tid(), number)))


@api_bp.post("/orders/<int:order_id>/status")
@permission_required("orders:update")
def orders_status(order_id: int):
    data = json_body()
    o = orders.update_status(
        orders.get_order(_tid(), order_id),
        data.get("status"),
        user=current_user,
        notes=data.get("notes"),
        tracking_number=data.get("tracking_number"),
    )
    db.session.commit()
    return jsonify(orders.serialize(o))


@api_bp.post("/orders/<int:order_id>/cancel")
@permission_required("orders:update")
def orders_cancel(order_id: int):
    o = orders.cancel(orders.get_order(_tid(), order_id), json_body().get("reason"), user=current_user)
    db.session.commit()
    return jsonify(orders.serialize(o))


@api_bp.post("/orders/<int:order_id>/notes")
@permission_required("orders:update")
def orders_note(order_id: int):
    o = orders.add_note(orders.get_order(_tid(), order_id), json_body().get("note") or "", user=current_user)
    db.session.commit()
    return jsonify(orders.serialize(o))


@api_bp.post("/orders/<int:order_id>/payment")
@permission_required("orders:update")
def orders_payment(order_id: int):
    o = orders.update_payment_status(orders.get_order(_tid(), order_id), json_body().get("payment_status"))
    db.session.commit()
    return jsonify(orders.serialize(o))


@api_bp.get("/orders/<int:order_id>/history")
@permission_required("orders:read")
def orders_history(order_id: int):
    rows = orders.status_history(orders.get_order(_tid(), order_id))
    return jsonify({"data": [orders.serialize_history(h) for h in rows]})


# =====================================================================
# CUSTOMERS
# =====================================================================
@api_bp.get("/customers")
@permission_required("customers:read")
def customers_list():
    page, limit = page_args()
    a = request.args
    return jsonify(customers.list_customers(
        _tid(),
        search=a.get("search"),
        tag=a.get("tag"),
        sort=a.get("sort", "created_at"),
        order=a.get("order", "desc"),
        page=page,
        limit=limit,
    ))


@api_bp.post("/customers")
@permission_required("customers:create")
def customers_create():
    c = customers.create_customer(_tid(), json_body())
    db.session.commit()
    current_app.logger.info("customer %s created by user %s", c.id, current_user.id)
    return jsonify(customers.serialize(c)), 201


@api_bp.get("/customers/<int:customer_id>")
@permission_required("customers:read")
def customers_get(customer_id: int):
    return jsonify(customers.serialize(customers.get_customer(_tid(), customer_id)))


@api_bp.put("/customers/<int:customer_id>")
@permission_required("customers:update")
def customers_update(customer_id: int):
    c = customers.update_customer(customers.get_customer(_tid(), customer_id), json_body())
    db.session.commit()
    return jsonify(customers.serialize(c))


@api_bp.delete("/customers/<int:customer_id>")
@permission_required("customers:delete")
def customers_delete(customer_id: int):
    customers.delete_customer(customers.get_customer(_tid(), customer_id))
    db.session.commit()
    return jsonify({"ok": True})


@api_bp.get("/customers/<int:customer_id>/orders")
@permission_required("customers:read")
def customers_orders(customer_id: int):
    rows = customers.order_history(customers.get_customer(_tid(), customer_id))
    return jsonify({"data": [orders.serialize(o) for o in rows]})


@api_bp.get("/customers/<int:customer_id>/statistics")
@permission_required("customers:read")
def customers_statistics(customer_id: int):
    return jsonify(customers.statistics(customers.get_customer(_tid(), customer_id)))


# =====================================================================
# CHECKOUT (configuração da loja)
# =====================================================================
@api_bp.get("/ecommerce/settings")
@permission_required("checkout:read")
def ecommerce_settings_get():
    s = checkout.get_or_create_settings(_tid())
    db.session.commit()
    return jsonify(checkout.serialize_settings(s))


@api_bp.put("/ecommerce/settings")
@permission_required("checkout:update")
def ecommerce_settings_update():
    s = checkout.update_settings(_tid(), json_body())
    db.session.commit()
    return jsonify(checkout.serialize_settings(s))


@api_bp.get("/shipping-methods")
@permission_required("checkout:read")
def shipping_methods_list():
    rows = checkout.list_shipping_methods(_tid(), active_only=as_bool(request.args.get("active_only")))
    return jsonify({"data": [checkout.serialize_shipping_method(m) for m in rows]})


@api_bp.post("/shipping-methods")
@permission_required("checkout:create")
def shipping_methods_create():
    m = checkout.create_shipping_method(_tid(), json_body())
    db.session.commit()
    return jsonify(checkout.serialize_shipping_method(m)), 201


@api_bp.get("/payment-methods")
@permission_required("checkout:read")
def payment_methods_list():
    rows = checkout.list_payment_methods(_tid(), active_only=as_bool(request.args.get("active_only")))
    return jsonify({"data": [checkout.serialize_payment_method(m) for m in rows]})


@api_bp.post("/payment-methods")
@permission_required("checkout:create")
def payment_methods_create():
    m = checkout.create_payment_method(_tid(), json_body())
    db.session.commit()
    return jsonify(checkout.serialize_payment_method(m)), 201
