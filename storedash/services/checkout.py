from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from flask import current_app

from storedash.errors import NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import User
from storedash.models_shop import Cart, EcommerceSettings, Order, OrderItem, PaymentMethod, ShippingMethod
from storedash.services import cart as cart_svc
from storedash.services import customers as customers_svc
from storedash.services import inventory as inventory_svc
from storedash.services import orders as orders_svc
from storedash.utils import CENTS, money, to_decimal

ADDRESS_FIELDS = ("first_name", "last_name", "address1", "city", "postal_code", "country")
PAYMENT_TYPES = ("card", "cod", "bank_transfer")


# ---------------- configurações da loja ----------------
def get_settings(tenant_id: int) -> EcommerceSettings | None:
    return EcommerceSettings.query.filter_by(tenant_id=tenant_id).first()


def get_or_create_settings(tenant_id: int) -> EcommerceSettings:
    s = get_settings(tenant_id)
    if s is None:
        s = EcommerceSettings(tenant_id=tenant_id)
        db.session.add(s)
        db.session.flush()
    return s


def serialize_settings(s: EcommerceSettings) -> dict[str, Any]:
    return {
        "currency": s.currency,
        "tax_rate": str(s.tax_rate),
        "cod_enabled": s.cod_enabled,
        "cod_fee": money(s.cod_fee),
        "shipping_enabled": s.shipping_enabled,
        "track_inventory": s.track_inventory,
        "portal_enabled": s.portal_enabled,
    }


def update_settings(tenant_id: int, data: dict) -> EcommerceSettings:
    s = get_or_create_settings(tenant_id)
    if "currency" in data:
        cur = str(data["currency"] or "").upper()
        if len(cur) != 3:
            raise ValidationError("currency must be a 3-letter code")
        s.currency = cur
    if "tax_rate" in data:
        rate = to_decimal(data["tax_rate"], "tax_rate")
        if rate < 0 or rate > 100:
            raise ValidationError("tax_rate must be between 0 and 100")
        s.tax_rate = rate
    if "cod_fee" in data:
        fee = to_decimal(data["cod_fee"], "cod_fee")
        if fee < 0:
            raise ValidationError("cod_fee must be >= 0")
        s.cod_fee = fee
    for flag in ("cod_enabled", "shipping_enabled", "track_inventory", "portal_enabled"):
        if flag in data:
            setattr(s, flag, bool(data[flag]))
    db.session.flush()
    return s


# ---------------- métodos de envio / pagamento ----------------
def serialize_shipping_method(m: ShippingMethod) -> dict[str, Any]:
    return {"id": m.id, "name": m.name, "description": m.description, "price": money(m.price), "is_active": m.is_active}


def serialize_payment_method(m: PaymentMethod) -> dict[str, Any]:
    return {"id": m.id, "name": m.name, "type": m.type, "instructions": m.instructions, "is_active": m.is_active}


def list_shipping_methods(tenant_id: int, *, active_only: bool = True) -> list[ShippingMethod]:
    q = ShippingMethod.query.filter_by(tenant_id=tenant_id)
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(ShippingMethod.display_order, ShippingMethod.id).all()


def list_payment_methods(tenant_id: int, *, active_only: bool = True) -> list[PaymentMethod]:
    q = PaymentMethod.query.filter_by(tenant_id=tenant_id)
    if active_only:
        q = q.filter_by(is_active=True)
    methods = q.order_by(PaymentMethod.display_order, PaymentMethod.id).all()
    settings = get_settings(tenant_id)
    if active_only and not (settings and settings.cod_enabled):
        methods = [m for m in methods if m.type != "cod"]
    return methods


def create_shipping_method(tenant_id: int, data: dict) -> ShippingMethod:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    price = to_decimal(data.get("price", 0), "price")
    if price < 0:
        raise ValidationError("price must be >= 0")
    m = ShippingMethod(
        tenant_id=tenant_id,
        name=name,
        description=data.get("description"),
        price=price,
        is_active=bool(data.get("is_active", True)),
        display_order=int(data.get("display_order") or 0),
    )
    db.session.add(m)
    db.session.flush()
    return m


def create_payment_method(tenant_id: int, data: dict) -> PaymentMethod:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    ptype = data.get("type") or "card"
    if ptype not in PAYMENT_TYPES:
        raise ValidationError(f"Unknown payment type: {ptype}")
    m = PaymentMethod(
        tenant_id=tenant_id,
        name=name,
        type=ptype,
        instructions=data.get("instructions"),
        is_active=bool(data.get("is_active", True)),
        display_order=int(data.get("display_order") or 0),
    )
    db.session.add(m)
    db.session.flush()
    return m


# ---------------- validação / totais ----------------
def validate_address(address: Any, field: str = "shipping_address") -> list[str]:
    if not isinstance(address, dict):
        return [f"{field} is required"]
    return [f"{field}.{f} is required" for f in ADDRESS_FIELDS if not str(address.get(f) or "").strip()]


def _shipping_method(tenant_id: int, method_id) -> ShippingMethod | None:
    if method_id is None:
        return None
    return ShippingMethod.query.filter_by(tenant_id=tenant_id, id=method_id, is_active=True).first()


def _payment_method(tenant_id: int, method_id) -> PaymentMethod | None:
    if method_id is None:
        return None
    return PaymentMethod.query.filter_by(tenant_id=tenant_id, id=method_id, is_active=True).first()


def validate_checkout(cart: Cart, data: dict) -> dict[str, Any]:
    errors: list[str] = []
    if not cart.items:
        errors.append("Cart is empty")
    for problem in cart_svc.validate_inventory(cart):
        errors.append(f"Insufficient stock for variant {problem['variant_id']}")

    settings = get_settings(cart.tenant_id)
    shipping_required = settings.shipping_enabled if settings else True

    if shipping_required and not _shipping_method(cart.tenant_id, data.get("shipping_method_id")):
        errors.append("A valid shipping method is required")

    payment = _payment_method(cart.tenant_id, data.get("payment_method_id"))
    if not payment:
        errors.append("A valid payment method is required")
    elif payment.type == "cod" and not (settings and settings.cod_enabled):
        errors.append("Cash on delivery is not enabled")

    errors.extend(validate_address(data.get("shipping_address")))
    if not str(data.get("customer_email") or "").strip():
        errors.append("customer_email is required")
    return {"valid": not errors, "errors": errors}


def calculate_totals(
    cart: Cart,
    shipping_method: ShippingMethod | None,
    payment_method: PaymentMethod | None,
) -> dict[str, str]:
    settings = get_settings(cart.tenant_id)
    shipping = Decimal(shipping_method.price) if shipping_method else Decimal("0")
    cod_fee = Decimal("0")
    if payment_method is not None and payment_method.type == "cod" and settings and settings.cod_enabled:
        cod_fee = Decimal(settings.cod_fee or 0)
    totals = orders_svc.compute_totals(cart_svc.subtotal(cart), settings, shipping, cod_fee=cod_fee)
    return {k: money(v) for k, v in totals.items() if k != "discount"}


def totals_for(cart: Cart, data: dict) -> dict[str, str]:
    return calculate_totals(
        cart,
        _shipping_method(cart.tenant_id, data.get("shipping_method_id")),
        _payment_method(cart.tenant_id, data.get("payment_method_id")),
    )


# ---------------- pedido a partir do carrinho ----------------
def create_order_from_cart(
    cart: Cart,
    data: dict,
    *,
    user: User | None = None,
    now: datetime | None = None,
) -> Order:
    result = validate_checkout(cart, data)
    if not result["valid"]:
        raise ValidationError("Checkout validation failed", details=result["errors"])
    now = now or datetime.utcnow()
    tenant_id = cart.tenant_id

    shipping = _shipping_method(tenant_id, data.get("shipping_method_id"))
    payment = _payment_method(tenant_id, data.get("payment_method_id"))
    if payment is None:
        raise NotFoundError("Payment method not found")
    totals = calculate_totals(cart, shipping, payment)

    address = dict(data["shipping_address"])
    name = data.get("customer_name") or f"{address.get('first_name', '')} {address.get('last_name', '')}".strip()
    order = Order(
        tenant_id=tenant_id,
        order_number=orders_svc.generate_order_number(),
        user_id=cart.user_id,
        status="pending",
        payment_status="pending",
        subtotal=Decimal(totals["subtotal"]),
        tax=Decimal(totals["tax"]),
        shipping=Decimal(totals["shipping"]) + Decimal(totals["cod_fee"]),
        discount=Decimal("0.00"),
        total=Decimal(totals["total"]),
        shipping_address=address,
        billing_address=dict(data.get("billing_address") or address),
        shipping_method_id=shipping.id if shipping else None,
        payment_method_id=payment.id,
        customer_email=data.get("customer_email"),
        customer_name=name or None,
        customer_phone=data.get("customer_phone") or address.get("phone"),
        customer_notes=data.get("customer_notes"),
        created_at=now,
    )
    db.session.add(order)
    order.customer = customers_svc.customer_for_order(
        tenant_id, order.customer_email, name=order.customer_name,
        phone=order.customer_phone, address=address,
    )

    for line in cart.items:
        unit = Decimal(line.price_snapshot)
        order.items.append(OrderItem(
            product_id=line.product_id,
            variant_id=line.variant_id,
            product_name=line.product.name,
            variant_name=line.variant.name if line.variant else None,
            sku=line.variant.sku if line.variant else line.product.sku,
            quantity=line.quantity,
            unit_price=unit,
            total_price=(unit * line.quantity).quantize(CENTS),
        ))
        if line.variant_id is not None:
            inventory_svc.reserve_stock(tenant_id, line.variant_id, line.quantity)

    orders_svc.record_history(order, None, "pending", user=user, notes="Order created", now=now)
    cart_svc.clear(cart)
    db.session.flush()

    current_app.logger.info("checkout completed order=%s total=%s", order.order_number, totals["total"])
    orders_svc.notify_order_watchers(order, "New order", f"Order {order.order_number} was placed.")
    return order
