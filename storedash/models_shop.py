# storedash/models_shop.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from .extensions import db
from .models import json_dict, json_list
from .tenant_scope import TenantScoped

Money = db.Numeric(12, 2)


# =====================================================================
# CATEGORIAS
# =====================================================================
product_category_links = db.Table(
    "product_category_links",
    db.Column("product_id", db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
    db.Column("category_id", db.Integer, db.ForeignKey("product_categories.id", ondelete="CASCADE"), primary_key=True),
)


class ProductCategory(db.Model, TenantScoped):
    __tablename__ = "product_categories"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("product_categories.id", ondelete="SET NULL"), nullable=True, index=True)

    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(140), nullable=False)
    description = db.Column(db.Text)
    display_order = db.Column(db.Integer, default=0, nullable=False)
    is_visible = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    children = db.relationship(
        "ProductCategory", lazy="selectin",
        order_by="ProductCategory.display_order",
        backref=db.backref("parent", remote_side=[id]),
    )
    products = db.relationship(
        "Product", secondary=product_category_links, back_populates="categories", lazy=True,
    )

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "slug", name="uq_product_category_tenant_slug"),
    )

    def __repr__(self) -> str:
        return f"<ProductCategory {self.slug}>"


# =====================================================================
# CATÁLOGO
# =====================================================================
class Product(db.Model, TenantScoped):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(220), nullable=False)
    description = db.Column(db.Text)
    base_price = db.Column(Money, nullable=False, default=Decimal("0.00"))
    compare_at_price = db.Column(Money)
    sku = db.Column(db.String(80))
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)  # draft | published | archived
    is_featured = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    variants = db.relationship(
        "ProductVariant", back_populates="product", lazy="selectin",
        cascade="all, delete-orphan", order_by="ProductVariant.id",
    )
    categories = db.relationship(
        "ProductCategory", secondary=product_category_links, back_populates="products",
        lazy="selectin", order_by="ProductCategory.name",
    )

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "slug", name="uq_product_tenant_slug"),
    )

    def __repr__(self) -> str:
        return f"<Product {self.slug}>"


class ProductVariant(db.Model, TenantScoped):
    __tablename__ = "product_variants"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    name = db.Column(db.String(200), nullable=False)
    sku = db.Column(db.String(80), nullable=False)
    price = db.Column(Money)  # None -> preço base do produto
    attributes = db.Column(json_dict(), default=dict)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    product = db.relationship("Product", back_populates="variants", lazy="joined")
    inventory = db.relationship(
        "Inventory", back_populates="variant", uselist=False,
        cascade="all, delete-orphan", lazy="selectin",
    )

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku", name="uq_variant_tenant_sku"),
    )

    @property
    def effective_price(self) -> Decimal:
        if self.price is not None:
            return self.price
        return self.product.base_price

    def __repr__(self) -> str:
        return f"<ProductVariant {self.sku}>"


# =====================================================================
# ESTOQUE
# =====================================================================
class Inventory(db.Model, TenantScoped):
    __tablename__ = "inventory"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = db.Column(
        db.Integer, db.ForeignKey("product_variants.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )

    quantity = db.Column(db.Integer, default=0, nullable=False)
    reserved = db.Column(db.Integer, default=0, nullable=False)
    available = db.Column(db.Integer, default=0, nullable=False)
    low_stock_threshold = db.Column(db.Integer, default=10, nullable=False)
    track_inventory = db.Column(db.Boolean, default=True, nullable=False)
    allow_backorder = db.Column(db.Boolean, default=False, nullable=False)
    last_restocked_at = db.Column(db.DateTime)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    variant = db.relationship("ProductVariant", back_populates="inventory", lazy="joined")
    adjustments = db.relationship(
        "InventoryAdjustment", back_populates="inventory", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def recompute(self) -> None:
        self.available = (self.quantity or 0) - (self.reserved or 0)

    @property
    def is_low_stock(self) -> bool:
        return 0 < self.available <= self.low_stock_threshold

    @property
    def is_out_of_stock(self) -> bool:
        return self.available <= 0

    def __repr__(self) -> str:
        return f"<Inventory variant={self.variant_id} q={self.quantity} r={self.reserved}>"


class InventoryAdjustment(db.Model, TenantScoped):
    __tablename__ = "inventory_adjustments"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    inventory_id = db.Column(db.Integer, db.ForeignKey("inventory.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    quantity_change = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(20), nullable=False)  # restock | sale | return | damage | correction | other
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    inventory = db.relationship("Inventory", back_populates="adjustments", lazy=True)


# =====================================================================
# CARRINHO
# =====================================================================
class Cart(db.Model, TenantScoped):
    __tablename__ = "carts"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = db.Column(db.String(120), index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)

    expires_at = db.Column(db.DateTime, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    items = db.relationship(
        "CartItem", back_populates="cart", lazy="selectin",
        cascade="all, delete-orphan", order_by="CartItem.id",
    )


class CartItem(db.Model):
    __tablename__ = "cart_items"

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    price_snapshot = db.Column(Money, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    cart = db.relationship("Cart", back_populates="items", lazy=True)
    product = db.relationship("Product", lazy="joined")
    variant = db.relationship("ProductVariant", lazy="joined")

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.price_snapshot) * self.quantity


# =====================================================================
# CHECKOUT
# =====================================================================
class ShippingMethod(db.Model, TenantScoped):
    __tablename__ = "shipping_methods"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.String(255))
    price = db.Column(Money, nullable=False, default=Decimal("0.00"))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    display_order = db.Column(db.Integer, default=0, nullable=False)


class PaymentMethod(db.Model, TenantScoped):
    __tablename__ = "payment_methods"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    type = db.Column(db.String(20), nullable=False, default="card")  # card | cod | bank_transfer
    instructions = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    display_order = db.Column(db.Integer, default=0, nullable=False)


class EcommerceSettings(db.Model, TenantScoped):
    __tablename__ = "ecommerce_settings"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, unique=True)

    currency = db.Column(db.String(3), default="USD", nullable=False)
    tax_rate = db.Column(db.Numeric(5, 2), default=Decimal("0.00"), nullable=False)
    cod_enabled = db.Column(db.Boolean, default=False, nullable=False)
    cod_fee = db.Column(Money, default=Decimal("0.00"), nullable=False)
    shipping_enabled = db.Column(db.Boolean, default=True, nullable=False)
    track_inventory = db.Column(db.Boolean, default=True, nullable=False)
    portal_enabled = db.Column(db.Boolean, default=False, nullable=False)


# =====================================================================
# CLIENTES
# =====================================================================
class Customer(db.Model, TenantScoped):
    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    email = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    phone = db.Column(db.String(40))
    company = db.Column(db.String(200))
    shipping_address = db.Column(json_dict(), default=dict)
    billing_address = db.Column(json_dict(), default=dict)
    notes = db.Column(db.Text)
    tags = db.Column(json_list(), default=list)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    orders = db.relationship("Order", back_populates="customer", lazy="dynamic")

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_customer_tenant_email"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def __repr__(self) -> str:
        return f"<Customer {self.email}>"


# =====================================================================
# PEDIDOS
# =====================================================================
class Order(db.Model, TenantScoped):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    order_number = db.Column(db.String(40), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    fulfillment_status = db.Column(db.String(16), nullable=False, default="unfulfilled")

    subtotal = db.Column(Money, nullable=False, default=Decimal("0.00"))
    tax = db.Column(Money, nullable=False, default=Decimal("0.00"))
    shipping = db.Column(Money, nullable=False, default=Decimal("0.00"))
    discount = db.Column(Money, nullable=False, default=Decimal("0.00"))
    total = db.Column(Money, nullable=False, default=Decimal("0.00"))

    shipping_address = db.Column(json_dict(), default=dict)
    billing_address = db.Column(json_dict(), default=dict)
    shipping_method_id = db.Column(db.Integer, db.ForeignKey("shipping_methods.id", ondelete="SET NULL"))
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id", ondelete="SET NULL"))

    customer_email = db.Column(db.String(255))
    customer_name = db.Column(db.String(200))
    customer_phone = db.Column(db.String(40))
    customer_notes = db.Column(db.Text)
    internal_notes = db.Column(db.Text)
    tracking_number = db.Column(db.String(120))

    paid_at = db.Column(db.DateTime)
    shipped_at = db.Column(db.DateTime)
    delivered_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    items = db.relationship(
        "OrderItem", back_populates="order", lazy="selectin",
        cascade="all, delete-orphan", order_by="OrderItem.id",
    )
    history = db.relationship(
        "OrderStatusHistory", back_populates="order", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    shipping_method = db.relationship("ShippingMethod", lazy=True)
    payment_method = db.relationship("PaymentMethod", lazy=True)
    customer = db.relationship("Customer", back_populates="orders", lazy=True)

    def __repr__(self) -> str:
        return f"<Order {self.order_number} {self.status}>"


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True)

    product_name = db.Column(db.String(200), nullable=False)
    variant_name = db.Column(db.String(200))
    sku = db.Column(db.String(80))
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(Money, nullable=False)
    total_price = db.Column(Money, nullable=False)

    order = db.relationship("Order", back_populates="items", lazy=True)


class OrderStatusHistory(db.Model):
    __tablename__ = "order_status_history"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = db.Column(db.String(16))
    to_status = db.Column(db.String(16), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    order = db.relationship("Order", back_populates="history", lazy=True)
