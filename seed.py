# seed.py
from __future__ import annotations

from storedash import create_app
from storedash.extensions import db
from storedash.models import Tenant, User
from storedash.models_site import DashboardMenu, WidgetDefinition
from storedash.models_shop import PaymentMethod, ShippingMethod
from storedash.services import checkout, jobs, menus, widgets
from storedash.services.tenants import create_tenant

TENANT_SLUG = "loja1"
ADMIN_EMAIL = "admin@loja1.com"
ADMIN_PASSWORD = "123456"

# (key, label, icon, route, order, permissões, feature flag)
DEFAULT_MENUS = [
    ("dashboard", "Dashboard", "home", "/dashboard", 0, [], None),
    ("products", "Products", "box", "/products", 10, ["products:read"], "ecommerce_enabled"),
    ("categories", "Categories", "folder", "/categories", 15, ["categories:read"], "ecommerce_enabled"),
    ("inventory", "Inventory", "layers", "/inventory", 20, ["inventory:read"], "inventory_enabled"),
    ("orders", "Orders", "shopping-cart", "/orders", 30, ["orders:read"], "ecommerce_enabled"),
    ("customers", "Customers", "users", "/customers", 35, ["customers:read"], "ecommerce_enabled"),
    ("blog", "Blog", "edit", "/blog", 40, ["blog:read"], None),
    ("landing", "Landing pages", "layout", "/landing-pages", 50, ["landing:read"], None),
    ("calendar", "Calendar", "calendar", "/calendar", 60, ["calendar:read"], None),
    ("messages", "Messages", "message-circle", "/messages", 70, ["messaging:read"], None),
    ("settings", "Settings", "settings", "/settings", 90, ["roles:read"], None),
]

DEFAULT_WIDGETS = [
    {
        "key": "sales-overview",
        "name": "Sales overview",
        "description": "Revenue and order count over time",
        "category": "analytics",
        "tags": ["sales", "revenue", "orders", "chart"],
        "use_cases": ["track revenue", "monitor daily sales"],
        "data_requirements": {"permissions": ["orders:read"], "endpoints": ["/api/dashboard/stats"]},
    },
    {
        "key": "low-stock",
        "name": "Low stock alerts",
        "description": "Variants at or below their low stock threshold",
        "category": "inventory",
        "tags": ["inventory", "stock", "alerts"],
        "use_cases": ["restock products", "avoid stockouts"],
        "data_requirements": {"permissions": ["inventory:read"], "endpoints": ["/api/inventory/low-stock"]},
    },
    {
        "key": "recent-activity",
        "name": "Recent activity",
        "description": "Latest actions taken by the team",
        "category": "general",
        "tags": ["activity", "audit", "team"],
        "use_cases": ["see who changed what"],
        "data_requirements": {"permissions": ["activity:read"], "endpoints": ["/api/activity"]},
    },
    {
        "key": "upcoming-events",
        "name": "Upcoming events",
        "description": "Next calendar events for the user",
        "category": "productivity",
        "tags": ["calendar", "events", "schedule"],
        "use_cases": ["plan the week"],
        "data_requirements": {"permissions": ["calendar:read"], "endpoints": ["/api/calendar/events"]},
    },
]


def seed():
    """
    Seed de desenvolvimento:
      - cria tenant 'loja1' com roles padrão + usuário admin
      - menus, widgets, métodos de envio e pagamento
      - registra os jobs agendados
    """
    app = create_app()
    with app.app_context():
        db.create_all()

        t = Tenant.query.filter_by(slug=TENANT_SLUG).first()
        if not t:
            t = create_tenant("Loja 1", TENANT_SLUG)
            db.session.commit()

        u = User.query.filter_by(email=ADMIN_EMAIL, tenant_id=t.id).first()
        if not u:
            admin_role = next(r for r in t.roles if r.name == "admin")
            u = User(tenant_id=t.id, email=ADMIN_EMAIL, name="Admin", role_id=admin_role.id)
            u.set_password(ADMIN_PASSWORD)
            db.session.add(u)
            db.session.commit()

        for key, label, icon, route, order, perms, flag in DEFAULT_MENUS:
            if not DashboardMenu.query.filter_by(tenant_id=t.id, key=key).first():
                menus.create_menu(t.id, {
                    "key": key, "label": label, "icon": icon, "route": route,
                    "order": order, "required_permissions": perms, "feature_flag": flag,
                })
        db.session.commit()

        for data in DEFAULT_WIDGETS:
            if not WidgetDefinition.query.filter_by(key=data["key"]).first():
                widgets.create_widget(data)  # globais
        db.session.commit()

        checkout.update_settings(t.id, {"currency": "USD", "tax_rate": "8.00", "cod_enabled": True, "cod_fee": "5.00",
                                        "portal_enabled": True})
        if not ShippingMethod.query.filter_by(tenant_id=t.id).first():
            checkout.create_shipping_method(t.id, {"name": "Standard", "price": "9.90", "description": "5 business days"})
            checkout.create_shipping_method(t.id, {"name": "Express", "price": "19.90", "description": "2 business days",
                                                   "display_order": 1})
        if not PaymentMethod.query.filter_by(tenant_id=t.id).first():
            checkout.create_payment_method(t.id, {"name": "Credit card", "type": "card"})
            checkout.create_payment_method(t.id, {"name": "Cash on delivery", "type": "cod", "display_order": 1})
        db.session.commit()

        jobs.sync_jobs()

        print("Seed complete.")
        print(f"Tenant: {TENANT_SLUG}")
        print(f"Admin: {ADMIN_EMAIL} / {ADMIN_PASSWORD}")


if __name__ == "__main__":
    seed()
