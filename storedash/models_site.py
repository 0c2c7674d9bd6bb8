# storedash/models_site.py
from __future__ import annotations

from datetime import datetime

from .extensions import db
from .models import json_dict, json_list
from .tenant_scope import TenantScoped


# ============================ Conteúdo ============================

class BlogPost(db.Model, TenantScoped):
    __tablename__ = "blog_posts"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    title = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False)
    excerpt = db.Column(db.Text)
    content = db.Column(db.Text, nullable=False, default="")
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)  # draft | published | archived
    tags = db.Column(json_list(), default=list)
    category = db.Column(db.String(80), index=True)
    featured_image = db.Column(db.String(512))
    meta_title = db.Column(db.String(255))
    meta_description = db.Column(db.String(512))

    published_at = db.Column(db.DateTime, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    author = db.relationship("User", lazy=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "slug", name="uq_blog_tenant_slug"),
    )

    def __repr__(self) -> str:
        return f"<BlogPost {self.slug}>"


class LandingPage(db.Model, TenantScoped):
    __tablename__ = "landing_pages"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    slug = db.Column(db.String(200), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    sections = db.Column(json_list(), default=list)
    settings = db.Column(json_dict(), default=dict)
    is_published = db.Column(db.Boolean, default=False, nullable=False)
    published_at = db.Column(db.DateTime)
    meta_title = db.Column(db.String(255))
    meta_description = db.Column(db.String(512))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    views = db.relationship("PageView", back_populates="page", lazy="dynamic", cascade="all, delete-orphan")

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "slug", name="uq_landing_tenant_slug"),
    )


class PageView(db.Model, TenantScoped):
    __tablename__ = "page_views"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    page_id = db.Column(db.Integer, db.ForeignKey("landing_pages.id", ondelete="CASCADE"), nullable=False, index=True)

    session_id = db.Column(db.String(120))
    referrer = db.Column(db.String(512))
    device_type = db.Column(db.String(16))  # mobile | tablet | desktop
    viewed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    page = db.relationship("LandingPage", back_populates="views", lazy=True)


# ============================ Dashboard ============================

class DashboardMenu(db.Model, TenantScoped):
    __tablename__ = "dashboard_menus"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("dashboard_menus.id", ondelete="SET NULL"), nullable=True)

    key = db.Column(db.String(80), nullable=False)
    label = db.Column(db.String(120), nullable=False)
    icon = db.Column(db.String(60))
    route = db.Column(db.String(255))
    order = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    required_roles = db.Column(json_list(), default=list)
    required_permissions = db.Column(json_list(), default=list)
    feature_flag = db.Column(db.String(60))
    page_type = db.Column(db.String(40))
    badge = db.Column(db.String(40))

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "key", name="uq_menu_tenant_key"),
    )

    def __repr__(self) -> str:
        return f"<DashboardMenu {self.key}>"


class WidgetDefinition(db.Model):
    """Catálogo de widgets; ``tenant_id`` nulo = widget global."""
    __tablename__ = "widget_definitions"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True)

    key = db.Column(db.String(80), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, default="")
    category = db.Column(db.String(60), nullable=False, default="general")
    component = db.Column(db.String(120))
    tags = db.Column(json_list(), default=list)
    use_cases = db.Column(json_list(), default=list)
    config_schema = db.Column(json_dict(), default=dict)
    data_requirements = db.Column(json_dict(), default=dict)  # {permissions: [], endpoints: []}
    examples = db.Column(json_list(), default=list)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def required_permissions(self) -> list[str]:
        return list((self.data_requirements or {}).get("permissions") or [])


class DashboardLayout(db.Model, TenantScoped):
    __tablename__ = "dashboard_layouts"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)

    page_id = db.Column(db.String(80), nullable=False, default="home")
    name = db.Column(db.String(120), nullable=False, default="Default")
    scope = db.Column(db.String(10), nullable=False, default="global")  # global | user
    is_default = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    widgets = db.relationship(
        "WidgetInstance", back_populates="layout", lazy="selectin",
        cascade="all, delete-orphan", order_by="WidgetInstance.position",
    )


class WidgetInstance(db.Model):
    __tablename__ = "widget_instances"

    id = db.Column(db.Integer, primary_key=True)
    layout_id = db.Column(db.Integer, db.ForeignKey("dashboard_layouts.id", ondelete="CASCADE"), nullable=False, index=True)

    widget_key = db.Column(db.String(80), nullable=False)
    position = db.Column(db.Integer, default=0, nullable=False)
    col_span = db.Column(db.Integer, default=4, nullable=False)
    row_span = db.Column(db.Integer, default=1, nullable=False)
    config = db.Column(json_dict(), default=dict)
    is_visible = db.Column(db.Boolean, default=True, nullable=False)

    layout = db.relationship("DashboardLayout", back_populates="widgets", lazy=True)
