"""Initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
Money = sa.Numeric(12, 2)


def _id():
    return sa.Column("id", sa.Integer(), primary_key=True)


def _tenant(nullable: bool = False, unique: bool = False):
    return sa.Column(
        "tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=nullable, unique=unique, index=not unique,
    )


def _user(name: str = "user_id", ondelete: str = "SET NULL", nullable: bool = True, index: bool = False):
    return sa.Column(name, sa.Integer(), sa.ForeignKey("users.id", ondelete=ondelete), nullable=nullable, index=index)


def _created(index: bool = False):
    return sa.Column("created_at", sa.DateTime(), nullable=False, index=index)


def _updated():
    return sa.Column("updated_at", sa.DateTime(), nullable=False)


def _flag(name: str, default: bool):
    return sa.Column(name, sa.Boolean(), nullable=False, server_default=sa.true() if default else sa.false())


def upgrade():
    # --- Identidade ---
    op.create_table(
        "tenants",
        _id(),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("slug", sa.String(80), nullable=False, unique=True, index=True),
        _flag("is_blocked", False),
        _created(),
    )
    op.create_table(
        "permissions",
        _id(),
        sa.Column("name", sa.String(100), nullable=False, unique=True, index=True),
        sa.Column("resource", sa.String(50), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("description", sa.String(255)),
    )
    op.create_table(
        "roles",
        _id(),
        _tenant(),
        sa.Column("name", sa.String(80), nullable=False),
        sa.Column("description", sa.String(255)),
        _flag("is_system", False),
        _created(),
        sa.UniqueConstraint("tenant_id", "name", name="uq_role_tenant_name"),
    )
    op.create_table(
        "role_permissions",
        _id(),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        sa.UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )
    op.create_table(
        "users",
        _id(),
        _tenant(),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="SET NULL"), index=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(120)),
        sa.Column("password_hash", sa.String(255), nullable=False),
        _flag("is_active", True),
        _flag("is_superadmin", False),
        sa.Column("last_login_at", sa.DateTime()),
        _created(),
        sa.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
    )
    op.create_table(
        "activity_logs",
        _id(),
        _tenant(),
        _user(index=True),
        sa.Column("action", sa.String(120), nullable=False, index=True),
        sa.Column("entity_type", sa.String(60), index=True),
        sa.Column("entity_id", sa.String(64)),
        sa.Column("metadata", JSONType),
        sa.Column("ip_address", sa.String(64)),
        sa.Column("user_agent", sa.String(255)),
        _created(index=True),
    )

    # --- Jobs ---
    op.create_table(
        "cron_jobs",
        _id(),
        sa.Column("name", sa.String(100), nullable=False, unique=True, index=True),
        sa.Column("description", sa.String(255)),
        sa.Column("schedule", sa.String(100), nullable=False),
        sa.Column("handler", sa.String(100), nullable=False),
        _flag("is_enabled", True),
        _flag("is_locked", False),
        _flag("notify_on_failure", True),
        sa.Column("last_run_at", sa.DateTime()),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_duration_ms", sa.Float()),
        _created(),
    )
    op.create_table(
        "cron_logs",
        _id(),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("cron_jobs.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("status", sa.String(16), nullable=False, index=True),
        sa.Column("started_at", sa.DateTime(), nullable=False, index=True),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("duration_ms", sa.Integer()),
        sa.Column("result", JSONType),
        sa.Column("error", sa.Text()),
    )

    # --- Catálogo / estoque ---
    op.create_table(
        "products",
        _id(),
        _tenant(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(220), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("base_price", Money, nullable=False, server_default="0"),
        sa.Column("compare_at_price", Money),
        sa.Column("sku", sa.String(80)),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft", index=True),
        _flag("is_featured", False),
        _created(),
        _updated(),
        sa.UniqueConstraint("tenant_id", "slug", name="uq_product_tenant_slug"),
    )
    op.create_table(
        "product_variants",
        _id(),
        _tenant(),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("sku", sa.String(80), nullable=False),
        sa.Column("price", Money),
        sa.Column("attributes", JSONType),
        _flag("is_active", True),
        _created(),
        sa.UniqueConstraint("tenant_id", "sku", name="uq_variant_tenant_sku"),
    )
    op.create_table(
        "inventory",
        _id(),
        _tenant(),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("product_variants.id", ondelete="CASCADE"),
                  nullable=False, unique=True, index=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("low_stock_threshold", sa.Integer(), nullable=False, server_default="10"),
        _flag("track_inventory", True),
        _flag("allow_backorder", False),
        sa.Column("last_restocked_at", sa.DateTime()),
        _updated(),
    )
    op.create_table(
        "inventory_adjustments",
        _id(),
        _tenant(),
        sa.Column("inventory_id", sa.Integer(), sa.ForeignKey("inventory.id", ondelete="CASCADE"), nullable=False, index=True),
        _user(),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(20), nullable=False),
        sa.Column("notes", sa.Text()),
        _created(index=True),
    )

    # --- Checkout ---
    op.create_table(
        "shipping_methods",
        _id(),
        _tenant(),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("description", sa.String(255)),
        sa.Column("price", Money, nullable=False, server_default="0"),
        _flag("is_active", True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_table(
        "payment_methods",
        _id(),
        _tenant(),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("type", sa.String(20), nullable=False, server_default="card"),
        sa.Column("instructions", sa.Text()),
        _flag("is_active", True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_table(
        "ecommerce_settings",
        _id(),
        _tenant(unique=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False, server_default="0"),
        _flag("cod_enabled", False),
        sa.Column("cod_fee", Money, nullable=False, server_default="0"),
        _flag("shipping_enabled", True),
        _flag("track_inventory", True),
        _flag("portal_enabled", False),
    )
    op.create_table(
        "carts",
        _id(),
        _tenant(),
        sa.Column("session_id", sa.String(120), index=True),
        _user(ondelete="CASCADE", index=True),
        sa.Column("expires_at", sa.DateTime(), index=True),
        _created(),
        _updated(),
    )
    op.create_table(
        "cart_items",
        _id(),
        sa.Column("cart_id", sa.Integer(), sa.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("product_variants.id", ondelete="CASCADE")),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("price_snapshot", Money, nullable=False),
        _created(),
    )
    op.create_table(
        "orders",
        _id(),
        _tenant(),
        sa.Column("order_number", sa.String(40), nullable=False, unique=True, index=True),
        _user(),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending", index=True),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="pending", index=True),
        sa.Column("fulfillment_status", sa.String(16), nullable=False, server_default="unfulfilled"),
        sa.Column("subtotal", Money, nullable=False, server_default="0"),
        sa.Column("tax", Money, nullable=False, server_default="0"),
        sa.Column("shipping", Money, nullable=False, server_default="0"),
        sa.Column("discount", Money, nullable=False, server_default="0"),
        sa.Column("total", Money, nullable=False, server_default="0"),
        sa.Column("shipping_address", JSONType),
        sa.Column("billing_address", JSONType),
        sa.Column("shipping_method_id", sa.Integer(), sa.ForeignKey("shipping_methods.id", ondelete="SET NULL")),
        sa.Column("payment_method_id", sa.Integer(), sa.ForeignKey("payment_methods.id", ondelete="SET NULL")),
        sa.Column("customer_email", sa.String(255)),
        sa.Column("customer_name", sa.String(200)),
        sa.Column("customer_phone", sa.String(40)),
        sa.Column("customer_notes", sa.Text()),
        sa.Column("internal_notes", sa.Text()),
        sa.Column("tracking_number", sa.String(120)),
        sa.Column("paid_at", sa.DateTime()),
        sa.Column("shipped_at", sa.DateTime()),
        sa.Column("delivered_at", sa.DateTime()),
        sa.Column("cancelled_at", sa.DateTime()),
        _created(index=True),
        _updated(),
    )
    op.create_table(
        "order_items",
        _id(),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="SET NULL")),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("product_variants.id", ondelete="SET NULL")),
        sa.Column("product_name", sa.String(200), nullable=False),
        sa.Column("variant_name", sa.String(200)),
        sa.Column("sku", sa.String(80)),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", Money, nullable=False),
        sa.Column("total_price", Money, nullable=False),
    )
    op.create_table(
        "order_status_history",
        _id(),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("from_status", sa.String(16)),
        sa.Column("to_status", sa.String(16), nullable=False),
        _user(),
        sa.Column("notes", sa.Text()),
        _created(),
    )

    # --- Conteúdo ---
    op.create_table(
        "blog_posts",
        _id(),
        _tenant(),
        _user("author_id"),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("excerpt", sa.Text()),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft", index=True),
        sa.Column("tags", JSONType),
        sa.Column("category", sa.String(80), index=True),
        sa.Column("featured_image", sa.String(512)),
        sa.Column("meta_title", sa.String(255)),
        sa.Column("meta_description", sa.String(512)),
        sa.Column("published_at", sa.DateTime(), index=True),
        _created(),
        _updated(),
        sa.UniqueConstraint("tenant_id", "slug", name="uq_blog_tenant_slug"),
    )
    op.create_table(
        "landing_pages",
        _id(),
        _tenant(),
        sa.Column("slug", sa.String(200), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("sections", JSONType),
        sa.Column("settings", JSONType),
        _flag("is_published", False),
        sa.Column("published_at", sa.DateTime()),
        sa.Column("meta_title", sa.String(255)),
        sa.Column("meta_description", sa.String(512)),
        _created(),
        _updated(),
        sa.UniqueConstraint("tenant_id", "slug", name="uq_landing_tenant_slug"),
    )
    op.create_table(
        "page_views",
        _id(),
        _tenant(),
        sa.Column("page_id", sa.Integer(), sa.ForeignKey("landing_pages.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("session_id", sa.String(120)),
        sa.Column("referrer", sa.String(512)),
        sa.Column("device_type", sa.String(16)),
        sa.Column("viewed_at", sa.DateTime(), nullable=False, index=True),
    )

    # --- Dashboard ---
    op.create_table(
        "dashboard_menus",
        _id(),
        _tenant(),
        sa.Column("parent_id", sa.Integer(), sa.ForeignKey("dashboard_menus.id", ondelete="SET NULL")),
        sa.Column("key", sa.String(80), nullable=False),
        sa.Column("label", sa.String(120), nullable=False),
        sa.Column("icon", sa.String(60)),
        sa.Column("route", sa.String(255)),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        _flag("is_active", True),
        sa.Column("required_roles", JSONType),
        sa.Column("required_permissions", JSONType),
        sa.Column("feature_flag", sa.String(60)),
        sa.Column("page_type", sa.String(40)),
        sa.Column("badge", sa.String(40)),
        sa.UniqueConstraint("tenant_id", "key", name="uq_menu_tenant_key"),
    )
    op.create_table(
        "widget_definitions",
        _id(),
        _tenant(nullable=True),
        sa.Column("key", sa.String(80), nullable=False, unique=True, index=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("category", sa.String(60), nullable=False, server_default="general"),
        sa.Column("component", sa.String(120)),
        sa.Column("tags", JSONType),
        sa.Column("use_cases", JSONType),
        sa.Column("config_schema", JSONType),
        sa.Column("data_requirements", JSONType),
        sa.Column("examples", JSONType),
        _flag("is_active", True),
        _created(),
        _updated(),
    )
    op.create_table(
        "dashboard_layouts",
        _id(),
        _tenant(),
        _user(ondelete="CASCADE", index=True),
        sa.Column("page_id", sa.String(80), nullable=False, server_default="home"),
        sa.Column("name", sa.String(120), nullable=False, server_default="Default"),
        sa.Column("scope", sa.String(10), nullable=False, server_default="global"),
        _flag("is_default", False),
        _created(),
    )
    op.create_table(
        "widget_instances",
        _id(),
        sa.Column("layout_id", sa.Integer(), sa.ForeignKey("dashboard_layouts.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        sa.Column("widget_key", sa.String(80), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("col_span", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("row_span", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("config", JSONType),
        _flag("is_visible", True),
    )

    # --- Comunicação ---
    op.create_table(
        "messaging_settings",
        _id(),
        _tenant(unique=True),
        _flag("enabled", False),
        sa.Column("max_message_length", sa.Integer(), nullable=False, server_default="2000"),
        sa.Column("max_group_participants", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("message_retention_days", sa.Integer(), nullable=False, server_default="90"),
        _updated(),
    )
    op.create_table(
        "conversations",
        _id(),
        _tenant(),
        _user("created_by_id"),
        sa.Column("type", sa.String(10), nullable=False, server_default="direct"),
        sa.Column("name", sa.String(120)),
        sa.Column("description", sa.String(255)),
        sa.Column("last_message_at", sa.DateTime(), index=True),
        sa.Column("last_message_text", sa.String(100)),
        _created(),
        _updated(),
    )
    op.create_table(
        "conversation_participants",
        _id(),
        sa.Column("conversation_id", sa.Integer(), sa.ForeignKey("conversations.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        _user(ondelete="CASCADE", nullable=False, index=True),
        _flag("is_active", True),
        _flag("is_muted", False),
        sa.Column("joined_at", sa.DateTime(), nullable=False),
        sa.Column("left_at", sa.DateTime()),
        sa.Column("last_read_at", sa.DateTime()),
        sa.Column("last_read_message_id", sa.Integer()),
        sa.UniqueConstraint("conversation_id", "user_id", name="uq_participant_conversation_user"),
    )
    op.create_table(
        "messages",
        _id(),
        sa.Column("conversation_id", sa.Integer(), sa.ForeignKey("conversations.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        _user("sender_id"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("type", sa.String(10), nullable=False, server_default="text"),
        _flag("is_system_message", False),
        sa.Column("edited_at", sa.DateTime()),
        sa.Column("deleted_at", sa.DateTime()),
        _created(index=True),
    )
    op.create_table(
        "message_statuses",
        _id(),
        sa.Column("message_id", sa.Integer(), sa.ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True),
        _user(ondelete="CASCADE", nullable=False, index=True),
        sa.Column("status", sa.String(10), nullable=False, server_default="sent"),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("message_id", "user_id", name="uq_message_status_user"),
    )
    op.create_table(
        "notifications",
        _id(),
        _tenant(),
        _user(ondelete="CASCADE", nullable=False, index=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("category", sa.String(20), nullable=False, server_default="system", index=True),
        sa.Column("priority", sa.String(10), nullable=False, server_default="normal"),
        sa.Column("action_url", sa.String(512)),
        sa.Column("action_label", sa.String(80)),
        sa.Column("metadata", JSONType),
        sa.Column("required_permission", sa.String(100)),
        _flag("delivered", True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false(), index=True),
        sa.Column("read_at", sa.DateTime()),
        _created(index=True),
    )
    op.create_table(
        "notification_preferences",
        _id(),
        _user(ondelete="CASCADE", nullable=False, index=True),
        sa.Column("category", sa.String(20), nullable=False),
        _flag("enabled", True),
        _flag("dnd_enabled", False),
        sa.Column("dnd_start_time", sa.String(5)),
        sa.Column("dnd_end_time", sa.String(5)),
        sa.Column("dnd_days", JSONType),
        sa.UniqueConstraint("user_id", "category", name="uq_notification_pref_user_category"),
    )

    # --- Calendário ---
    op.create_table(
        "calendar_events",
        _id(),
        _tenant(),
        _user("creator_id", index=True),
        sa.Column("parent_event_id", sa.Integer(), sa.ForeignKey("calendar_events.id", ondelete="CASCADE"), index=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("start_time", sa.DateTime(), nullable=False, index=True),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        _flag("all_day", False),
        sa.Column("location", sa.String(255)),
        sa.Column("color", sa.String(20)),
        sa.Column("status", sa.String(12), nullable=False, server_default="scheduled"),
        sa.Column("visibility", sa.String(10), nullable=False, server_default="public"),
        sa.Column("metadata", JSONType),
        _created(),
        _updated(),
    )
    op.create_table(
        "recurrence_rules",
        _id(),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("calendar_events.id", ondelete="CASCADE"),
                  nullable=False, unique=True),
        sa.Column("frequency", sa.String(10), nullable=False),
        sa.Column("interval", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("by_day", JSONType),
        sa.Column("by_month_day", JSONType),
        sa.Column("by_month", JSONType),
        sa.Column("count", sa.Integer()),
        sa.Column("until", sa.DateTime()),
        sa.Column("exceptions", JSONType),
    )
    op.create_table(
        "event_attendees",
        _id(),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("calendar_events.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        _user(ondelete="CASCADE", nullable=False, index=True),
        sa.Column("response_status", sa.String(10), nullable=False, server_default="pending"),
        _flag("is_organizer", False),
        sa.Column("responded_at", sa.DateTime()),
        sa.UniqueConstraint("event_id", "user_id", name="uq_attendee_event_user"),
    )
    op.create_table(
        "event_reminders",
        _id(),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("calendar_events.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        _user(ondelete="CASCADE"),
        sa.Column("minutes_before", sa.Integer(), nullable=False, server_default="15"),
    )


def downgrade():
    for table in (
        "event_reminders", "event_attendees", "recurrence_rules", "calendar_events",
        "notification_preferences", "notifications", "message_statuses", "messages",
        "conversation_participants", "conversations", "messaging_settings",
        "widget_instances", "dashboard_layouts", "widget_definitions", "dashboard_menus",
        "page_views", "landing_pages", "blog_posts",
        "order_status_history", "order_items", "orders", "cart_items", "carts",
        "ecommerce_settings", "payment_methods", "shipping_methods",
        "inventory_adjustments", "inventory", "product_variants", "products",
        "cron_logs", "cron_jobs", "activity_logs", "users", "role_permissions",
        "roles", "permissions", "tenants",
    ):
        op.drop_table(table)
