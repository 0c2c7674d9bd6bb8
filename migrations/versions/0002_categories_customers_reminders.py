"""Product categories, customers and reminder delivery

Revision ID: 0002_categories_customers_reminders
Revises: 0001_initial_schema
Create Date: 2026-10-19 10:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0002_categories_customers_reminders"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _tenant():
    return sa.Column(
        "tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )


def upgrade():
    op.create_table(
        "product_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant(),
        sa.Column(
            "parent_id", sa.Integer(), sa.ForeignKey("product_categories.id", ondelete="SET NULL"),
            nullable=True, index=True,
        ),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("slug", sa.String(140), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_visible", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("tenant_id", "slug", name="uq_product_category_tenant_slug"),
    )
    op.create_table(
        "product_category_links",
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("product_categories.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100)),
        sa.Column("last_name", sa.String(100)),
        sa.Column("phone", sa.String(40)),
        sa.Column("company", sa.String(200)),
        sa.Column("shipping_address", JSONType),
        sa.Column("billing_address", JSONType),
        sa.Column("notes", sa.Text()),
        sa.Column("tags", JSONType),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("tenant_id", "email", name="uq_customer_tenant_email"),
    )
    with op.batch_alter_table("orders") as batch:
        batch.add_column(sa.Column("customer_id", sa.Integer(), nullable=True))
        batch.create_index("ix_orders_customer_id", ["customer_id"])
        batch.create_foreign_key(
            "fk_orders_customer_id", "customers", ["customer_id"], ["id"], ondelete="SET NULL",
        )
    with op.batch_alter_table("event_reminders") as batch:
        batch.add_column(sa.Column("is_sent", sa.Boolean(), nullable=False, server_default=sa.false()))
        batch.add_column(sa.Column("sent_at", sa.DateTime()))


def downgrade():
    with op.batch_alter_table("event_reminders") as batch:
        batch.drop_column("sent_at")
        batch.drop_column("is_sent")
    with op.batch_alter_table("orders") as batch:
        batch.drop_constraint("fk_orders_customer_id", type_="foreignkey")
        batch.drop_index("ix_orders_customer_id")
        batch.drop_column("customer_id")
    for table in ("customers", "product_category_links", "product_categories"):
        op.drop_table(table)
