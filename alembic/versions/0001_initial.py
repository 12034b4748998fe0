"""initial schema: catalog, stock ledger, manufacturing, purchasing, sales, activity, event bus

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19T09:00:00Z
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _base():
    return [
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _index(table: str, *cols: str, unique: bool = False, name: str | None = None):
    op.create_index(name or f"ix_{table}_{cols[0]}", table, list(cols), unique=unique)


def upgrade():
    op.create_table(
        "inv_product",
        *_base(),
        sa.Column("sku", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("product_type", sa.String(length=16), nullable=False, server_default="standard"),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("price", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("reorder_threshold", sa.Integer(), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.CheckConstraint("stock >= 0", name="ck_inv_product_stock_nonneg"),
    )
    _index("inv_product", "sku", unique=True)
    _index("inv_product", "name")
    _index("inv_product", "product_type")
    _index("inv_product", "category")

    op.create_table(
        "inv_stock_movement",
        *_base(),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("inv_product.id"), nullable=False),
        sa.Column("qty_change", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=False),
        sa.Column("reference_type", sa.String(length=32), nullable=True),
        sa.Column("reference_id", sa.String(length=64), nullable=True),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("correlation_id", sa.String(length=64), nullable=True),
        sa.Column("note", sa.String(length=512), nullable=True),
    )
    for col in ("product_id", "reason", "reference_id", "correlation_id"):
        _index("inv_stock_movement", col)
    _index("inv_stock_movement", "product_id", "created_at", name="ix_inv_movement_product_time")

    op.create_table(
        "mrp_bom",
        *_base(),
        sa.Column("bom_number", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("inv_product.id"), nullable=False),
    )
    _index("mrp_bom", "bom_number", unique=True)
    _index("mrp_bom", "product_id", unique=True)

    op.create_table(
        "mrp_bom_line",
        *_base(),
        sa.Column("bom_id", sa.String(length=36), sa.ForeignKey("mrp_bom.id"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("component_id", sa.String(length=36), sa.ForeignKey("inv_product.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.UniqueConstraint("bom_id", "component_id", name="uq_mrp_bom_line_component"),
    )
    _index("mrp_bom_line", "bom_id")
    _index("mrp_bom_line", "component_id")

    op.create_table(
        "mrp_production_order",
        *_base(),
        sa.Column("order_number", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("inv_product.id"), nullable=False),
        sa.Column("bom_id", sa.String(length=36), sa.ForeignKey("mrp_bom.id"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="planned"),
        sa.Column("scheduled_start_date", sa.Date(), nullable=False),
        sa.Column("scheduled_end_date", sa.Date(), nullable=False),
        sa.Column("actual_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    _index("mrp_production_order", "order_number", unique=True)
    for col in ("product_id", "bom_id", "status"):
        _index("mrp_production_order", col)
    _index("mrp_production_order", "status", "scheduled_start_date", name="ix_mrp_po_status_start")

    op.create_table(
        "purchase_vendor",
        *_base(),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("contact_person", sa.String(length=128), nullable=True),
        sa.Column("email", sa.String(length=256), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("lead_time_days", sa.Integer(), nullable=True),
    )
    _index("purchase_vendor", "name")
    _index("purchase_vendor", "email")

    op.create_table(
        "purchase_order",
        *_base(),
        sa.Column("po_number", sa.String(length=64), nullable=False),
        sa.Column("vendor_id", sa.String(length=36), sa.ForeignKey("purchase_vendor.id"), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
        sa.Column("order_date", sa.Date(), nullable=False),
        sa.Column("expected_delivery_date", sa.Date(), nullable=True),
        sa.Column("received_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_cost", sa.Numeric(18, 2), nullable=False, server_default="0"),
    )
    _index("purchase_order", "po_number", unique=True)
    _index("purchase_order", "vendor_id")
    _index("purchase_order", "status")
    _index("purchase_order", "vendor_id", "status", name="ix_purchase_order_vendor_status")

    op.create_table(
        "purchase_order_line",
        *_base(),
        sa.Column("po_id", sa.String(length=36), sa.ForeignKey("purchase_order.id"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("inv_product.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Numeric(18, 2), nullable=False),
    )
    _index("purchase_order_line", "po_id")
    _index("purchase_order_line", "product_id")

    op.create_table(
        "sales_invoice",
        *_base(),
        sa.Column("invoice_number", sa.String(length=64), nullable=False),
        sa.Column("customer_name", sa.String(length=256), nullable=True),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column("discount", sa.Numeric(9, 4), nullable=False, server_default="0"),
        sa.Column("tax_rate", sa.Numeric(9, 4), nullable=False, server_default="0"),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
    )
    _index("sales_invoice", "invoice_number", unique=True)
    _index("sales_invoice", "status")
    _index("sales_invoice", "status", "invoice_date", name="ix_sales_invoice_status_date")

    op.create_table(
        "sales_invoice_line",
        *_base(),
        sa.Column("invoice_id", sa.String(length=36), sa.ForeignKey("sales_invoice.id"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("inv_product.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(18, 2), nullable=False),
        sa.Column("cost", sa.Numeric(18, 2), nullable=False),
    )
    _index("sales_invoice_line", "invoice_id")
    _index("sales_invoice_line", "product_id")

    op.create_table(
        "sales_refund",
        *_base(),
        sa.Column("invoice_id", sa.String(length=36), sa.ForeignKey("sales_invoice.id"), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
    )
    _index("sales_refund", "invoice_id")

    op.create_table(
        "sales_refund_line",
        *_base(),
        sa.Column("refund_id", sa.String(length=36), sa.ForeignKey("sales_refund.id"), nullable=False),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("inv_product.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(18, 2), nullable=False),
    )
    _index("sales_refund_line", "refund_id")
    _index("sales_refund_line", "product_id")

    op.create_table(
        "sys_activity_log",
        *_base(),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("details", sa.Text(), nullable=False, server_default=""),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
    )
    for col in ("actor", "action", "entity_type", "entity_id", "request_id"):
        _index("sys_activity_log", col)
    _index("sys_activity_log", "entity_type", "created_at", name="ix_activity_entity_time")

    op.create_table(
        "outbox_event",
        *_base(),
        sa.Column("topic", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("correlation_id", sa.String(length=64), nullable=True),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    _index("outbox_event", "topic")
    _index("outbox_event", "correlation_id")
    _index("outbox_event", "topic", "created_at", name="ix_outbox_topic_created")
    _index("outbox_event", "delivered", "available_at", name="ix_outbox_delivery")

    op.create_table(
        "event_subscription",
        *_base(),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("topic_pattern", sa.String(length=128), nullable=False),
        sa.Column("target_url", sa.Text(), nullable=False),
        sa.Column("headers", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    _index("event_subscription", "topic_pattern")
    _index("event_subscription", "is_active", "topic_pattern", name="ix_event_sub_active")


def downgrade():
    for table in (
        "event_subscription",
        "outbox_event",
        "sys_activity_log",
        "sales_refund_line",
        "sales_refund",
        "sales_invoice_line",
        "sales_invoice",
        "purchase_order_line",
        "purchase_order",
        "purchase_vendor",
        "mrp_production_order",
        "mrp_bom_line",
        "mrp_bom",
        "inv_stock_movement",
        "inv_product",
    ):
        op.drop_table(table)
