"""Initial order engine schema

Revision ID: of001_initial_order_engine
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "of001_initial_order_engine"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_ref", sa.String(64), nullable=True),
        sa.Column("approval_flag", sa.String(32), nullable=False, server_default="NEW"),
        sa.Column("salesman_id", sa.Integer(), nullable=False),
        sa.Column("storekeeper_id", sa.Integer(), nullable=True),
        sa.Column("storekeeper_claimed_at", sa.DateTime(), nullable=True),
        sa.Column("checker_id", sa.Integer(), nullable=True),
        sa.Column("checker_claimed_at", sa.DateTime(), nullable=True),
        sa.Column("biller_id", sa.Integer(), nullable=True),
        sa.Column("biller_claimed_at", sa.DateTime(), nullable=True),
        sa.Column("is_billed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("billed_at", sa.DateTime(), nullable=True),
        sa.Column("freight_charge", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_by_id", sa.Integer(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("rejected_by_id", sa.Integer(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_customer_ref", ["customer_ref"], unique=False)
        batch_op.create_index("ix_orders_approval_flag", ["approval_flag"], unique=False)
        batch_op.create_index("ix_orders_salesman_id", ["salesman_id"], unique=False)
        batch_op.create_index("ix_orders_storekeeper_id", ["storekeeper_id"], unique=False)
        batch_op.create_index("ix_orders_checker_id", ["checker_id"], unique=False)
        batch_op.create_index("ix_orders_biller_id", ["biller_id"], unique=False)
        batch_op.create_index("ix_orders_flag_created", ["approval_flag", "created_at"], unique=False)

    op.create_table(
        "order_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_ref", sa.String(64), nullable=False),
        sa.Column("ordered_qty", sa.Numeric(14, 4), nullable=False),
        sa.Column("available_qty", sa.Numeric(14, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("rate", sa.Numeric(14, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("fulfillment_flag", sa.String(32), nullable=False, server_default="NEW_ITEM"),
        sa.Column("availability_accepted", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("narration", sa.Text(), nullable=True),
        sa.Column("is_checked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("checked_by_id", sa.Integer(), nullable=True),
        sa.Column("checked_at", sa.DateTime(), nullable=True),
        sa.Column("resolver_id", sa.Integer(), nullable=True),
        sa.Column("resolver_claimed_at", sa.DateTime(), nullable=True),
        sa.Column("estimated_qty", sa.Numeric(14, 4), nullable=True),
        sa.Column("estimated_total", sa.Numeric(14, 4), nullable=True),
        sa.Column("replaces_line_id", sa.Integer(), nullable=True),
        sa.Column("replaced_by_line_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["replaces_line_id"], ["order_lines.id"]),
        sa.ForeignKeyConstraint(["replaced_by_line_id"], ["order_lines.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("order_lines", schema=None) as batch_op:
        batch_op.create_index("ix_order_lines_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_order_lines_order_flag", ["order_id", "fulfillment_flag"], unique=False)

    op.create_table(
        "line_suggestions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("line_id", sa.Integer(), nullable=False),
        sa.Column("proposed_product_ref", sa.String(64), nullable=False),
        sa.Column("price", sa.Numeric(14, 4), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="PROPOSED"),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("resolved_by_id", sa.Integer(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("resulting_line_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["line_id"], ["order_lines.id"]),
        sa.ForeignKeyConstraint(["resulting_line_id"], ["order_lines.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("line_suggestions", schema=None) as batch_op:
        batch_op.create_index("ix_line_suggestions_line_id", ["line_id"], unique=False)

    op.create_table(
        "line_images",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("line_id", sa.Integer(), nullable=False),
        sa.Column("content", sa.LargeBinary(), nullable=False),
        sa.Column("content_type", sa.String(64), nullable=True),
        sa.Column("attached_by_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["line_id"], ["order_lines.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("line_images", schema=None) as batch_op:
        batch_op.create_index("ix_line_images_line_id", ["line_id"], unique=False)

    op.create_table(
        "shortage_reports",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("line_id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_ref", sa.String(64), nullable=False),
        sa.Column("requested_qty", sa.Numeric(14, 4), nullable=False),
        sa.Column("reported_available_qty", sa.Numeric(14, 4), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("status", sa.String(24), nullable=False, server_default="OPEN"),
        sa.Column("supplier_ref", sa.String(64), nullable=True),
        sa.Column("supplier_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("response_qty", sa.Numeric(14, 4), nullable=True),
        sa.Column("reported_by_id", sa.Integer(), nullable=False),
        sa.Column("escalated_by_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("escalated_at", sa.DateTime(), nullable=True),
        sa.Column("responded_at", sa.DateTime(), nullable=True),
        sa.Column("closed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["line_id"], ["order_lines.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("shortage_reports", schema=None) as batch_op:
        batch_op.create_index("ix_shortage_reports_line_id", ["line_id"], unique=False)
        batch_op.create_index("ix_shortage_reports_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_shortage_reports_status", ["status"], unique=False)
        batch_op.create_index("ix_shortage_reports_line_status", ["line_id", "status"], unique=False)


def downgrade():
    op.drop_table("shortage_reports")
    op.drop_table("line_images")
    op.drop_table("line_suggestions")
    op.drop_table("order_lines")
    op.drop_table("orders")
