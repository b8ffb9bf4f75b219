"""initial

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade():
    # Enums are stored as VARCHAR + CHECK so new states never need ALTER TYPE.
    op.create_table(
        "mpesa_transactions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("checkout_request_id", sa.String(64), nullable=False),
        sa.Column("merchant_request_id", sa.String(64), nullable=False),
        sa.Column("phone_number", sa.String(12), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("account_reference", sa.String(64), nullable=False),
        sa.Column("transaction_desc", sa.String(255), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("delivery_address", sa.String(500), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "completed",
                "failed",
                "cancelled",
                name="mpesa_transaction_status",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("result_code", sa.Integer, nullable=True),
        sa.Column("result_desc", sa.String(255), nullable=True),
        sa.Column("mpesa_receipt_number", sa.String(32), nullable=True),
        sa.Column("transaction_date", sa.String(14), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("account_reference", name="uq_mpesa_transactions_account_reference"),
        sa.UniqueConstraint("mpesa_receipt_number", name="uq_mpesa_transactions_receipt"),
    )
    op.create_index("ix_mpesa_transactions_checkout_request_id", "mpesa_transactions", ["checkout_request_id"], unique=True)
    op.create_index("ix_mpesa_transactions_phone_number", "mpesa_transactions", ["phone_number"], unique=False)
    op.create_index("ix_mpesa_transactions_status_created", "mpesa_transactions", ["status", "created_at"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("order_number", sa.String(32), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("delivery_address", sa.String(500), nullable=True),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column(
            "payment_method",
            sa.Enum("M-Pesa", "Pay on Delivery", name="order_payment_method", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "confirmed",
                "processing",
                "shipped",
                "delivered",
                "cancelled",
                "paid",
                name="order_status",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("mpesa_receipt_number", sa.String(32), nullable=True),
        sa.Column("checkout_request_id", sa.String(64), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("delivery_date", sa.Date, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("mpesa_receipt_number", name="uq_orders_mpesa_receipt_number"),
        sa.UniqueConstraint("checkout_request_id", name="uq_orders_checkout_request_id"),
    )
    op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
    op.create_index("ix_orders_status_created", "orders", ["status", "created_at"], unique=False)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("slug", sa.String(128), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("price", sa.Integer, nullable=False),
        sa.Column("original_price", sa.Integer, nullable=True),
        sa.Column(
            "condition",
            sa.Enum("new", "refurbished", "x-uk", "x-us", name="product_condition", native_enum=False),
            nullable=False,
        ),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("warranty", sa.String(128), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_products_slug", "products", ["slug"], unique=True)
    op.create_index("ix_products_category_active", "products", ["category", "is_active"], unique=False)


def downgrade():
    op.drop_table("products")
    op.drop_table("orders")
    op.drop_table("mpesa_transactions")
