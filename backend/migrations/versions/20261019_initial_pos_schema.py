"""Initial POS schema: catalog, customers, promotions, transactions, holds, refunds

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("barcode", sa.String(100), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("brand_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
        sa.UniqueConstraint("barcode", name="uq_products_barcode"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_sku", ["sku"], unique=False)
        batch_op.create_index("ix_products_barcode", ["barcode"], unique=False)
        batch_op.create_index("ix_products_is_active", ["is_active"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("tier", sa.String(16), nullable=False, server_default="standard"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("total_spent_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_purchases", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_purchase_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_customers_email"),
        sa.UniqueConstraint("phone", name="uq_customers_phone"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.create_index("ix_customers_is_active", ["is_active"], unique=False)

    op.create_table(
        "promotions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("promo_type", sa.String(32), nullable=False),
        sa.Column("discount_value", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("buy_quantity", sa.Integer(), nullable=True),
        sa.Column("get_quantity", sa.Integer(), nullable=True),
        sa.Column("get_product_id", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("start_time", sa.String(5), nullable=True),
        sa.Column("end_time", sa.String(5), nullable=True),
        sa.Column("applicable_product_ids", sa.JSON(), nullable=True),
        sa.Column("applicable_branch_ids", sa.JSON(), nullable=True),
        sa.Column("member_only", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["get_product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("start_date <= end_date", name="ck_promotions_window"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("promotions", schema=None) as batch_op:
        batch_op.create_index("ix_promotions_promo_type", ["promo_type"], unique=False)
        batch_op.create_index("ix_promotions_is_active", ["is_active"], unique=False)
        batch_op.create_index("ix_promotions_window", ["start_date", "end_date"], unique=False)
        batch_op.create_index("ix_promotions_active_priority", ["is_active", "priority"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_number", sa.String(64), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("cashier_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_method", sa.String(16), nullable=True),
        sa.Column("amount_paid_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("change_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="completed"),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_number", name="uq_transactions_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("transactions", schema=None) as batch_op:
        batch_op.create_index("ix_transactions_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_transactions_status", ["status"], unique=False)
        batch_op.create_index("ix_transactions_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_transactions_branch_created", ["branch_id", "created_at"], unique=False)
        batch_op.create_index("ix_transactions_cashier_created", ["cashier_id", "created_at"], unique=False)
        batch_op.create_index("ix_transactions_customer_created", ["customer_id", "created_at"], unique=False)

    op.create_table(
        "transaction_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("applied_promotion_ids", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("transaction_items", schema=None) as batch_op:
        batch_op.create_index("ix_transaction_items_transaction_id", ["transaction_id"], unique=False)

    op.create_table(
        "branch_stock",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "product_id", name="uq_branch_stock_branch_product"),
        sa.CheckConstraint("quantity >= 0", name="ck_branch_stock_non_negative"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("branch_stock", schema=None) as batch_op:
        batch_op.create_index("ix_branch_stock_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_branch_stock_product_id", ["product_id"], unique=False)

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("movement_type", sa.String(16), nullable=False),
        sa.Column("quantity_delta", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_movements", schema=None) as batch_op:
        batch_op.create_index("ix_stock_movements_branch_product", ["branch_id", "product_id"], unique=False)
        batch_op.create_index("ix_stock_movements_transaction_id", ["transaction_id"], unique=False)

    op.create_table(
        "customer_reward_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("points_balance", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("lifetime_points_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("lifetime_points_redeemed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("customer_id", name="uq_reward_accounts_customer"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customer_reward_accounts", schema=None) as batch_op:
        batch_op.create_index("ix_customer_reward_accounts_customer_id", ["customer_id"], unique=False)

    op.create_table(
        "customer_reward_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("reward_account_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["reward_account_id"], ["customer_reward_accounts.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customer_reward_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_customer_reward_transactions_reward_account_id", ["reward_account_id"], unique=False)
        batch_op.create_index("ix_customer_reward_transactions_transaction_type", ["transaction_type"], unique=False)
        batch_op.create_index("ix_customer_reward_transactions_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_customer_reward_transactions_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_customer_reward_transactions_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_reward_txns_account_occurred", ["reward_account_id", "occurred_at"], unique=False)

    op.create_table(
        "held_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("held_by", sa.Integer(), nullable=False),
        sa.Column("held_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("state", sa.String(16), nullable=False, server_default="held"),
        sa.Column("cart_snapshot", sa.JSON(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id", name="uq_held_transactions_transaction"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("held_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_held_transactions_state", ["state"], unique=False)
        batch_op.create_index("ix_held_transactions_user_state", ["held_by", "state"], unique=False)
        batch_op.create_index("ix_held_transactions_state_expires", ["state", "expires_at"], unique=False)

    op.create_table(
        "refunds",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("refund_number", sa.String(64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("refund_amount_cents", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("processed_by", sa.Integer(), nullable=True),
        sa.Column("approved_by", sa.Integer(), nullable=True),
        sa.Column("rejected_by", sa.Integer(), nullable=True),
        sa.Column("completed_by", sa.Integer(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("refund_number", name="uq_refunds_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("refunds", schema=None) as batch_op:
        batch_op.create_index("ix_refunds_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_refunds_status", ["status"], unique=False)
        batch_op.create_index("ix_refunds_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_refunds_transaction_status", ["transaction_id", "status"], unique=False)


def downgrade():
    op.drop_table("refunds")
    op.drop_table("held_transactions")
    op.drop_table("customer_reward_transactions")
    op.drop_table("customer_reward_accounts")
    op.drop_table("stock_movements")
    op.drop_table("branch_stock")
    op.drop_table("transaction_items")
    op.drop_table("transactions")
    op.drop_table("promotions")
    op.drop_table("customers")
    op.drop_table("products")
