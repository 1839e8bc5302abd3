"""Initial ledger schema: catalog, stock ledger, purchases, sales, returns, loyalty

Revision ID: 20261019_ledger
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_ledger"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(with_updated: bool = True):
    cols = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]
    if with_updated:
        cols.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False)
        )
    return cols


def _version_col():
    return sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1"))


def upgrade():
    # ------------------------------------------------------------------
    # Catalog (owned by the CRUD layer; referenced by the ledger core)
    # ------------------------------------------------------------------
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint("id", name="pk_branches"),
        sa.UniqueConstraint("code", name="uq_branches_code"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("supplier_code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact_person", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint("id", name="pk_suppliers"),
        sa.UniqueConstraint("supplier_code", name="uq_suppliers_supplier_code"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("supplier_id", sa.Integer(), nullable=True),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("cost_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("sale_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("stock_alert_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reorder_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"], name="fk_products_supplier_id_suppliers"),
        sa.PrimaryKeyConstraint("id", name="pk_products"),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_supplier_id", ["supplier_id"], unique=False)
        batch_op.create_index("ix_products_name", ["name"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint("id", name="pk_customers"),
        sa.UniqueConstraint("customer_code", name="uq_customers_customer_code"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(with_updated=False),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], name="fk_users_branch_id_branches"),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_branch_id", ["branch_id"], unique=False)

    # ------------------------------------------------------------------
    # Stock ledger + inventory log
    # ------------------------------------------------------------------
    op.create_table(
        "stock_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _version_col(),
        *_timestamps(),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_entries_quantity_non_negative"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_stock_entries_product_id_products"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], name="fk_stock_entries_branch_id_branches"),
        sa.PrimaryKeyConstraint("id", name="pk_stock_entries"),
        sa.UniqueConstraint("product_id", "branch_id", name="uq_stock_entries_product_branch"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_entries", schema=None) as batch_op:
        batch_op.create_index("ix_stock_entries_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_stock_entries_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_stock_entries_branch_quantity", ["branch_id", "quantity"], unique=False)

    op.create_table(
        "inventory_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("change_type", sa.String(16), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("previous_stock", sa.Integer(), nullable=False),
        sa.Column("new_stock", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(16), nullable=False, server_default="manual"),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        *_timestamps(with_updated=False),
        sa.CheckConstraint(
            "new_stock = previous_stock + quantity_change",
            name="ck_inventory_logs_stock_delta_consistent",
        ),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_inventory_logs_product_id_products"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], name="fk_inventory_logs_branch_id_branches"),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], name="fk_inventory_logs_created_by_id_users"),
        sa.PrimaryKeyConstraint("id", name="pk_inventory_logs"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory_logs", schema=None) as batch_op:
        batch_op.create_index("ix_inventory_logs_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_inventory_logs_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_inventory_logs_change_type", ["change_type"], unique=False)
        batch_op.create_index("ix_inventory_logs_created_at", ["created_at"], unique=False)
        batch_op.create_index(
            "ix_inventory_logs_product_branch_created",
            ["product_id", "branch_id", "created_at"],
            unique=False,
        )
        batch_op.create_index("ix_inventory_logs_reference", ["reference_type", "reference_id"], unique=False)

    # ------------------------------------------------------------------
    # Purchases
    # ------------------------------------------------------------------
    op.create_table(
        "purchases",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("supplier_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("invoice_no", sa.String(64), nullable=False),
        sa.Column("purchase_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("grand_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="unpaid"),
        sa.Column("payment_method", sa.String(16), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        _version_col(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"], name="fk_purchases_supplier_id_suppliers"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], name="fk_purchases_branch_id_branches"),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], name="fk_purchases_created_by_id_users"),
        sa.PrimaryKeyConstraint("id", name="pk_purchases"),
        sa.UniqueConstraint("invoice_no", name="uq_purchases_invoice_no"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("purchases", schema=None) as batch_op:
        batch_op.create_index("ix_purchases_supplier_id", ["supplier_id"], unique=False)
        batch_op.create_index("ix_purchases_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_purchases_status", ["status"], unique=False)
        batch_op.create_index("ix_purchases_branch_date", ["branch_id", "purchase_date"], unique=False)

    op.create_table(
        "purchase_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("purchase_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_cost_cents", sa.Integer(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        *_timestamps(with_updated=False),
        sa.CheckConstraint("quantity > 0", name="ck_purchase_items_quantity_positive"),
        sa.CheckConstraint("unit_cost_cents >= 0", name="ck_purchase_items_unit_cost_non_negative"),
        sa.ForeignKeyConstraint(["purchase_id"], ["purchases.id"], name="fk_purchase_items_purchase_id_purchases"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_purchase_items_product_id_products"),
        sa.PrimaryKeyConstraint("id", name="pk_purchase_items"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("purchase_items", schema=None) as batch_op:
        batch_op.create_index("ix_purchase_items_purchase_id", ["purchase_id"], unique=False)
        batch_op.create_index("ix_purchase_items_product_id", ["product_id"], unique=False)

    # ------------------------------------------------------------------
    # Sales + returns
    # ------------------------------------------------------------------
    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("invoice_no", sa.String(64), nullable=False),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("grand_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("paid_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("due_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_method", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="completed"),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        _version_col(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], name="fk_sales_branch_id_branches"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], name="fk_sales_customer_id_customers"),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], name="fk_sales_created_by_id_users"),
        sa.PrimaryKeyConstraint("id", name="pk_sales"),
        sa.UniqueConstraint("invoice_no", name="uq_sales_invoice_no"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.create_index("ix_sales_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_sales_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_sales_status", ["status"], unique=False)
        batch_op.create_index("ix_sales_branch_status_created", ["branch_id", "status", "created_at"], unique=False)

    op.create_table(
        "sale_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        *_timestamps(with_updated=False),
        sa.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        sa.CheckConstraint("unit_price_cents >= 0", name="ck_sale_items_unit_price_non_negative"),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], name="fk_sale_items_sale_id_sales"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_sale_items_product_id_products"),
        sa.PrimaryKeyConstraint("id", name="pk_sale_items"),
        sa.UniqueConstraint("sale_id", "product_id", name="uq_sale_items_sale_product"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_items", schema=None) as batch_op:
        batch_op.create_index("ix_sale_items_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_sale_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "sale_returns",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("refund_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("processed_by_id", sa.Integer(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        _version_col(),
        *_timestamps(with_updated=False),
        sa.CheckConstraint("quantity > 0", name="ck_sale_returns_quantity_positive"),
        sa.CheckConstraint("refund_amount_cents >= 0", name="ck_sale_returns_refund_non_negative"),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], name="fk_sale_returns_sale_id_sales"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_sale_returns_product_id_products"),
        sa.ForeignKeyConstraint(["processed_by_id"], ["users.id"], name="fk_sale_returns_processed_by_id_users"),
        sa.PrimaryKeyConstraint("id", name="pk_sale_returns"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_returns", schema=None) as batch_op:
        batch_op.create_index("ix_sale_returns_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_sale_returns_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_sale_returns_status", ["status"], unique=False)
        batch_op.create_index("ix_sale_returns_sale_product", ["sale_id", "product_id"], unique=False)

    # ------------------------------------------------------------------
    # Loyalty ledger
    # ------------------------------------------------------------------
    op.create_table(
        "loyalty_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("points_balance", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_redeemed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _version_col(),
        *_timestamps(),
        sa.CheckConstraint("points_balance >= 0", name="ck_loyalty_accounts_balance_non_negative"),
        sa.CheckConstraint("total_earned >= 0", name="ck_loyalty_accounts_earned_non_negative"),
        sa.CheckConstraint("total_redeemed >= 0", name="ck_loyalty_accounts_redeemed_non_negative"),
        sa.CheckConstraint(
            "points_balance = total_earned - total_redeemed",
            name="ck_loyalty_accounts_balance_consistent",
        ),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], name="fk_loyalty_accounts_customer_id_customers"),
        sa.PrimaryKeyConstraint("id", name="pk_loyalty_accounts"),
        sa.UniqueConstraint("customer_id", name="uq_loyalty_accounts_customer"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("loyalty_accounts", schema=None) as batch_op:
        batch_op.create_index("ix_loyalty_accounts_customer_id", ["customer_id"], unique=False)

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(24), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("reference_type", sa.String(16), nullable=False, server_default="manual"),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        *_timestamps(with_updated=False),
        sa.CheckConstraint("points >= 0", name="ck_loyalty_transactions_points_non_negative"),
        sa.CheckConstraint("balance_after >= 0", name="ck_loyalty_transactions_balance_after_non_negative"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], name="fk_loyalty_transactions_customer_id_customers"),
        sa.ForeignKeyConstraint(["account_id"], ["loyalty_accounts.id"], name="fk_loyalty_transactions_account_id_loyalty_accounts"),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], name="fk_loyalty_transactions_created_by_id_users"),
        sa.PrimaryKeyConstraint("id", name="pk_loyalty_transactions"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("loyalty_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_loyalty_transactions_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_loyalty_transactions_account_id", ["account_id"], unique=False)
        batch_op.create_index("ix_loyalty_transactions_type", ["type"], unique=False)
        batch_op.create_index("ix_loyalty_transactions_created_at", ["created_at"], unique=False)
        batch_op.create_index(
            "ix_loyalty_transactions_customer_created",
            ["customer_id", "created_at"],
            unique=False,
        )

    # A sale can be credited at most once
    op.create_index(
        "uq_loyalty_transactions_earned_sale",
        "loyalty_transactions",
        ["reference_type", "reference_id"],
        unique=True,
        sqlite_where=sa.text("type = 'EARNED' AND reference_type = 'sale'"),
        postgresql_where=sa.text("type = 'EARNED' AND reference_type = 'sale'"),
    )


def downgrade():
    op.drop_index("uq_loyalty_transactions_earned_sale", table_name="loyalty_transactions")
    op.drop_table("loyalty_transactions")
    op.drop_table("loyalty_accounts")
    op.drop_table("sale_returns")
    op.drop_table("sale_items")
    op.drop_table("sales")
    op.drop_table("purchase_items")
    op.drop_table("purchases")
    op.drop_table("inventory_logs")
    op.drop_table("stock_entries")
    op.drop_table("users")
    op.drop_table("customers")
    op.drop_table("products")
    op.drop_table("suppliers")
    op.drop_table("branches")
