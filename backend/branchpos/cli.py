# Overview: Flask CLI command groups for bootstrap, inspection, and ledger maintenance.

# backend/branchpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed
#   Idempotent demo data: one branch, supplier, user, customer and a few products.
#
# Stock ledger:
# - python -m flask stock show --branch-id 1 [--product-id 1]
#   Show on-hand quantities (one product or the whole branch).
# - python -m flask stock adjust --branch-id 1 --product-id 1 --delta -2 --note "Damaged"
#   Apply a signed adjustment through the ledger (logged).
# - python -m flask stock low --branch-id 1
#   List products at or below their stock alert quantity.
#
# Loyalty ledger:
# - python -m flask loyalty show --customer-id 1 [--limit 20]
#   Show balance and recent transactions.
# - python -m flask loyalty process-sale --sale-id 12
#   Award points for a sale (no-op if already credited).

import click
from flask.cli import with_appcontext

from .errors import PosError
from .extensions import db
from .models import Branch, Supplier, Product, Customer, User
from .services import stock_service, loyalty_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' for demo data.")


@system_group.command('seed')
@with_appcontext
def seed():
    """
    Idempotent demo data.

    Creates (when missing):
    - Branch MAIN
    - Supplier SUP-001
    - User admin@branchpos.local
    - Customer CUST-001
    - Products SKU-001..SKU-003 (no stock; book it in with a purchase)
    """
    branch = db.session.query(Branch).filter_by(code="MAIN").first()
    if not branch:
        branch = Branch(name="Main Branch", code="MAIN")
        db.session.add(branch)
        db.session.flush()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    supplier = db.session.query(Supplier).filter_by(supplier_code="SUP-001").first()
    if not supplier:
        supplier = Supplier(supplier_code="SUP-001", name="Default Supplier")
        db.session.add(supplier)
        db.session.flush()
        click.echo(f"PASS Created supplier: {supplier.name} (ID: {supplier.id})")

    if not db.session.query(User).filter_by(email="admin@branchpos.local").first():
        db.session.add(User(branch_id=branch.id, name="Admin", email="admin@branchpos.local"))
        click.echo("PASS Created user: admin@branchpos.local")

    if not db.session.query(Customer).filter_by(customer_code="CUST-001").first():
        db.session.add(Customer(customer_code="CUST-001", name="Walk-in Regular"))
        click.echo("PASS Created customer: CUST-001")

    products = [
        ("SKU-001", "Rice 5kg", 45000, 52000, 10),
        ("SKU-002", "Cooking Oil 1L", 16000, 18500, 12),
        ("SKU-003", "Tea 400g", 21000, 24000, 5),
    ]
    for sku, name, cost, price, alert in products:
        if db.session.query(Product).filter_by(sku=sku).first():
            continue
        db.session.add(Product(
            supplier_id=supplier.id,
            sku=sku,
            name=name,
            cost_price_cents=cost,
            sale_price_cents=price,
            stock_alert_quantity=alert,
        ))
        click.echo(f"PASS Created product: {sku} {name}")

    db.session.commit()
    click.echo("DONE Seed complete.")


@click.group('stock')
def stock_group():
    """Stock ledger inspection and adjustment."""


@stock_group.command('show')
@click.option('--branch-id', type=int, required=True, help='Branch ID')
@click.option('--product-id', type=int, help='Single product (default: whole branch)')
@with_appcontext
def show_stock(branch_id, product_id):
    if product_id is not None:
        quantity = stock_service.get_stock_quantity(product_id, branch_id)
        click.echo(f"product={product_id} branch={branch_id} quantity={quantity}")
        return

    try:
        entries = stock_service.list_branch_stock(branch_id)
    except PosError as e:
        raise click.ClickException(e.message)

    click.echo(f"{'PRODUCT':<10} {'QTY':>8}")
    for entry in entries:
        click.echo(f"{entry.product_id:<10} {entry.quantity:>8}")
    value = stock_service.get_branch_stock_value(branch_id)
    click.echo(f"\n{value['total_items']} items, {value['total_quantity']} units, "
               f"value {value['total_value_cents'] / 100:,.2f}")


@stock_group.command('adjust')
@click.option('--branch-id', type=int, required=True, help='Branch ID')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--delta', type=int, required=True, help='Signed quantity change')
@click.option('--note', help='Reason for the adjustment')
@with_appcontext
def adjust_stock_cli(branch_id, product_id, delta, note):
    try:
        entry = stock_service.adjust_stock(
            product_id=product_id,
            branch_id=branch_id,
            delta=delta,
            note=note,
        )
    except PosError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS product={product_id} branch={branch_id} quantity={entry.quantity}")


@stock_group.command('low')
@click.option('--branch-id', type=int, required=True, help='Branch ID')
@with_appcontext
def low_stock_cli(branch_id):
    try:
        entries = stock_service.find_low_stock(branch_id)
    except PosError as e:
        raise click.ClickException(e.message)

    if not entries:
        click.echo("No products at or below their alert quantity.")
        return
    for entry in entries:
        click.echo(
            f"WARN {entry.product.sku:<12} qty={entry.quantity:<6} alert={entry.product.stock_alert_quantity}"
        )


@click.group('loyalty')
def loyalty_group():
    """Loyalty ledger inspection."""


@loyalty_group.command('show')
@click.option('--customer-id', type=int, required=True, help='Customer ID')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def show_loyalty(customer_id, limit):
    try:
        account = loyalty_service.get_account(customer_id)
        if account is None:
            click.echo(f"Customer {customer_id} has no loyalty account.")
            return
        rows = loyalty_service.list_transactions(customer_id, limit=limit)
    except PosError as e:
        raise click.ClickException(e.message)

    click.echo(
        f"balance={account.points_balance} earned={account.total_earned} redeemed={account.total_redeemed}"
    )
    for tx in rows:
        click.echo(f"  {tx.id:>6} {tx.type:<18} {tx.points:>8} -> {tx.balance_after:<8} {tx.reason}")


@loyalty_group.command('process-sale')
@click.option('--sale-id', type=int, required=True, help='Sale ID')
@with_appcontext
def process_sale_cli(sale_id):
    try:
        result = loyalty_service.process_sale_points(sale_id)
    except PosError as e:
        raise click.ClickException(e.message)

    if result["already_processed"]:
        click.echo(f"WARN Sale {sale_id} was already credited with {result['points']} points.")
    else:
        click.echo(f"PASS Credited {result['points']} points to customer {result['customer_id']}.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(loyalty_group)
