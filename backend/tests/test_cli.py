# Overview: Pytest coverage for the flask CLI command groups.

from branchpos.models import Branch, Product
from branchpos.services import sales_service, stock_service


def test_seed_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "seed"])
    second = runner.invoke(args=["system", "seed"])

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert "Using existing branch" in second.output
    assert db_session.query(Branch).count() == 1
    assert db_session.query(Product).count() == 3


def test_stock_adjust_and_show(app, db_session, branch, product):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "stock", "adjust", "--branch-id", str(branch.id), "--product-id", str(product.id), "--delta", "4",
    ])
    assert result.exit_code == 0, result.output
    assert stock_service.get_stock_quantity(product.id, branch.id) == 4

    result = runner.invoke(args=["stock", "show", "--branch-id", str(branch.id)])
    assert result.exit_code == 0, result.output
    assert "4 units" in result.output


def test_stock_adjust_failure_is_reported(app, db_session, branch, product):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "stock", "adjust", "--branch-id", str(branch.id), "--product-id", str(product.id), "--delta", "-1",
    ])

    assert result.exit_code != 0
    assert "Insufficient stock" in result.output


def test_low_stock(app, db_session, branch, stocked):
    runner = app.test_cli_runner()
    stock_service.adjust_stock(product_id=stocked[0].id, branch_id=branch.id, delta=-3)

    result = runner.invoke(args=["stock", "low", "--branch-id", str(branch.id)])

    assert result.exit_code == 0, result.output
    assert "SKU-001" in result.output


def test_loyalty_process_sale(app, db_session, branch, stocked, customer):
    sale = sales_service.create_sale(
        branch_id=branch.id,
        customer_id=customer.id,
        invoice_no="INV-CLI",
        payment_method="cash",
        items=[{"product_id": stocked[0].id, "quantity": 5, "unit_price_cents": 2000}],
    )
    runner = app.test_cli_runner()

    first = runner.invoke(args=["loyalty", "process-sale", "--sale-id", str(sale.id)])
    second = runner.invoke(args=["loyalty", "process-sale", "--sale-id", str(sale.id)])
    shown = runner.invoke(args=["loyalty", "show", "--customer-id", str(customer.id)])

    assert "Credited 10 points" in first.output
    assert "already credited" in second.output
    assert "balance=10" in shown.output
