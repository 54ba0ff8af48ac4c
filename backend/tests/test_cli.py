"""
CLI command tests (flask storefront ...).
"""

from datetime import timedelta

from storefront.models import Product, Voucher
from storefront.time_utils import utcnow


def test_add_product_creates_then_updates(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["storefront", "add-product", "--id", "p1", "--name", "Milk", "--price", "25000"])
    assert result.exit_code == 0
    assert "untracked" in result.output

    result = runner.invoke(args=[
        "storefront", "add-product", "--id", "p1", "--name", "Milk 1L", "--price", "27000", "--stock", "12",
    ])
    assert result.exit_code == 0

    db_session.expire_all()
    product = db_session.get(Product, "p1")
    assert (product.name, product.price, product.stock) == ("Milk 1L", 27000, 12)


def test_create_voucher(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        "storefront", "create-voucher", "--code", "sale20", "--type", "percentage",
        "--value", "20", "--max-discount", "20000", "--private",
    ])
    assert result.exit_code == 0, result.output

    db_session.expire_all()
    voucher = db_session.query(Voucher).filter_by(code="SALE20").one()
    assert voucher.is_public is False
    assert voucher.max_discount == 20000


def test_create_voucher_reports_domain_errors(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["storefront", "create-voucher", "--code", "BIG", "--type", "percentage", "--value", "150"])
    assert result.exit_code != 0
    assert "Error" in result.output


def test_deactivate_expired_vouchers(app, db_session, make_voucher):
    make_voucher("OLD", start_date=utcnow() - timedelta(days=10), end_date=utcnow() - timedelta(days=1))
    make_voucher("CURRENT")

    result = app.test_cli_runner().invoke(args=["storefront", "deactivate-expired-vouchers"])
    assert "Deactivated 1 expired vouchers." in result.output

    db_session.expire_all()
    statuses = {v.code: v.status for v in db_session.query(Voucher).all()}
    assert statuses == {"OLD": "inactive", "CURRENT": "active"}
