# Overview: Flask CLI command group for bootstrap and maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="storefront:create_app").
# - Use: python -m flask storefront <command> [options]
#
# - python -m flask storefront init-db
#   Create all tables (dev/test; use `flask db upgrade` for real databases).
# - python -m flask storefront add-product --id p1 --name "Milk" --price 25000 --stock 10
#   Add or update a catalog product (omit --stock for untracked products).
# - python -m flask storefront create-voucher --code SALE20 --type percentage --value 20 --days 30
#   Create a public voucher valid from now for N days.
# - python -m flask storefront deactivate-expired-vouchers
#   Flip active vouchers past their end date to inactive.

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models import Product
from .services import voucher_service
from .services.money import format_amount
from .services.pricing_service import VALID_VOUCHER_TYPES
from .time_utils import utcnow


@click.group('storefront')
def storefront_group():
    """Storefront bootstrap and maintenance commands."""


@storefront_group.command('init-db')
@with_appcontext
def init_db_cli():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@storefront_group.command('add-product')
@click.option('--id', 'product_id', required=True, help='Product ID')
@click.option('--name', required=True, help='Product name')
@click.option('--price', type=int, required=True, help='Unit price (smallest currency unit)')
@click.option('--stock', type=int, default=None, help='Stock on hand (omit for untracked)')
@with_appcontext
def add_product_cli(product_id, name, price, stock):
    """
    Add or update a catalog product.

    Example:
        flask storefront add-product --id p1 --name "Milk" --price 25000 --stock 10
    """
    product = db.session.get(Product, product_id)
    if product is None:
        product = Product(id=product_id)
        db.session.add(product)

    product.name = name
    product.price = price
    product.stock = stock
    product.is_active = True
    db.session.commit()

    stock_str = "untracked" if stock is None else str(stock)
    click.echo(f"PASS Product {product_id}: {name} @ {format_amount(price)} (stock: {stock_str})")


@storefront_group.command('create-voucher')
@click.option('--code', required=True, help='Voucher code')
@click.option('--name', default=None, help='Display name (defaults to the code)')
@click.option('--type', 'voucher_type', type=click.Choice(VALID_VOUCHER_TYPES), required=True)
@click.option('--value', type=int, default=0, show_default=True, help='Percent or amount')
@click.option('--min-order', type=int, default=0, show_default=True, help='Minimum order subtotal')
@click.option('--max-discount', type=int, default=None, help='Cap for percentage vouchers')
@click.option('--limit', 'usage_limit', type=int, default=None, help='Total usage limit (unlimited if omitted)')
@click.option('--per-user', type=int, default=1, show_default=True, help='Uses per user')
@click.option('--days', type=int, default=30, show_default=True, help='Valid for N days from now')
@click.option('--private', is_flag=True, help='Only usable by users it is gifted to')
@with_appcontext
def create_voucher_cli(code, name, voucher_type, value, min_order, max_discount, usage_limit, per_user, days, private):
    """
    Create a voucher valid from now.

    Example:
        flask storefront create-voucher --code SALE20 --type percentage --value 20 --max-discount 20000
    """
    now = utcnow()
    try:
        voucher = voucher_service.create_voucher({
            "code": code,
            "name": name,
            "type": voucher_type,
            "value": value,
            "min_order_value": min_order,
            "max_discount": max_discount,
            "total_usage_limit": usage_limit,
            "per_user_limit": per_user,
            "start_date": now,
            "end_date": now + timedelta(days=days),
            "is_public": not private,
        })
    except DomainError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Voucher {voucher.code} created (id={voucher.id}, ends {voucher.end_date:%Y-%m-%d}).")


@storefront_group.command('deactivate-expired-vouchers')
@with_appcontext
def deactivate_expired_vouchers_cli():
    """Flip active vouchers past their end date to inactive."""
    count = voucher_service.deactivate_expired_vouchers()
    click.echo(f"Deactivated {count} expired vouchers.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(storefront_group)
