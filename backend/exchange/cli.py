# Overview: Flask CLI command groups for bootstrap, order repair, and maintenance.

# backend/exchange/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--admin-email admin@campus.local] [--admin-password "Password123!"]
#   Create all tables and an admin account (idempotent).
# - python -m flask system cleanup-sessions
#   Delete expired or revoked session tokens.
#
# Users:
# - python -m flask users create-admin --email admin@campus.local --password "Password123!"
#   Create an admin, or promote an existing account with that email.
#
# Orders:
# - python -m flask orders reset --order-number ORD-... --yes
# - python -m flask orders reset --all --yes
#   Force orders back to waiting_to_meet with both confirmations cleared.
# - python -m flask orders stats --product-id 1
#   Print the inventory snapshot of a listing.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import ConflictError
from .models import Order, Product
from .services import auth_service, inventory_service, order_service, session_service
from .services.auth_service import PasswordValidationError


@click.group('system')
def system_group():
    """System bootstrap and maintenance commands."""


@system_group.command('init')
@click.option('--admin-email', default='admin@campus.local', help='Admin account email')
@click.option('--admin-password', default='Password123!', help='Admin account password')
@with_appcontext
def init_system(admin_email, admin_password):
    """
    Create the schema and a default admin account.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing Campus Exchange...")

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    try:
        admin = auth_service.create_admin(admin_email, admin_password)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Admin account ready: {admin.email} (ID: {admin.id})")
    click.echo("DONE Campus Exchange initialized.")


@system_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions():
    """Delete expired and revoked session tokens."""
    removed = session_service.cleanup_expired_sessions()
    click.echo(f"PASS Removed {removed} session(s)")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create-admin')
@click.option('--email', prompt=True, help='Admin email')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Admin password')
@with_appcontext
def create_admin(email, password):
    try:
        admin = auth_service.create_admin(email, password)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Admin account ready: {admin.email} (ID: {admin.id})")


@click.group('orders')
def orders_group():
    """Order repair and inspection commands."""


@orders_group.command('reset')
@click.option('--order-number', default=None, help='Order number to reset')
@click.option('--all', 'reset_all', is_flag=True, help='Reset every non-deleted order')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_orders(order_number, reset_all, yes):
    """
    Force orders back to waiting_to_meet, clearing both confirmations and
    the meetup/payment fields. Cancelled orders whose units can no longer
    be re-reserved are skipped.
    """
    if bool(order_number) == bool(reset_all):
        raise click.UsageError("Pass exactly one of --order-number or --all")

    if order_number:
        order = order_service.find_by_order_number(order_number)
        if order is None or order.is_deleted:
            click.echo(f"FAIL Order {order_number} not found")
            raise SystemExit(1)
        order_ids = [order.id]
    else:
        order_ids = [
            row.id
            for row in db.session.query(Order.id).filter(Order.is_deleted.is_(False)).order_by(Order.id)
        ]

    if not yes:
        click.confirm(f"WARN This will reset {len(order_ids)} order(s). Are you sure?", abort=True)

    reset = 0
    skipped = 0
    for order_id in order_ids:
        try:
            order = order_service.reset_order(order_id)
        except ConflictError as e:
            skipped += 1
            click.echo(f"WARN  Skipped order {order_id}: {e.message}")
            continue
        reset += 1
        click.echo(f"PASS Reset {order.order_number}")

    click.echo(f"DONE {reset} reset, {skipped} skipped")


@orders_group.command('stats')
@click.option('--product-id', type=int, required=True, help='Listing ID')
@with_appcontext
def product_stats(product_id):
    """Print listed/available/sold/reserved for a listing."""
    product = db.session.get(Product, product_id)
    if product is None:
        click.echo(f"FAIL Product {product_id} not found")
        raise SystemExit(1)

    stats = inventory_service.get_inventory_stats(product.id, product.quantity)
    click.echo(f"{product.name} (ID: {product.id})")
    for key in ("listed", "available", "sold", "reserved"):
        click.echo(f"  {key:<10} {stats[key]}")
    click.echo(f"  {'status':<10} {inventory_service.display_status(stats)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(orders_group)
