# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (safe to re-run).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create-admin --email admin@shop.local --name "Admin" --password "Password123!"
#   Create an administrator account (prompts if options are omitted).
# - python -m flask users list
#   List accounts with role and active status.
#
# Catalog:
# - python -m flask products seed
#   Insert a handful of demo products (skips names that already exist).
# - python -m flask products stock 3
#   Show on-hand quantity and sold counter for a product.
#
# Orders:
# - python -m flask orders history 42
#   Print the audit trail for an order (newest first).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, User
from .models.auth import ROLE_ADMIN
from .services.auth_service import create_user, PasswordValidationError
from .services import inventory_service
from .services.order_errors import OrderNotFoundError
from .services.order_query_service import get_order_with_history


DEMO_PRODUCTS = [
    # (name, price_cents, price_before_discount_cents, quantity)
    ("Ao thun cotton basic", 149000, 199000, 120),
    ("Quan jean slim fit", 459000, 550000, 60),
    ("Giay sneaker trang", 890000, None, 25),
    ("Balo laptop 15 inch", 325000, 390000, 40),
    ("Binh giu nhiet 500ml", 189000, None, 200),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables. Existing tables and data are left alone."""
    db.create_all()
    click.echo("PASS Tables created. Run 'python -m flask users create-admin' next.")


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

    click.echo("PASS Database reset complete.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create-admin')
@click.option('--email', prompt=True)
@click.option('--name', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_admin(email, name, password):
    """Create an administrator account."""
    try:
        user = create_user(email, name, password, role=ROLE_ADMIN)
    except (PasswordValidationError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created admin: {user.email} (ID: {user.id})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Email':<35} {'Role':<8} {'Active':<8} {'Name'}")
    click.echo("="*80)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<35} {user.role:<8} {active_str:<8} {user.name}")
    click.echo("="*80 + "\n")


@click.group('products')
def products_group():
    """Catalog inspection and demo data."""


@products_group.command('seed')
@with_appcontext
def seed_products():
    """Insert demo products. Re-running skips products that already exist."""
    created = 0
    for name, price_cents, before_cents, quantity in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(name=name).first():
            click.echo(f"WARN  Product '{name}' already exists, skipping...")
            continue
        db.session.add(Product(
            name=name,
            price_cents=price_cents,
            price_before_discount_cents=before_cents,
            quantity=quantity,
            sold=0,
        ))
        created += 1
    db.session.commit()
    click.echo(f"PASS Seeded {created} products")


@products_group.command('stock')
@click.argument('product_id', type=int)
@with_appcontext
def product_stock(product_id):
    """Show on-hand quantity for a product."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise click.ClickException(f"Product {product_id} not found")
    click.echo(
        f"{product.name}: quantity={inventory_service.get_stock(product_id)} sold={product.sold}"
    )


@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('history')
@click.argument('order_id', type=int)
@with_appcontext
def order_history(order_id):
    """Print an order's lines and status audit trail."""
    try:
        order, lines, transactions = get_order_with_history(order_id)
    except OrderNotFoundError as e:
        raise click.ClickException(str(e))

    click.echo(
        f"\nOrder #{order.id} user={order.user_id} status={order.order_status} "
        f"payment={order.payment_status} ({order.payment_method}) total={order.total_amount_cents}"
    )
    for line in lines:
        click.echo(f"  - {line.product_name} x{line.quantity} @ {line.unit_price_cents} = {line.line_total_cents}")

    if not transactions:
        click.echo("\nNo status changes recorded.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'When':<22} {'Type':<24} {'From':<12} {'To':<12} {'By':<8} {'Notes'}")
    click.echo("="*100)
    for tx in transactions:
        when = tx.created_at.strftime("%Y-%m-%d %H:%M:%S") if tx.created_at else "-"
        actor = str(tx.admin_id) if tx.admin_id else "system"
        click.echo(
            f"{when:<22} {tx.transaction_type:<24} {tx.old_status or '-':<12} "
            f"{tx.new_status:<12} {actor:<8} {tx.notes or ''}"
        )
    click.echo("="*100 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(orders_group)
