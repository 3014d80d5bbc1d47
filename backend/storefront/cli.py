# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent; prefer `flask db upgrade` outside dev).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--role staff]
#   List all users with role and active status.
# - python -m flask users create-admin --email admin@lardene.local --password "Password123!"
#   Create an admin (or --role staff) account. Prompts if options are omitted.
#
# Permission inspection:
# - python -m flask perms list [--role staff]
#   List capability codes, optionally only those granted to a role.
#
# Catalog:
# - python -m flask catalog seed
#   Insert the sample wallet/cardholder catalog if the products table is empty.
#
# Notifications:
# - python -m flask notifications dispatch --limit 50
#   Send pending outbox emails (used with NOTIFICATION_DISPATCH=deferred).

import click
from flask.cli import with_appcontext

from .errors import StoreError
from .extensions import db
from .models import Product, User
from .models.auth import ROLE_ADMIN, ROLE_STAFF, ROLES
from .permissions import PERMISSION_DEFINITIONS, capabilities_for_role
from .services import notification_service, products_service
from .services.auth_service import create_user


SAMPLE_PRODUCTS = [
    {
        "name": "Classic Bifold Wallet",
        "description": "Full-grain leather bifold with six card slots and a cash compartment.",
        "price_cents": 450000,
        "category": "Wallets",
        "images": ["/images/products/classic-bifold.jpg"],
        "colors": ["Brown", "Black"],
        "stock": 25,
        "stock_threshold": 5,
    },
    {
        "name": "Slim Trifold Wallet",
        "description": "Hand-stitched trifold with an ID window.",
        "price_cents": 520000,
        "category": "Wallets",
        "images": ["/images/products/slim-trifold.jpg"],
        "colors": ["Tan", "Black"],
        "stock": 15,
        "stock_threshold": 3,
    },
    {
        "name": "Minimal Cardholder",
        "description": "Four-slot cardholder cut from a single piece of vegetable-tanned leather.",
        "price_cents": 250000,
        "category": "Cardholders",
        "images": ["/images/products/minimal-cardholder.jpg"],
        "colors": ["Brown", "Navy", "Black"],
        "stock": 40,
        "stock_threshold": 8,
    },
    {
        "name": "Money Clip Cardholder",
        "description": "Cardholder with a steel money clip.",
        "price_cents": 320000,
        "category": "Cardholders",
        "images": ["/images/products/money-clip.jpg"],
        "colors": ["Black"],
        "stock": 10,
        "stock_threshold": 3,
    },
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables. Existing tables and data are left alone."""
    db.create_all()
    click.echo("PASS Database tables ready.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask catalog seed' for sample data.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create-admin')
@click.option('--email', prompt=True, help='Login email')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--first-name', default='Store', show_default=True)
@click.option('--last-name', default='Admin', show_default=True)
@click.option('--role', type=click.Choice([ROLE_ADMIN, ROLE_STAFF]), default=ROLE_ADMIN, show_default=True)
@with_appcontext
def create_admin(email, password, first_name, last_name, role):
    """Create a back-office account. Customers register through the API."""
    try:
        user = create_user(first_name, last_name, email, password, role=role)
    except StoreError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        for field, problem in e.details.items():
            click.echo(f"  - {field}: {problem}")
        raise SystemExit(1)

    click.echo(f"PASS Created {user.role} {user.email} (ID: {user.id})")


@users_group.command('list')
@click.option('--role', type=click.Choice(list(ROLES)), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)

    users = query.order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<35} {'Role':<10} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.full_name[:24]:<25} {user.email[:34]:<35} {user.role:<10} {active_str}")

    click.echo("="*90 + "\n")


@click.group('perms')
def perms_group():
    """Permission inspection commands."""


@perms_group.command('list')
@click.option('--role', type=click.Choice(list(ROLES)), help='Only codes granted to this role')
def list_permissions_cli(role):
    """List capability codes. Grants are defined in code, per role."""
    granted = capabilities_for_role(role) if role else None

    click.echo(f"\n{'='*80}")
    click.echo(f"Permissions for role: {role.upper()}" if role else "All permissions")
    click.echo(f"{'='*80}\n")

    for code, name, description, category in PERMISSION_DEFINITIONS:
        if granted is not None and code not in granted:
            continue
        click.echo(f"{code:<28} {category:<10} {description}")


@click.group('catalog')
def catalog_group():
    """Catalog bootstrap commands."""


@catalog_group.command('seed')
@with_appcontext
def seed_catalog():
    """Insert sample products when the catalog is empty."""
    if db.session.query(Product.id).first() is not None:
        click.echo("SKIP Catalog already has products.")
        return

    for data in SAMPLE_PRODUCTS:
        product = products_service.create_product(patch=dict(data))
        click.echo(f"PASS {product.name} (ID: {product.id}, stock {product.stock})")


@click.group('notifications')
def notifications_group():
    """Notification outbox commands."""


@notifications_group.command('dispatch')
@click.option('--limit', type=int, default=50, show_default=True, help='Maximum emails to send')
@with_appcontext
def dispatch_notifications(limit):
    """Send pending outbox emails."""
    result = notification_service.dispatch_pending(limit=limit)
    click.echo(
        f"PASS Attempted {result['attempted']}: sent {result['sent']}, failed {result['failed']}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(notifications_group)
