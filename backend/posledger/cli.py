# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed [--password "Password123"]
#   Idempotent: owner/manager/cashier users, sample categories and products.
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with roles and active status.
# - python -m flask users create --name "Jane" --email jane@shop.local --password "Password123" --role OWNER
#   Create a user (prompts if options are omitted).
#
# Stock inspection:
# - python -m flask stock low
#   Products at or below their reorder level.

import click
from decimal import Decimal
from flask.cli import with_appcontext

from .extensions import db
from .models import Category, Product, User
from .permissions import ROLES, ROLE_OWNER, ROLE_MANAGER, ROLE_CASHIER
from .services import reporting_service
from .services.auth_service import create_user, PasswordValidationError
from .services.stock_calculations import needs_reorder
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' to add sample data.")


SEED_CATEGORIES = ("Beverages", "Snacks", "Household")

# sku, name, category, unit, cost, selling, opening stock, reorder level
SEED_PRODUCTS = (
    ("BEV-001", "Soda 500ml", "Beverages", "pcs", "40.00", "60.00", "48", "12"),
    ("BEV-002", "Mineral Water 1L", "Beverages", "pcs", "35.00", "50.00", "36", "12"),
    ("SNK-001", "Potato Crisps 100g", "Snacks", "pcs", "55.00", "80.00", "24", "6"),
    ("SNK-002", "Groundnuts", "Snacks", "Kg", "180.00", "250.00", "5.500", "1"),
    ("HSE-001", "Bar Soap", "Household", "pcs", "70.00", "100.00", "20", "5"),
)


@system_group.command('seed')
@click.option('--password', default='Password123', help='Password for seeded users')
@with_appcontext
def seed(password):
    """
    Seed users, categories and products. Safe to run repeatedly.

    Creates:
    - Users: owner@posledger.local, manager@posledger.local, cashier@posledger.local
    - Categories and products with opening stock

    SECURITY: Change passwords immediately in production!
    """
    db.create_all()

    for role in (ROLE_OWNER, ROLE_MANAGER, ROLE_CASHIER):
        email = f"{role.lower()}@posledger.local"
        if db.session.query(User).filter_by(email=email).first():
            click.echo(f"SKIP User {email} exists")
            continue
        create_user(name=role.title(), email=email, password=password, role=role)
        click.echo(f"PASS Created user {email} ({role})")

    categories = {}
    for name in SEED_CATEGORIES:
        category = db.session.query(Category).filter_by(name=name).first()
        if not category:
            category = Category(name=name)
            db.session.add(category)
            db.session.flush()
        categories[name] = category

    created = 0
    for sku, name, category, unit, cost, selling, stock, reorder in SEED_PRODUCTS:
        if db.session.query(Product).filter_by(sku=sku).first():
            continue
        db.session.add(Product(
            sku=sku,
            name=name,
            category_id=categories[category].id,
            unit=unit,
            cost_price=Decimal(cost),
            selling_price=Decimal(selling),
            current_stock=Decimal(stock),
            reorder_level=Decimal(reorder),
        ))
        created += 1
    db.session.commit()
    click.echo(f"PASS Seeded {len(categories)} categories, {created} new products")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(name, email, password, role):
    """
    Create a new user interactively.

    Password must be at least 8 characters with a letter and a digit.
    """
    try:
        user = create_user(name=name, email=email, password=password, role=role)
        click.echo(f"PASS Created user: {user.name} ({user.email}) with role '{user.role}'")
        click.echo("SECURITY Password securely hashed with bcrypt")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, at least one letter and one digit")
    except (ConflictError, ValidationError) as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<20} {'Email':<35} {'Role':<10} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.name:<20} {user.email:<35} {user.role:<10} {active_str}")

    click.echo("="*90 + "\n")


@click.group('stock')
def stock_group():
    """Stock inspection commands."""


@stock_group.command('low')
@with_appcontext
def low_stock():
    """List active products at or below their reorder level."""
    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True))
        .order_by(Product.name)
        .all()
    )
    low = [p for p in products if needs_reorder(p.current_stock, p.reorder_level)]
    suggested = reporting_service.suggested_reorder_quantities()

    if not low:
        click.echo("No products at or below reorder level.")
        return

    click.echo(f"{'SKU':<12} {'Name':<30} {'Stock':>10} {'Reorder':>10} {'Suggest':>8}")
    for p in low:
        click.echo(
            f"{p.sku:<12} {p.name:<30} {str(p.current_stock):>10} {str(p.reorder_level):>10} "
            f"{suggested.get(p.id, 0):>8}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
