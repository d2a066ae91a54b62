# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/retailpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migration-managed databases).
# - python -m flask system seed-demo
#   Idempotently insert demo products, branch stock, a customer and a promotion.
#
# Promotions:
# - python -m flask promotions list [--active]
#   List promotions in priority order.
#
# Holds (schedule from cron):
# - python -m flask holds sweep
#   Expire held transactions past their expires_at.

from datetime import timedelta

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, Product, Promotion
from .models.promotions import PROMO_PERCENTAGE
from .services import maintenance_service, promotions_service, stock_service
from .time_utils import utcnow


DEMO_BRANCH_ID = 1

DEMO_PRODUCTS = (
    ("SKU-COFFEE-250", "8990000000011", "Ground Coffee 250g", 8500),
    ("SKU-TEA-100", "8990000000028", "Green Tea 100 bags", 4200),
    ("SKU-MUG-01", "8990000000035", "Ceramic Mug", 12000),
)


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('seed-demo')
@click.option('--stock', default=50, show_default=True, help='Units of each product at the demo branch')
@with_appcontext
def seed_demo(stock):
    """Insert demo products, stock, a customer and a promotion (idempotent)."""
    for sku, barcode, name, price_cents in DEMO_PRODUCTS:
        product = db.session.query(Product).filter_by(sku=sku).first()
        if product:
            click.echo(f"PASS Using existing product: {sku} (ID: {product.id})")
        else:
            product = Product(sku=sku, barcode=barcode, name=name, price_cents=price_cents, is_active=True)
            db.session.add(product)
            db.session.commit()
            click.echo(f"PASS Created product: {sku} (ID: {product.id})")
        stock_service.set_stock(DEMO_BRANCH_ID, product.id, stock)

    if not db.session.query(Customer).filter_by(email="member@example.com").first():
        db.session.add(Customer(name="Demo Member", email="member@example.com", tier="silver"))
        db.session.commit()
        click.echo("PASS Created demo customer")

    if not db.session.query(Promotion).filter_by(name="Demo 10% off").first():
        now = utcnow()
        promotions_service.create_promotion({
            "name": "Demo 10% off",
            "promo_type": PROMO_PERCENTAGE,
            "discount_value": 1000,
            "start_date": now,
            "end_date": now + timedelta(days=30),
            "priority": 1,
        }, user_id=None)
        click.echo("PASS Created demo promotion")

    click.echo("DONE Demo data ready")


@click.group('promotions')
def promotions_group():
    """Promotion inspection commands."""


@promotions_group.command('list')
@click.option('--active', 'active_only', is_flag=True, help='Only active promotions')
@with_appcontext
def list_promotions(active_only):
    """List promotions in priority order."""
    promos = promotions_service.list_promotions(active_only=active_only)
    if not promos:
        click.echo("No promotions found")
        return
    for p in promos:
        state = "active" if p["is_active"] else "inactive"
        click.echo(
            f"{p['id']:>4}  {p['priority']:>4}  {p['promo_type']:<12} {p['discount_value']:>8}  "
            f"{p['start_date']} -> {p['end_date']}  [{state}] {p['name']}"
        )


@click.group('holds')
def holds_group():
    """Held transaction maintenance."""


@holds_group.command('sweep')
@with_appcontext
def sweep_holds():
    """Expire held transactions past their expires_at."""
    expired = maintenance_service.sweep_expired_holds()
    click.echo(f"Expired {expired} held transaction(s)")


def register_commands(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(promotions_group)
    app.cli.add_command(holds_group)
