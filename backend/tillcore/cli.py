# Overview: Flask CLI command groups for bootstrap and session management.

# backend/tillcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables for the configured database (dev; use `flask db upgrade` elsewhere).
# - python -m flask system seed-demo [--company "Demo Trading"]
#   Idempotent demo data: company, store, one user per role, products, variants, stock.
#
# Sessions:
# - python -m flask sessions issue 3 [--ttl-hours 8]
#   Print a bearer token for user 3.
# - python -m flask sessions revoke <token>
#   Revoke a bearer token.

from decimal import Decimal

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import TillError
from .extensions import db
from .models import Company, Inventory, Product, ProductVariant, Store, User
from .permissions import Role
from .services import session_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create every table known to the models."""
    db.create_all()
    click.echo("PASS Database schema created")


DEMO_USERS = [
    ("Super Admin", "superadmin@tillcore.local", Role.SUPER_ADMIN),
    ("Company Admin", "admin@tillcore.local", Role.ADMIN),
    ("Store Manager", "manager@tillcore.local", Role.MANAGER),
    ("Front Cashier", "cashier@tillcore.local", Role.CASHIER),
]

DEMO_CATALOG = [
    # product, tax %, [(variant, sku, barcode, retail, wholesale, stock)]
    ("Arabic Coffee", "10", [
        ("250g", "COF-250", "6291001000017", "2.500", "2.100", 40),
        ("1kg", "COF-1000", "6291001000024", "8.750", "7.900", 12),
    ]),
    ("Dates Box", "0", [
        ("Khalas 500g", "DAT-KH-500", "6291001000031", "3.200", None, 25),
    ]),
    ("Cardamom", "10", [
        ("100g", "CAR-100", "6291001000048", "1.800", "1.500", 3),
    ]),
]


@system_group.command('seed-demo')
@click.option('--company', 'company_name', default='Demo Trading', help='Company name')
@with_appcontext
def seed_demo(company_name):
    """
    Seed a demo tenant. Safe to re-run: existing rows are reused.
    """
    click.echo("START Seeding demo data...")

    company = db.session.query(Company).filter_by(name=company_name).first()
    if not company:
        company = Company(name=company_name, is_active=True)
        db.session.add(company)
        db.session.flush()
        click.echo(f"PASS Created company: {company.name} (ID: {company.id})")

    store = db.session.query(Store).filter_by(company_id=company.id, name="Main Store").first()
    if not store:
        store = Store(company_id=company.id, name="Main Store", timezone="Asia/Bahrain")
        db.session.add(store)
        db.session.flush()
        click.echo(f"PASS Created store: {store.name} (ID: {store.id})")

    for name, email, role in DEMO_USERS:
        user = db.session.query(User).filter_by(email=email).first()
        if user:
            continue
        tenant_bound = role is not Role.SUPER_ADMIN
        user = User(
            name=name,
            email=email,
            role=role.value,
            company_id=company.id if tenant_bound else None,
            store_id=store.id if tenant_bound else None,
            is_active=True,
        )
        db.session.add(user)
        db.session.flush()
        click.echo(f"PASS Created user: {email} ({role.value}, ID: {user.id})")

    for product_name, tax, variants in DEMO_CATALOG:
        product = db.session.query(Product).filter_by(company_id=company.id, name=product_name).first()
        if not product:
            product = Product(company_id=company.id, name=product_name, tax_percent=Decimal(tax))
            db.session.add(product)
            db.session.flush()
        for variant_name, sku, barcode, retail, wholesale, stock in variants:
            variant = db.session.query(ProductVariant).filter_by(product_id=product.id, sku=sku).first()
            if not variant:
                variant = ProductVariant(
                    product_id=product.id,
                    name=variant_name,
                    sku=sku,
                    barcode=barcode,
                    retail_price=Decimal(retail),
                    wholesale_price=Decimal(wholesale) if wholesale else None,
                )
                db.session.add(variant)
                db.session.flush()
                click.echo(f"PASS Created variant: {sku}")
            inventory = db.session.query(Inventory).filter_by(variant_id=variant.id, store_id=store.id).first()
            if not inventory:
                db.session.add(Inventory(variant_id=variant.id, store_id=store.id, quantity=stock, reorder_level=5))

    db.session.commit()
    click.echo("DONE Demo data ready")


@click.group('sessions')
def sessions_group():
    """Bearer session commands."""


@sessions_group.command('issue')
@click.argument('user_id', type=int)
@click.option('--ttl-hours', type=int, default=None, help='Lifetime (default SESSION_TTL_HOURS)')
@with_appcontext
def issue_session(user_id, ttl_hours):
    """Print a new bearer token for a user."""
    ttl = ttl_hours or current_app.config.get("SESSION_TTL_HOURS", 24)
    try:
        record, token = session_service.issue_session(db.session, user_id, ttl_hours=ttl)
    except TillError as exc:
        raise click.ClickException(exc.message)
    click.echo(f"PASS Session {record.id} for user {user_id}, expires {record.expires_at.isoformat()}Z")
    click.echo(token)


@sessions_group.command('revoke')
@click.argument('token')
@with_appcontext
def revoke_session(token):
    """Revoke a bearer token."""
    if session_service.revoke_session(db.session, token):
        click.echo("PASS Session revoked")
    else:
        raise click.ClickException("Session not found or already revoked")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sessions_group)
