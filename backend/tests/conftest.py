"""
Pytest fixtures for tillcore backend tests.

Provides the test database, tenant/user/catalog fixtures, an in-process
payment gateway fake, and the Flask test client.
"""

from decimal import Decimal

import pytest

from tillcore import create_app
from tillcore.errors import ExternalGatewayError
from tillcore.extensions import db
from tillcore.models import Company, Inventory, Product, ProductVariant, Store, User
from tillcore.permissions import Actor
from tillcore.services import session_service
from tillcore.services.context import GATEWAY_EXTENSION_KEY, ServiceContext
from tillcore.services.payment_service import PaymentSettings
from tillcore.services.tap_gateway import (
    ChargeResult,
    RefundResult,
    map_provider_status,
    verify_webhook_signature,
)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'TAP_SECRET_KEY': 'sk_test_tillcore',
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


# =============================================================================
# PAYMENT GATEWAY FAKE
# =============================================================================


class FakeGateway:
    """
    In-process stand-in for TapGateway.

    Charges are kept in ``charges`` keyed by charge id so tests can flip
    their status before calling verify. Set ``fail_charge``/``fail_refund``
    to a message to make the next calls raise ExternalGatewayError.
    """

    def __init__(self):
        self.charges = {}
        self.charge_calls = []
        self.refund_calls = []
        self.fail_charge = None
        self.fail_refund = None
        self.webhook_secret = None

    def create_charge(self, *, amount, currency, payment_id, order_id, customer_phone, redirect_url, webhook_url):
        self.charge_calls.append({
            "amount": amount,
            "currency": currency,
            "payment_id": payment_id,
            "order_id": order_id,
            "customer_phone": customer_phone,
        })
        if self.fail_charge:
            raise ExternalGatewayError(self.fail_charge)
        charge_id = f"chg_test_{len(self.charge_calls)}"
        self.charges[charge_id] = {
            "id": charge_id,
            "status": "INITIATED",
            "amount": float(amount),
            "currency": currency,
            "reference": {"transaction": str(payment_id), "order": str(order_id)},
            "transaction": {"url": f"https://pay.test/{charge_id}"},
        }
        return self.retrieve_charge(charge_id)

    def retrieve_charge(self, charge_id):
        raw = dict(self.charges[charge_id])
        return ChargeResult(
            charge_id=charge_id,
            status=raw["status"],
            payment_url=raw["transaction"]["url"],
            raw=raw,
        )

    def create_refund(self, *, charge_id, amount, currency, reason=None, merchant_ref=None):
        self.refund_calls.append({
            "charge_id": charge_id,
            "amount": amount,
            "currency": currency,
            "reason": reason,
            "merchant_ref": merchant_ref,
        })
        if self.fail_refund:
            raise ExternalGatewayError(self.fail_refund)
        refund_id = f"re_test_{len(self.refund_calls)}"
        return RefundResult(refund_id=refund_id, status="PENDING", raw={"id": refund_id})

    def verify_webhook_signature(self, raw_body, signature):
        return verify_webhook_signature(raw_body, signature, self.webhook_secret)

    @staticmethod
    def map_provider_status(provider_status):
        return map_provider_status(provider_status)


@pytest.fixture(scope='function')
def gateway(app):
    """Swap the app's gateway for a fake for the duration of one test."""
    original = app.extensions[GATEWAY_EXTENSION_KEY]
    fake = FakeGateway()
    app.extensions[GATEWAY_EXTENSION_KEY] = fake
    yield fake
    app.extensions[GATEWAY_EXTENSION_KEY] = original


@pytest.fixture(scope='function')
def svc(db_session, gateway):
    """Services wired around the test session and the fake gateway."""
    return ServiceContext.build(db_session, gateway, PaymentSettings())


# =============================================================================
# TENANTS
# =============================================================================


@pytest.fixture(scope='function')
def company_a(db_session):
    """Create Company A (first tenant)."""
    company = Company(name="Company A - Acme Trading", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def company_b(db_session):
    """Create Company B (second tenant)."""
    company = Company(name="Company B - Beta Retail", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def store_a(db_session, company_a):
    store = Store(company_id=company_a.id, name="Store A1", timezone="UTC")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_a2(db_session, company_a):
    """Second store of Company A."""
    store = Store(company_id=company_a.id, name="Store A2", timezone="UTC")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session, company_b):
    store = Store(company_id=company_b.id, name="Store B1", timezone="UTC")
    db_session.add(store)
    db_session.commit()
    return store


# =============================================================================
# USERS & ACTORS
# =============================================================================


def _make_user(db_session, name, role, company=None, store=None):
    user = User(
        name=name,
        email=f"{name.lower().replace(' ', '.')}@tillcore.test",
        role=role,
        company_id=company.id if company else None,
        store_id=store.id if store else None,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def cashier(db_session, company_a, store_a):
    return _make_user(db_session, "Cashier One", "CASHIER", company_a, store_a)


@pytest.fixture(scope='function')
def cashier2(db_session, company_a, store_a):
    """Another cashier in the same store."""
    return _make_user(db_session, "Cashier Two", "CASHIER", company_a, store_a)


@pytest.fixture(scope='function')
def manager(db_session, company_a, store_a):
    return _make_user(db_session, "Store Manager", "MANAGER", company_a, store_a)


@pytest.fixture(scope='function')
def admin(db_session, company_a, store_a):
    return _make_user(db_session, "Company Admin", "ADMIN", company_a, store_a)


@pytest.fixture(scope='function')
def cashier_b(db_session, company_b, store_b):
    """Cashier of the other tenant."""
    return _make_user(db_session, "Beta Cashier", "CASHIER", company_b, store_b)


@pytest.fixture(scope='function')
def cashier_actor(cashier):
    return Actor.from_user(cashier)


@pytest.fixture(scope='function')
def cashier2_actor(cashier2):
    return Actor.from_user(cashier2)


@pytest.fixture(scope='function')
def manager_actor(manager):
    return Actor.from_user(manager)


@pytest.fixture(scope='function')
def admin_actor(admin):
    return Actor.from_user(admin)


@pytest.fixture(scope='function')
def cashier_b_actor(cashier_b):
    return Actor.from_user(cashier_b)


# =============================================================================
# CATALOG
# =============================================================================


@pytest.fixture(scope='function')
def coffee(db_session, company_a, store_a):
    """Variant at 10.000 retail / 8.000 wholesale, 5% tax, 20 in stock in Store A1."""
    product = Product(company_id=company_a.id, name="Arabic Coffee", tax_percent=Decimal("5"))
    db_session.add(product)
    db_session.flush()
    variant = ProductVariant(
        product_id=product.id,
        name="250g",
        sku="COF-250",
        barcode="6290000000011",
        retail_price=Decimal("10.000"),
        wholesale_price=Decimal("8.000"),
    )
    db_session.add(variant)
    db_session.flush()
    db_session.add(Inventory(variant_id=variant.id, store_id=store_a.id, quantity=20, reorder_level=5))
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def tea(db_session, company_a, store_a):
    """Variant at 2.500 retail, no tax, only 3 in stock (below reorder level 5)."""
    product = Product(company_id=company_a.id, name="Karak Tea", tax_percent=Decimal("0"))
    db_session.add(product)
    db_session.flush()
    variant = ProductVariant(
        product_id=product.id,
        name="Box",
        sku="TEA-BOX",
        barcode="6290000000028",
        retail_price=Decimal("2.500"),
    )
    db_session.add(variant)
    db_session.flush()
    db_session.add(Inventory(variant_id=variant.id, store_id=store_a.id, quantity=3, reorder_level=5))
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def stock(db_session):
    """Factory: on-hand quantity of a variant in a store."""
    def _stock(variant, store):
        record = db_session.query(Inventory).filter_by(variant_id=variant.id, store_id=store.id).one()
        db_session.refresh(record)
        return record.quantity
    return _stock


# =============================================================================
# FLOW HELPERS
# =============================================================================


@pytest.fixture(scope='function')
def pending_order(svc):
    """Factory: a confirmed (PENDING) sale for ``actor`` with one line."""
    def _make(actor, variant, quantity=3, discount_amount="0"):
        order = svc.orders.create_order(actor)
        svc.orders.add_item(order.id, variant.id, quantity, actor, discount_amount=discount_amount)
        return svc.orders.confirm(order.id, actor)
    return _make


@pytest.fixture(scope='function')
def paid_sale(svc, pending_order):
    """Factory: a sale settled in cash by ``actor`` (opens a shift if needed)."""
    def _make(actor, variant, quantity=3, discount_amount="0"):
        order = pending_order(actor, variant, quantity, discount_amount)
        if svc.shifts.current_shift(actor) is None:
            svc.shifts.open(actor, "100")
        svc.payments.create_payment(order.id, "CASH", order.total_amount, actor)
        return svc.orders.get(order.id, actor)
    return _make


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def login(db_session):
    """Factory: bearer headers for a user."""
    def _login(user):
        _, token = session_service.issue_session(db_session, user.id)
        return auth_headers(token)
    return _login
