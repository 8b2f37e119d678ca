"""
Shared pytest fixtures for the PracticeHub Core test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB reset (autouse)
    - client: Flask test client (function-scoped)
    - tenant / other_tenant: Pre-created Tenant entities
    - make_customer, make_template, make_retainer: service-level factories
"""

from datetime import date

import pytest

from practicehub import create_app
from practicehub.models import db as _db
from practicehub.models.auth import Tenant
from practicehub.models.customer import Customer, LifecycleStatus

ACTOR = "member-1"


def _ensure_tenant(slug: str, name: str) -> Tenant:
    t = Tenant.query.filter_by(slug=slug).first()
    if not t:
        t = Tenant(name=name, slug=slug, settings={})
        _db.session.add(t)
        _db.session.commit()
    return t


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        _ensure_tenant("test-default", "Test Default")
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def tenant():
    return Tenant.query.filter_by(slug="test-default").first()


@pytest.fixture()
def other_tenant():
    return _ensure_tenant("other", "Other Practice")


# ── Factories ────────────────────────────────────────────────────────────


def _force_status(customer: Customer, status: LifecycleStatus) -> Customer:
    """Put a customer straight into *status*, bypassing the transition rules."""
    customer.lifecycle_status = status.value
    _db.session.commit()
    return customer


@pytest.fixture()
def make_customer(tenant):
    """Create a customer through the service, optionally forcing its status."""
    from practicehub.services import customer_service

    def _make(name="Acme Ltd", *, status=None, email="billing@acme.test", tenant_id=None, **kw):
        customer = customer_service.create_customer(
            tenant_id or tenant.id, name, email=email, actor_id=ACTOR, **kw,
        )
        if status is not None:
            _force_status(customer, status)
        return customer

    return _make


@pytest.fixture()
def make_template(tenant):
    from practicehub.services import checklist_service

    def _make(items=None, *, name="Onboarding", **kw):
        items = items if items is not None else [
            {"name": "Sign engagement letter", "required": True},
            {"name": "Collect ID", "required": True, "requires_document": True,
             "required_document_label": "Certified ID copy"},
            {"name": "Welcome call", "required": False},
        ]
        return checklist_service.create_template(tenant.id, name, items, **kw)

    return _make


@pytest.fixture()
def make_retainer(tenant, make_customer):
    """Create an ACTIVE customer with a retainer; returns the retainer."""
    from practicehub.services import retainer_service

    def _make(customer=None, **terms):
        customer = customer or make_customer(status=LifecycleStatus.ACTIVE)
        defaults = {
            "name": "Monthly support",
            "type": "HOUR_BANK",
            "frequency": "MONTHLY",
            "start_date": date(2026, 1, 1),
            "allocated_hours": "40",
            "period_fee": "10000",
            "rollover_policy": "FORFEIT",
        }
        defaults.update(terms)
        return retainer_service.create_retainer(tenant.id, customer.id, defaults, ACTOR)

    return _make

