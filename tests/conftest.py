"""
Shared pytest fixtures for the Release Planner test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - owner / product / plan: pre-created entities
    - make_owner / make_product / make_feature / make_plan: factories
"""

from datetime import datetime, timedelta, timezone

import pytest

from release_planner import create_app
from release_planner.models import db as _db
from release_planner.models.catalog import Feature, Owner
from release_planner.models.product import Product, ProductComponentVersion
from release_planner.services import plan_service


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


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
        plan_service.seed_reference_types()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_owner():
    def _make(name="Ada Owner", email="ada@example.com"):
        owner = Owner(name=name, email=email)
        _db.session.add(owner)
        _db.session.commit()
        return owner
    return _make


@pytest.fixture()
def make_product():
    def _make(name="Checkout", components=(("web", "1.0.0.0"),)):
        product = Product(name=name)
        _db.session.add(product)
        _db.session.flush()
        for comp_name, version in components:
            _db.session.add(ProductComponentVersion(
                product_id=product.id, name=comp_name, component_type=comp_name,
                current_version=version, previous_version="",
            ))
        _db.session.commit()
        _db.session.refresh(product)
        return product
    return _make


@pytest.fixture()
def make_feature():
    def _make(name="One-click pay", status="planned"):
        feature = Feature(name=name, status=status)
        _db.session.add(feature)
        _db.session.commit()
        return feature
    return _make


@pytest.fixture()
def make_plan(make_product):
    def _make(name="Release 24.1", product=None, phases=None, **extra):
        product = product or make_product()
        data = {
            "name": name,
            "status": "planned",
            "product_id": product.id,
            "start_date": "2024-01-01",
            "end_date": "2024-06-30",
            "phases": phases if phases is not None else [
                {"name": "Build", "start_date": "2024-01-01", "end_date": "2024-01-31"},
                {"name": "Test", "start_date": "2024-02-01", "end_date": "2024-02-28"},
            ],
            **extra,
        }
        return plan_service.create_plan(data)
    return _make


@pytest.fixture()
def owner(make_owner):
    return make_owner()


@pytest.fixture()
def product(make_product):
    return make_product()


@pytest.fixture()
def plan(make_plan, product):
    return make_plan(product=product)


# ── Payload helpers ──────────────────────────────────────────────────────


def _age_plan(plan, hours=1):
    """Push plan.updated_at into the past so the next write is clearly newer."""
    plan.updated_at = datetime.now(timezone.utc) - timedelta(hours=hours)
    _db.session.commit()
    return plan


def _update_payload(plan, **overrides):
    """Current state of *plan* as an update body, with *overrides* applied."""
    current = plan.to_dict(include_children=True)
    payload = {
        "updated_at": current["updated_at"],
        "phases": [
            {
                "id": p["id"],
                "name": p["name"],
                "start_date": p["start_date"],
                "end_date": p["end_date"],
                "color": p["color"],
                "metric_values": p["metric_values"],
                "sequence": p["sequence"],
            }
            for p in current["phases"]
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def age_plan():
    return _age_plan


@pytest.fixture()
def update_payload():
    return _update_payload
