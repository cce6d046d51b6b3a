"""
Pytest fixtures for the order approval engine tests.

Provides an in-memory database app, per-test table cleanup, an outbox-backed
notifier, and factories for items, workflows, and orders.
"""

from datetime import date

import pytest

from epp_orders import create_app
from epp_orders.extensions import db, notifier
from epp_orders.models import Item
from epp_orders.services import order_service, workflow_service
from epp_orders.services.mail import OutboxEmailProvider


ORDER_DATE = date(2026, 1, 10)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'EMAIL_PROVIDER': 'outbox',
        'DB_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test (schema kept)."""
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.expunge_all()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def outbox(app):
    """Fresh in-memory email outbox for each test."""
    provider = OutboxEmailProvider()
    notifier.set_provider(provider)
    return provider


@pytest.fixture
def make_item(db_session):
    counter = {"n": 0}

    def _make(name="Laptop", stock=10, selling_price_cents=100000, retail_price_cents=None, **kwargs):
        counter["n"] += 1
        item = Item(
            sku=kwargs.pop("sku", f"SKU-{counter['n']:04d}"),
            name=name,
            stock_quantity=stock,
            selling_price_cents=selling_price_cents,
            retail_price_cents=retail_price_cents,
            **kwargs,
        )
        db_session.add(item)
        db_session.commit()
        return item

    return _make


@pytest.fixture
def make_workflow(db_session):
    counter = {"n": 0}

    def _make(levels=("MANAGER",), name=None, **kwargs):
        counter["n"] += 1
        level_defs = []
        for level in levels:
            if isinstance(level, dict):
                level_defs.append(level)
            else:
                role, _, email = level.partition(":")
                entry = {"role": role}
                if email:
                    entry["approver_email"] = email
                    entry["approver_name"] = f"{role.title()} Approver"
                level_defs.append(entry)
        return workflow_service.create_workflow(
            name or f"Workflow {counter['n']}",
            levels=level_defs,
            **kwargs,
        )

    return _make


@pytest.fixture
def standard_workflow(make_workflow):
    """Two-level workflow matching every order."""
    return make_workflow(
        levels=("MANAGER:manager@example.com", "HR:hr@example.com"),
        name="Standard",
    )


@pytest.fixture
def make_order(db_session, outbox):
    def _make(lines, payment_type="CASH", **kwargs):
        kwargs.setdefault("employee_name", "Jane Employee")
        kwargs.setdefault("employee_email", "jane@example.com")
        kwargs.setdefault("order_date", ORDER_DATE)
        return order_service.create_order("EMP-001", lines, payment_type=payment_type, **kwargs)

    return _make
