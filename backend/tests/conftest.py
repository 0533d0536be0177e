"""
Pytest fixtures for the order engine tests.

Provides an in-memory database app, a per-test table wipe, a recording
notifier, the cast of actors, and an order factory.
"""

import pytest
from orderflow import create_app
from orderflow.extensions import db
from orderflow.flags import Role
from orderflow.identity import Actor
from orderflow.services import order_service
from orderflow.services.notification_service import NOTIFIER_EXTENSION_KEY


class RecordingNotifier:
    """Keeps every delivered notification; can be told to fail."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def notify_role(self, role, order_id, message):
        if self.fail:
            raise RuntimeError("push gateway down")
        self.sent.append((role, order_id, message))

    def roles_for(self, order_id):
        return [role for role, oid, _ in self.sent if oid == order_id]

    def clear(self):
        self.sent.clear()
        self.fail = False


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'ORDERFLOW_RETRY_ATTEMPTS': 1,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG, notifier=RecordingNotifier())

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


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
def notifier(app):
    recorder = app.extensions[NOTIFIER_EXTENSION_KEY]
    recorder.clear()
    yield recorder
    recorder.clear()


@pytest.fixture
def salesman():
    return Actor(1, Role.SALESMAN)


@pytest.fixture
def other_salesman():
    return Actor(2, Role.SALESMAN)


@pytest.fixture
def storekeeper():
    return Actor(10, Role.STOREKEEPER)


@pytest.fixture
def storekeeper_b():
    return Actor(11, Role.STOREKEEPER)


@pytest.fixture
def checker():
    return Actor(20, Role.CHECKER)


@pytest.fixture
def checker_b():
    return Actor(21, Role.CHECKER)


@pytest.fixture
def biller():
    return Actor(30, Role.BILLER)


@pytest.fixture
def supplier():
    return Actor(40, Role.SUPPLIER)


@pytest.fixture
def admin():
    return Actor(99, Role.ADMIN)


@pytest.fixture
def make_order(db_session, salesman):
    """
    Factory: create an order for the salesman and return its id.

    Lines default to two items of 10 @ 5.
    """
    def _make(lines=None, freight_charge="0", actor=None):
        if lines is None:
            lines = [
                {"product_ref": "SKU-A", "ordered_qty": "10", "rate": "5"},
                {"product_ref": "SKU-B", "ordered_qty": "10", "rate": "5"},
            ]
        result = order_service.create_order(
            actor or salesman, customer_ref="CUST-1", lines=lines, freight_charge=freight_charge
        )
        return result.unwrap().id

    return _make


class OrderFlow:
    """Drives an order through the usual happy-path steps for a test."""

    def __init__(self, salesman, storekeeper, checker):
        self.salesman = salesman
        self.storekeeper = storekeeper
        self.checker = checker

    def lines(self, order_id):
        from orderflow.services.repository import load_lines
        return load_lines(order_id)

    def line_ids(self, order_id):
        return [line.id for line in self.lines(order_id)]

    def submit(self, order_id):
        return order_service.submit_order(order_id, self.salesman).unwrap()

    def stock_all(self, order_id):
        from orderflow.services import line_service
        for line_id in self.line_ids(order_id):
            line_service.mark_in_stock(line_id, self.storekeeper).unwrap()

    def to_checker(self, order_id):
        self.submit(order_id)
        self.stock_all(order_id)
        order_service.send_to_checker(order_id, self.salesman).unwrap()

    def checking(self, order_id):
        self.to_checker(order_id)
        order_service.claim_as_checker(order_id, self.checker).unwrap()


@pytest.fixture
def flow(salesman, storekeeper, checker):
    return OrderFlow(salesman, storekeeper, checker)


@pytest.fixture
def snapshot_rows(db_session):
    """Every column of an order and its lines, for before/after comparisons."""
    from orderflow.models import Order, OrderLine

    def _snapshot(order_id):
        db_session.expire_all()
        order = db_session.get(Order, order_id)
        order_row = {c.name: getattr(order, c.name) for c in Order.__table__.columns}
        line_rows = [
            {c.name: getattr(line, c.name) for c in OrderLine.__table__.columns}
            for line in db_session.query(OrderLine).filter_by(order_id=order_id).order_by(OrderLine.id)
        ]
        return order_row, line_rows

    return _snapshot
