import os

# avant tout import backend.* : settings et engine lisent DATABASE_URL
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("SMTP_HOST", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from backend.app.api.deps import get_db, get_dispatcher, get_gateway  # noqa: E402
from backend.app.db.base import Base  # noqa: E402
from backend.app.db.models.models_v1 import InventoryItem  # noqa: E402
from backend.services.gateway import GatewayPage  # noqa: E402
from backend.services.notifications import DispatchStats  # noqa: E402


class FakeGateway:
    """
    Plateforme d'inventaire en mémoire.

    failures : exceptions levées (dans l'ordre) avant de répondre normalement.
    """

    def __init__(self, products=None, vendors=None, failures=None, vendor_failures=None):
        self.products = list(products or [])
        self.vendors = list(vendors or [])
        self.failures = list(failures or [])
        self.vendor_failures = list(vendor_failures or [])
        self.calls = []

    @staticmethod
    def _page(records, offset, limit):
        chunk = records[offset : offset + limit]
        return GatewayPage(records=chunk, has_more=len(chunk) == limit)

    def fetch_page(self, offset, limit):
        self.calls.append(("product", offset, limit))
        if self.failures:
            raise self.failures.pop(0)
        return self._page(self.products, offset, limit)

    def fetch_vendor_page(self, offset, limit):
        self.calls.append(("vendor", offset, limit))
        if self.vendor_failures:
            raise self.vendor_failures.pop(0)
        return self._page(self.vendors, offset, limit)


class FakeDispatcher:
    def __init__(self, deliver_ok=True):
        self.deliver_ok = deliver_ok
        self.alerts = []
        self.deliveries = []

    def enqueue_alert(self, alert):
        self.alerts.append(alert)

    def process_pending(self, limit=None):
        return DispatchStats(remaining=len(self.alerts))

    def deliver_purchase_order(self, po, recipient_email, attachment_format="pdf"):
        self.deliveries.append((po.po_number, recipient_email, attachment_format))
        return self.deliver_ok

    @property
    def alert_types(self):
        return [a.type for a in self.alerts]


@pytest.fixture(scope="function")
def engine():
    """SQLite en mémoire, schéma neuf pour chaque test."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def fake_dispatcher():
    return FakeDispatcher()


@pytest.fixture
def make_item(db_session):
    def _make(sku="SKU-1", **fields):
        values = {
            "product_name": f"Product {sku}",
            "current_stock": 0,
            "reorder_point": 0,
            "reorder_quantity": 0,
            "unit_cost": 0,
        }
        values.update(fields)
        item = InventoryItem(sku=sku, **values)
        db_session.add(item)
        db_session.commit()
        db_session.refresh(item)
        return item

    return _make


@pytest.fixture
def client(session_factory, fake_gateway, fake_dispatcher):
    from backend.app.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_dispatcher] = lambda: fake_dispatcher
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
