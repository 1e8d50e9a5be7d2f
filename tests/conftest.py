"""
Pytest configuration and shared fixtures.

Provides an in-memory MongoDB (mongomock), mocked Mercado Pago and
Cloudinary collaborators, and a Flask test client wired to all of them.
"""
import json
from typing import Tuple
from unittest.mock import MagicMock

import mongomock
import pytest

from usbc_store import create_app
from usbc_store.lifecycle import OrderLifecycleManager
from usbc_store.orders import OrderStore
from usbc_store.payments import MercadoPagoClient
from usbc_store.uploads import CloudinaryUploader
from usbc_store.webhooks import compute_signature

WEBHOOK_SECRET = "test-webhook-secret"
SIGNATURE_HEADER = "X-MercadoPago-Signature"


# ── Database Fixtures ────────────────────────────────────────────────


@pytest.fixture
def mongo_db():
    """Fresh in-memory database for each test."""
    client = mongomock.MongoClient()
    yield client.usbc_test
    client.close()


@pytest.fixture
def order_store(mongo_db) -> OrderStore:
    store = OrderStore(mongo_db.orders)
    store.ensure_indexes()
    return store


# ── Mock Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def mock_payment_client():
    """Mercado Pago client that never touches the network."""
    client = MagicMock(spec=MercadoPagoClient)
    client.create_preference.return_value = "pref_123"
    client.get_payment_status.return_value = "approved"
    return client


@pytest.fixture
def mock_uploader():
    uploader = MagicMock(spec=CloudinaryUploader)
    uploader.upload.return_value = "https://res.cloudinary.com/demo/image/upload/usbc/product_1.png"
    return uploader


@pytest.fixture
def lifecycle(order_store, mock_payment_client) -> OrderLifecycleManager:
    return OrderLifecycleManager(order_store, mock_payment_client, WEBHOOK_SECRET)


# ── App Fixtures ─────────────────────────────────────────────────────


@pytest.fixture
def app(mongo_db, mock_payment_client, mock_uploader):
    app = create_app(
        {
            "TESTING": True,
            "JWT_SECRET_KEY": "test-jwt-secret-for-pytest-only",
            "MERCADO_PAGO_WEBHOOK_SECRET": WEBHOOK_SECRET,
            "MERCADO_PAGO_SIGNATURE_HEADER": SIGNATURE_HEADER,
        },
        database=mongo_db,
        payment_client=mock_payment_client,
        image_uploader=mock_uploader,
    )
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


# ── Test Data Fixtures ───────────────────────────────────────────────


@pytest.fixture
def sample_items():
    return [{"title": "Shirt", "quantity": 2, "unit_price": 10}]


def build_notification(payment_id="pay_123", event_type="payment") -> bytes:
    return json.dumps({"type": event_type, "data": {"id": payment_id}}).encode("utf-8")


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(secret, body)


@pytest.fixture
def signed_notification():
    """Factory returning ``(raw_body, signature)`` for a payment notification."""

    def _make(payment_id="pay_123", event_type="payment") -> Tuple[bytes, str]:
        body = build_notification(payment_id, event_type)
        return body, sign(body)

    return _make
