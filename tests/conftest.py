"""Shared fixtures: in-memory SQLite order store and a mock gateway transport."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("GATEWAY_SECRET_KEY", "sk_test_0123456789abcdef")
os.environ.setdefault("GATEWAY_PUBLIC_KEY", "pk_test_0123456789abcdef")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("REDIS_URL", "")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from paybridge.common.db import Base
from paybridge.services.orders import models  # noqa: F401
from paybridge.services.orders.store import OrderPaymentStore
from paybridge.services.webhooks import models as webhook_models  # noqa: F401
from paybridge.services.webhooks.service import WebhookReconciler


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return OrderPaymentStore(session_factory)


@pytest.fixture
def reconciler(store, session_factory):
    return WebhookReconciler(store, session_factory)


@pytest.fixture
def order(store):
    """Pending order: one 5000 item plus 3000 of extra content (8000 total)."""

    return store.create_order(
        "cust-1",
        [{"amount_cents": 5000, "quantity": 1, "code": "PRODUCT", "description": "Guest post"}],
        content_cents=3000,
        content_word_count=500,
    )
