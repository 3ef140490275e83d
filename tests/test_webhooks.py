"""Webhook reconciliation tests: HTTP contract, idempotence and ordering."""

import pytest
from fastapi.testclient import TestClient

from paybridge.common.config import settings
from paybridge.services.orders.store import UNCONFIRMED_RESULT
from paybridge.services.webhooks.main import app, get_reconciler
from paybridge.services.webhooks.models import WebhookDelivery
from paybridge.services.webhooks.schemas import ReconcileOutcome, WebhookEvent


@pytest.fixture
def client(reconciler):
    app.dependency_overrides[get_reconciler] = lambda: reconciler
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def charged_order(store, order):
    store.attach_payment_id(order.order_id, "ch_123", "processing", gateway_order_id="or_456")
    return order


def _deliveries(session_factory):
    with session_factory() as db:
        return db.query(WebhookDelivery).all()


def test_charge_paid_with_padded_id_marks_order_paid(client, store, charged_order):
    """Ids are trimmed before lookup; the delivery is acknowledged with 200."""

    resp = client.post("/webhooks/payment-gateway", json={"type": "charge.paid", "data": {"id": " ch_123 "}})

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "outcome": "applied"}
    assert store.get_order(charged_order.order_id).payment_status == "paid"


def test_repeated_delivery_is_idempotent(client, store, charged_order):
    """The same event twice leaves the order exactly as after the first."""

    payload = {"type": "charge.paid", "data": {"id": "ch_123"}}
    client.post("/webhooks/payment-gateway", json=payload)
    after_first = store.get_order(charged_order.order_id)

    resp = client.post("/webhooks/payment-gateway", json=payload)
    after_second = store.get_order(charged_order.order_id)

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "unchanged"
    assert after_second.payment_status == after_first.payment_status == "paid"
    assert after_second.state_version == after_first.state_version


def test_repeated_event_id_is_skipped(client, charged_order):
    payload = {"id": "hook_1", "type": "charge.paid", "data": {"id": "ch_123"}}
    client.post("/webhooks/payment-gateway", json=payload)

    resp = client.post("/webhooks/payment-gateway", json=payload)
    assert resp.json()["outcome"] == "duplicate"


def test_unhandled_event_type_acknowledged_without_order_write(client, store, charged_order):
    """Event types outside the handled set are ignored, not errors."""

    before = store.get_order(charged_order.order_id)
    resp = client.post("/webhooks/payment-gateway", json={"type": "charge.created", "data": {"id": "ch_123"}})

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "ignored"
    after = store.get_order(charged_order.order_id)
    assert after.payment_status == before.payment_status
    assert after.state_version == before.state_version


def test_unknown_charge_is_a_miss_not_an_error(client, session_factory):
    """A charge from another environment is acknowledged and logged as a miss."""

    resp = client.post("/webhooks/payment-gateway", json={"type": "charge.paid", "data": {"id": "ch_other"}})

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "miss"
    assert [delivery.outcome for delivery in _deliveries(session_factory)] == ["miss"]


def test_order_paid_matches_gateway_order_id(client, store, charged_order):
    resp = client.post("/webhooks/payment-gateway", json={"type": "order.paid", "data": {"id": "or_456"}})

    assert resp.json()["outcome"] == "applied"
    assert store.get_order(charged_order.order_id).payment_status == "paid"


def test_late_failure_cannot_override_paid(client, store, charged_order):
    """Out-of-order failed after paid is refused; the order stays paid."""

    client.post("/webhooks/payment-gateway", json={"type": "charge.paid", "data": {"id": "ch_123"}})
    resp = client.post("/webhooks/payment-gateway", json={"type": "charge.payment_failed", "data": {"id": "ch_123"}})

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "rejected_transition"
    assert store.get_order(charged_order.order_id).payment_status == "paid"


def test_refund_after_paid(client, store, charged_order):
    client.post("/webhooks/payment-gateway", json={"type": "charge.paid", "data": {"id": "ch_123"}})
    client.post("/webhooks/payment-gateway", json={"type": "charge.refunded", "data": {"id": "ch_123"}})

    assert store.get_order(charged_order.order_id).payment_status == "refunded"


@pytest.mark.parametrize(
    "body",
    [
        {"data": {"id": "ch_123"}},
        {"type": "charge.paid"},
        {"type": "charge.paid", "data": {}},
        {"type": "charge.paid", "data": {"id": "   "}},
        {"type": "", "data": {"id": "ch_123"}},
        ["charge.paid"],
    ],
)
def test_malformed_payload_is_400(client, session_factory, body):
    """Structurally invalid deliveries are refused and nothing is recorded."""

    resp = client.post("/webhooks/payment-gateway", json=body)

    assert resp.status_code == 400
    assert _deliveries(session_factory) == []


def test_non_json_body_is_400(client):
    resp = client.post(
        "/webhooks/payment-gateway", content=b"not json", headers={"Content-Type": "application/json"}
    )
    assert resp.status_code == 400


def test_internal_failure_still_acknowledged(client, reconciler, monkeypatch):
    """Processing errors are logged and answered with 200 to avoid retry storms."""

    def boom(event):
        raise RuntimeError("database down")

    monkeypatch.setattr(reconciler, "_apply", boom)
    resp = client.post("/webhooks/payment-gateway", json={"type": "charge.paid", "data": {"id": "ch_123"}})

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "error"


def test_basic_auth_enforced_when_configured(client, charged_order, monkeypatch):
    monkeypatch.setattr(settings, "webhook_username", "gateway")
    monkeypatch.setattr(settings, "webhook_password", "s3cret")
    payload = {"type": "charge.paid", "data": {"id": "ch_123"}}

    assert client.post("/webhooks/payment-gateway", json=payload).status_code == 401
    assert client.post("/webhooks/payment-gateway", json=payload, auth=("gateway", "wrong")).status_code == 401
    assert client.post("/webhooks/payment-gateway", json=payload, auth=("gateway", "s3cret")).status_code == 200


def test_replay_deferred_applies_missed_delivery_once(store, order, reconciler):
    """Misses are replayed after the charge id lands, and only once."""

    assert reconciler.reconcile(WebhookEvent("charge.paid", "ch_123")) is ReconcileOutcome.MISS
    store.attach_payment_id(order.order_id, "ch_123", "processing")

    assert reconciler.replay_deferred("ch_123") == 1
    assert reconciler.replay_deferred("ch_123") == 0
    assert store.get_order(order.order_id).payment_status == "paid"


def test_checkout_attach_between_lookup_and_delivery_log(store, order, reconciler, monkeypatch):
    """A charge id stored while a delivery is missing is still applied by that delivery."""

    original_lookup = store.get_by_charge_id
    interleaved = []

    def lookup_while_checkout_attaches(charge_id):
        found = original_lookup(charge_id)
        if not interleaved:
            interleaved.append(charge_id)
            # The checkout path runs its own replay before this delivery is logged.
            store.attach_payment_id(order.order_id, "ch_123", "processing")
            assert reconciler.replay_deferred("ch_123") == 0
        return found

    monkeypatch.setattr(store, "get_by_charge_id", lookup_while_checkout_attaches)

    assert reconciler.reconcile(WebhookEvent("charge.paid", "ch_123")) is ReconcileOutcome.APPLIED
    assert store.get_order(order.order_id).payment_status == "paid"


@pytest.mark.parametrize(
    "make_data",
    [
        lambda order_id: {"id": "ch_lost", "order": {"id": "or_lost", "code": order_id}},
        lambda order_id: {"id": "ch_lost", "metadata": {"order_id": order_id}},
        lambda order_id: {"id": "ch_lost", "code": f" {order_id} "},
    ],
    ids=["order_code", "metadata", "charge_code"],
)
def test_unconfirmed_charge_is_linked_by_order_code(client, store, order, make_data):
    """A charge whose creation response was lost is found through the order id it echoes."""

    store.record_charge_attempt(order.order_id, "pix", result=UNCONFIRMED_RESULT, error_code="ChargeOutcomeUnknown")
    body = {"type": "charge.paid", "data": make_data(order.order_id)}

    resp = client.post("/webhooks/payment-gateway", json=body)

    assert resp.json()["outcome"] == "applied"
    current = store.get_order(order.order_id)
    assert current.payment_id == "ch_lost"
    assert current.payment_status == "paid"
    assert [attempt.result for attempt in store.charge_attempts(order.order_id)] == ["RECOVERED"]
    assert store.charge_attempts(order.order_id)[0].gateway_charge_id == "ch_lost"


def test_order_code_never_relinks_an_order_holding_a_charge(client, store, charged_order):
    body = {"type": "charge.paid", "data": {"id": "ch_other", "code": charged_order.order_id}}

    resp = client.post("/webhooks/payment-gateway", json=body)

    assert resp.json()["outcome"] == "miss"
    current = store.get_order(charged_order.order_id)
    assert current.payment_id == "ch_123"
    assert current.payment_status == "processing"


def test_order_paid_links_charge_by_order_code(client, store, order):
    """order.* payloads carry the order code at the top of `data` and the charge in `charges`."""

    body = {
        "type": "order.paid",
        "data": {"id": "or_lost", "code": order.order_id, "charges": [{"id": "ch_lost", "status": "paid"}]},
    }

    resp = client.post("/webhooks/payment-gateway", json=body)

    assert resp.json()["outcome"] == "applied"
    current = store.get_order(order.order_id)
    assert current.payment_id == "ch_lost"
    assert current.gateway_order_id == "or_lost"
