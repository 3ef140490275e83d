"""Gateway client tests against a mocked HTTP transport."""

import asyncio
import base64
import json

import httpx
import pytest

from paybridge.common.errors import ChargeOutcomeUnknown, ConfigurationError, GatewayRejected, GatewayUnavailable
from paybridge.common.state_machine import PaymentStatus
from paybridge.services.gateway_adapter.client import PagarmeClient, map_gateway_status
from paybridge.services.gateway_adapter.schemas import (
    BillingAddress,
    CardDetails,
    CardToken,
    ChargeRequest,
    GatewayCustomer,
    LineItem,
    PaymentMethod,
)

from fakes import make_gateway, order_response, token_response

ADDRESS = BillingAddress(line_1="Rua A, 100", zip_code="01000000", city="Sao Paulo", state="SP")
CARD = CardDetails(number="4000000000000010", holder_name="MARIA SILVA", exp_month=12, exp_year=2030, cvv="123")
CUSTOMER = GatewayCustomer(
    name="Maria Silva",
    email="maria@example.com",
    document="12345678901",
    document_type="cpf",
    customer_type="individual",
    phone_area_code="11",
    phone_number="987654321",
)


def _request(method=PaymentMethod.PIX):
    return ChargeRequest(
        order_id="order-1",
        amount_cents=8000,
        line_items=[
            LineItem(description="Guest post", amount_cents=5000, quantity=1, code="PRODUCT"),
            LineItem(description="Extra content", amount_cents=3000, quantity=1, code="CONTENT"),
        ],
        customer=CUSTOMER,
        payment_method=method,
    )


def test_keys_must_have_expected_prefixes():
    """A public key in the secret slot is a configuration error, not a runtime 401."""

    with pytest.raises(ConfigurationError):
        PagarmeClient(secret_key="pk_test_x", public_key="pk_test_y")
    with pytest.raises(ConfigurationError):
        PagarmeClient(secret_key="sk_test_x", public_key="sk_test_y")


def test_tokenize_uses_public_key_without_secret():
    """Card tokenization authenticates with the public key only."""

    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["app_id"] = request.url.params.get("appId")
        seen["authorization"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=token_response())

    token = asyncio.run(make_gateway(handler).tokenize_card(CARD, ADDRESS))

    assert token.token_id == "token_abc"
    assert token.brand == "visa"
    assert seen["path"].endswith("/tokens")
    assert seen["app_id"] == "pk_test_0123456789abcdef"
    assert seen["authorization"] is None
    assert seen["body"]["card"]["number"] == "4000000000000010"


def test_tokenize_timeout_is_unavailable():
    """No money moves during tokenization, so a timeout is plainly retryable."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayUnavailable) as exc_info:
        asyncio.run(make_gateway(handler).tokenize_card(CARD, ADDRESS))
    assert not isinstance(exc_info.value, ChargeOutcomeUnknown)


def test_charge_pix_sends_order_and_returns_qr_code():
    """PIX charges carry items, customer phone and the configured expiry."""

    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["authorization"] = request.headers["authorization"]
        seen["idempotency_key"] = request.headers.get("idempotency-key")
        return httpx.Response(
            200,
            json=order_response(
                charge_status="pending",
                last_transaction={
                    "qr_code": "000201pix",
                    "qr_code_url": "https://gateway.test/qr.png",
                    "expires_at": "2026-10-19T13:00:00Z",
                },
            ),
        )

    result = asyncio.run(make_gateway(handler).charge_pix(_request(), idempotency_key="attempt-1"))

    assert result.gateway_charge_id == "ch_123"
    assert result.gateway_order_id == "or_456"
    assert result.status == PaymentStatus.PENDING_PAYMENT
    assert result.qr_code == "000201pix"
    assert result.qr_code_expires_at == "2026-10-19T13:00:00Z"

    body = seen["body"]
    assert body["code"] == "order-1"
    assert sum(item["amount"] * item["quantity"] for item in body["items"]) == 8000
    assert body["payments"][0]["amount"] == 8000
    assert body["payments"][0]["pix"]["expires_in"] == 3600
    assert body["customer"]["phones"]["mobile_phone"] == {"country_code": "55", "area_code": "11", "number": "987654321"}
    assert seen["idempotency_key"] == "attempt-1"
    expected = base64.b64encode(b"sk_test_0123456789abcdef:").decode()
    assert seen["authorization"] == f"Basic {expected}"


def test_charge_card_sends_token_and_billing_address():
    """Card charges reference the token and carry the billing address."""

    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=order_response(charge_status="paid"))

    token = CardToken(token_id="token_abc", billing_address=ADDRESS)
    result = asyncio.run(make_gateway(handler).charge_card(_request(PaymentMethod.CREDIT_CARD), token))

    assert result.status == PaymentStatus.PAID
    credit_card = seen["body"]["payments"][0]["credit_card"]
    assert credit_card["card_token"] == "token_abc"
    assert credit_card["card"]["billing_address"]["zip_code"] == "01000000"
    assert "line_2" not in credit_card["card"]["billing_address"]


def test_charge_server_error_is_outcome_unknown():
    """A 5xx after a charge was sent may have billed; it is never a plain failure."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    with pytest.raises(ChargeOutcomeUnknown):
        asyncio.run(make_gateway(handler).charge_pix(_request()))


def test_charge_connect_error_is_unavailable():
    """A charge that never left the process is safe to retry."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayUnavailable) as exc_info:
        asyncio.run(make_gateway(handler).charge_pix(_request()))
    assert not isinstance(exc_info.value, ChargeOutcomeUnknown)


def test_rejection_is_translated():
    """4xx responses carry a translated user-facing message."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            422,
            json={"message": "The request is invalid", "errors": {"card.number": ["invalid"]}},
        )

    with pytest.raises(GatewayRejected) as exc_info:
        asyncio.run(make_gateway(handler).charge_pix(_request()))
    assert exc_info.value.status_code == 422
    assert exc_info.value.error_code == "invalid_request"
    assert exc_info.value.details == {"card.number": ["invalid"]}


def test_order_without_charges_is_outcome_unknown():
    """An order body with no charge cannot be attached to anything."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "or_456", "charges": []})

    with pytest.raises(ChargeOutcomeUnknown):
        asyncio.run(make_gateway(handler).charge_pix(_request()))


def test_get_charge_maps_status():
    """Status polls map gateway vocabulary onto the local lattice."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/charges/ch_123")
        return httpx.Response(200, json={"id": "ch_123", "status": "paid", "order": {"id": "or_456"}})

    result = asyncio.run(make_gateway(handler).get_charge("ch_123"))
    assert result.status == PaymentStatus.PAID
    assert result.gateway_order_id == "or_456"


def test_unknown_gateway_status_is_processing():
    assert map_gateway_status("something_new") == PaymentStatus.PROCESSING
    assert map_gateway_status("waiting_payment") == PaymentStatus.PENDING_PAYMENT


@pytest.mark.parametrize(
    "transaction",
    [
        {"pix": {"qr_code": "000201pix", "qr_code_url": "https://gateway.test/qr.png", "expires_at": "2026-10-19T13:00:00Z"}},
        {"qr_code": "000201pix", "qr_code_url": "https://gateway.test/qr.png", "expires_at": "2026-10-19T13:00:00Z"},
    ],
    ids=["nested", "flat"],
)
def test_get_order_reads_qr_code_in_either_shape(transaction):
    """QR data is read from `last_transaction.pix` first, then from the transaction itself."""

    gateway = make_gateway(
        lambda request: httpx.Response(200, json=order_response(charge_status="pending", last_transaction=transaction))
    )

    result = asyncio.run(gateway.get_order("or_456"))

    assert result.qr_code == "000201pix"
    assert result.qr_code_url == "https://gateway.test/qr.png"
    assert result.qr_code_expires_at == "2026-10-19T13:00:00Z"


def test_find_order_by_code_queries_orders_by_code():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["code"] = request.url.params.get("code")
        other = {**order_response(charge_id="ch_other", order_id="or_other"), "code": "order-10"}
        return httpx.Response(200, json={"data": [other, {**order_response(), "code": "order-1"}]})

    result = asyncio.run(make_gateway(handler).find_order_by_code("order-1"))

    assert seen == {"method": "GET", "path": "/core/v5/orders", "code": "order-1"}
    assert result.gateway_charge_id == "ch_123"
    assert result.gateway_order_id == "or_456"


def test_find_order_by_code_without_match_is_none():
    gateway = make_gateway(lambda request: httpx.Response(200, json={"data": []}))
    assert asyncio.run(gateway.find_order_by_code("order-1")) is None
