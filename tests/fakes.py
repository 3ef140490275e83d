"""Gateway fakes and request bodies shared by the test modules."""

import httpx

from paybridge.services.gateway_adapter.client import PagarmeClient


def make_gateway(handler) -> PagarmeClient:
    """Gateway client whose HTTP traffic is answered by `handler(request)`."""

    return PagarmeClient(
        secret_key="sk_test_0123456789abcdef",
        public_key="pk_test_0123456789abcdef",
        base_url="https://gateway.test/core/v5",
        transport=httpx.MockTransport(handler),
    )


def order_response(charge_status="processing", charge_id="ch_123", order_id="or_456", last_transaction=None):
    """Gateway body for `POST /orders` / `GET /orders/{id}` with one charge."""

    return {
        "id": order_id,
        "status": "pending",
        "charges": [
            {
                "id": charge_id,
                "status": charge_status,
                "last_transaction": last_transaction or {},
            }
        ],
    }


def token_response(token_id="token_abc"):
    return {"id": token_id, "type": "card", "card": {"brand": "visa", "last_four_digits": "0010"}}


CUSTOMER = {
    "name": "Maria Silva",
    "email": "maria@example.com",
    "document": "123.456.789-01",
    "legalStatus": "individual",
    "phone": "(11) 98765-4321",
}

CARD = {
    "number": "4000000000000010",
    "holderName": "MARIA SILVA",
    "expMonth": 12,
    "expYear": 30,
    "cvv": "123",
    "installments": 1,
    "billingAddress": {
        "line_1": "Rua A, 100",
        "zipCode": "01000000",
        "city": "Sao Paulo",
        "state": "SP",
        "country": "BR",
    },
}
