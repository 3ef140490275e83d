"""Pagar.me core v5 client: tokenize card, create card/PIX charges, poll status.

Stateless; every operation is a single HTTP call bounded by the configured
timeout. Charge creation is never retried here since a resend could
double-bill.
"""

import base64
import json
import time
from typing import Any

import httpx

from paybridge.common.config import settings
from paybridge.common.errors import (
    ChargeOutcomeUnknown,
    ConfigurationError,
    GatewayRejected,
    GatewayUnavailable,
)
from paybridge.common.logging import logger
from paybridge.common.metrics import gateway_request_seconds
from paybridge.common.state_machine import PaymentStatus
from paybridge.services.gateway_adapter.schemas import (
    BillingAddress,
    CardDetails,
    CardToken,
    ChargeRequest,
    GatewayChargeResult,
    PixChargeResult,
)
from paybridge.services.gateway_adapter.translation import translate_rejection


GATEWAY_STATUS_MAP: dict[str, PaymentStatus] = {
    "pending": PaymentStatus.PENDING_PAYMENT,
    "waiting_payment": PaymentStatus.PENDING_PAYMENT,
    "processing": PaymentStatus.PROCESSING,
    "paid": PaymentStatus.PAID,
    "overpaid": PaymentStatus.PAID,
    "failed": PaymentStatus.FAILED,
    "not_authorized": PaymentStatus.FAILED,
    "canceled": PaymentStatus.CANCELED,
    "refunded": PaymentStatus.REFUNDED,
    "chargedback": PaymentStatus.REFUNDED,
}


def map_gateway_status(gateway_status: str | None) -> PaymentStatus:
    """Unknown gateway statuses are treated as still processing."""

    return GATEWAY_STATUS_MAP.get((gateway_status or "").lower(), PaymentStatus.PROCESSING)


class PagarmeClient:
    """Adapter hiding the gateway's wire format behind three charge operations."""

    def __init__(
        self,
        secret_key: str,
        public_key: str,
        base_url: str = "https://api.pagar.me/core/v5",
        timeout_seconds: float = 15.0,
        statement_descriptor: str = "PAYBRIDGE",
        pix_expires_in_seconds: int = 3600,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not secret_key.startswith("sk_"):
            raise ConfigurationError("gateway secret key must be a secret key (sk_...)")
        if not public_key.startswith("pk_"):
            raise ConfigurationError("gateway public key must be a public key (pk_...)")
        self.public_key = public_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.statement_descriptor = statement_descriptor
        self.pix_expires_in_seconds = pix_expires_in_seconds
        self.transport = transport
        self._authorization = "Basic " + base64.b64encode(f"{secret_key}:".encode()).decode()

    @classmethod
    def from_settings(cls, transport: httpx.AsyncBaseTransport | None = None) -> "PagarmeClient":
        secret_key, public_key, environment = settings.gateway_keys()
        logger.info(
            "gateway_configured environment=%s secret_key=%s...%s",
            environment,
            secret_key[:6],
            secret_key[-4:],
        )
        return cls(
            secret_key=secret_key,
            public_key=public_key,
            base_url=settings.gateway_base_url,
            timeout_seconds=settings.gateway_timeout_seconds,
            statement_descriptor=settings.statement_descriptor,
            pix_expires_in_seconds=settings.pix_expires_in_seconds,
            transport=transport,
        )

    async def tokenize_card(self, card: CardDetails, billing_address: BillingAddress) -> CardToken:
        """Exchange raw card data for a single-use token (public key, no secret)."""

        payload = {
            "type": "card",
            "card": {
                "number": card.number.get_secret_value(),
                "holder_name": card.holder_name,
                "exp_month": card.exp_month,
                "exp_year": card.exp_year,
                "cvv": card.cvv.get_secret_value(),
            },
        }
        data = await self._send(
            "tokenize",
            "POST",
            "/tokens",
            json_body=payload,
            params={"appId": self.public_key},
            authenticated=False,
        )
        token_id = data.get("id")
        if not isinstance(token_id, str) or not token_id:
            raise GatewayUnavailable("gateway returned no card token", operation="tokenize")
        card_info = data.get("card") or {}
        return CardToken(
            token_id=token_id,
            billing_address=billing_address,
            brand=card_info.get("brand"),
            last_four_digits=card_info.get("last_four_digits"),
        )

    async def charge_card(
        self, request: ChargeRequest, token: CardToken, idempotency_key: str | None = None
    ) -> GatewayChargeResult:
        address = token.billing_address
        billing = {
            "line_1": address.line_1,
            "zip_code": address.zip_code,
            "city": address.city,
            "state": address.state,
            "country": address.country,
        }
        if address.line_2:
            billing["line_2"] = address.line_2
        payments = [
            {
                "payment_method": "credit_card",
                "amount": request.amount_cents,
                "credit_card": {
                    "installments": request.installments,
                    "statement_descriptor": self.statement_descriptor,
                    "card_token": token.token_id,
                    "card": {"billing_address": billing},
                },
            }
        ]
        data = await self._send(
            "charge_card",
            "POST",
            "/orders",
            json_body=self._order_payload(request, payments),
            idempotency_key=idempotency_key,
            outcome_unknown_on_failure=True,
        )
        return self._parse_order(data, GatewayChargeResult)

    async def charge_pix(self, request: ChargeRequest, idempotency_key: str | None = None) -> PixChargeResult:
        payments = [
            {
                "payment_method": "pix",
                "amount": request.amount_cents,
                "pix": {
                    "expires_in": self.pix_expires_in_seconds,
                    "additional_information": [{"name": "Order", "value": request.order_id}],
                },
            }
        ]
        data = await self._send(
            "charge_pix",
            "POST",
            "/orders",
            json_body=self._order_payload(request, payments),
            idempotency_key=idempotency_key,
            outcome_unknown_on_failure=True,
        )
        return self._parse_order(data, PixChargeResult)

    async def get_charge(self, charge_id: str) -> GatewayChargeResult:
        """Poll the authoritative status of one charge."""

        data = await self._send("get_charge", "GET", f"/charges/{charge_id}")
        order = data.get("order") or {}
        return GatewayChargeResult(
            gateway_order_id=str(order.get("id") or ""),
            gateway_charge_id=str(data.get("id") or charge_id),
            status=map_gateway_status(data.get("status")),
            gateway_status=str(data.get("status") or ""),
            failure_reason=self._failure_reason(data),
            raw_response=data,
        )

    async def get_order(self, gateway_order_id: str) -> PixChargeResult:
        data = await self._send("get_order", "GET", f"/orders/{gateway_order_id}")
        return self._parse_order(data, PixChargeResult)

    async def find_order_by_code(self, code: str) -> PixChargeResult | None:
        """Find the gateway order created with our order id as `code`; None when none exists."""

        data = await self._send("find_order", "GET", "/orders", params={"code": code})
        orders = [order for order in data.get("data") or [] if order.get("code") == code]
        if not orders:
            return None
        return self._parse_order(orders[0], PixChargeResult)

    def _order_payload(self, request: ChargeRequest, payments: list[dict]) -> dict[str, Any]:
        customer = request.customer
        return {
            "code": request.order_id,
            "items": [
                {
                    "amount": item.amount_cents,
                    "description": item.description,
                    "quantity": item.quantity,
                    "code": item.code,
                }
                for item in request.line_items
            ],
            "customer": {
                "name": customer.name,
                "email": customer.email,
                "document": customer.document,
                "document_type": customer.document_type,
                "type": customer.customer_type,
                "phones": {
                    "mobile_phone": {
                        "country_code": customer.phone_country_code,
                        "area_code": customer.phone_area_code,
                        "number": customer.phone_number,
                    }
                },
            },
            "payments": payments,
            "metadata": {"order_id": request.order_id, "payment_method": request.payment_method.value},
        }

    @staticmethod
    def _failure_reason(charge: dict[str, Any]) -> str | None:
        transaction = charge.get("last_transaction") or {}
        gateway_response = transaction.get("gateway_response") or {}
        messages = [err.get("message") for err in gateway_response.get("errors") or [] if err.get("message")]
        if messages:
            return "; ".join(messages)
        return transaction.get("acquirer_message")

    def _parse_order(self, data: dict[str, Any], result_type: type[GatewayChargeResult]):
        charges = data.get("charges") or []
        if not charges or not charges[0].get("id"):
            raise ChargeOutcomeUnknown("gateway order has no charge", operation="parse_order")
        charge = charges[0]
        fields: dict[str, Any] = {
            "gateway_order_id": str(data.get("id") or ""),
            "gateway_charge_id": str(charge["id"]),
            "status": map_gateway_status(charge.get("status")),
            "gateway_status": str(charge.get("status") or ""),
            "failure_reason": self._failure_reason(charge),
            "raw_response": data,
        }
        if result_type is PixChargeResult:
            transaction = charge.get("last_transaction") or {}
            # QR data arrives either nested under `pix` or flat on the transaction.
            pix = transaction.get("pix") or {}
            fields["qr_code"] = pix.get("qr_code") or transaction.get("qr_code")
            fields["qr_code_url"] = pix.get("qr_code_url") or transaction.get("qr_code_url")
            fields["qr_code_expires_at"] = pix.get("expires_at") or transaction.get("expires_at")
        return result_type(**fields)

    async def _send(
        self,
        operation: str,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        idempotency_key: str | None = None,
        authenticated: bool = True,
        outcome_unknown_on_failure: bool = False,
    ) -> dict[str, Any]:
        """Issue one request and map transport/HTTP failures to the error taxonomy.

        Failures that happen before the request leaves (connect errors) are
        always `GatewayUnavailable`; later failures become
        `ChargeOutcomeUnknown` when `outcome_unknown_on_failure` is set.
        """

        unknown_error = ChargeOutcomeUnknown if outcome_unknown_on_failure else GatewayUnavailable
        headers = {"Content-Type": "application/json"}
        if authenticated:
            headers["Authorization"] = self._authorization
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        start = time.perf_counter()
        status_label = "error"
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                resp = await client.request(method, path, json=json_body, params=params, headers=headers)
            status_label = str(resp.status_code)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            logger.warning("gateway_unreachable operation=%s error=%s", operation, exc)
            raise GatewayUnavailable(f"gateway unreachable: {exc}", operation=operation) from exc
        except httpx.TimeoutException as exc:
            logger.warning("gateway_timeout operation=%s error=%s", operation, exc)
            raise unknown_error(f"gateway timed out: {exc}", operation=operation) from exc
        except httpx.TransportError as exc:
            logger.warning("gateway_transport_error operation=%s error=%s", operation, exc)
            raise unknown_error(f"gateway transport error: {exc}", operation=operation) from exc
        finally:
            gateway_request_seconds.labels(operation=operation, status_code=status_label).observe(
                max(0.0, time.perf_counter() - start)
            )

        try:
            data = resp.json()
        except json.JSONDecodeError:
            data = None

        if resp.status_code >= 500:
            logger.error("gateway_server_error operation=%s status=%s", operation, resp.status_code)
            raise unknown_error(
                f"gateway returned {resp.status_code}", status_code=resp.status_code, operation=operation
            )
        if resp.status_code >= 400:
            body = data if isinstance(data, dict) else {}
            message = body.get("message") or resp.text or f"gateway returned {resp.status_code}"
            error_code, user_message = translate_rejection(resp.status_code, message)
            logger.warning(
                "gateway_rejected operation=%s status=%s code=%s", operation, resp.status_code, error_code
            )
            raise GatewayRejected(
                message,
                status_code=resp.status_code,
                operation=operation,
                error_code=error_code,
                user_message=user_message,
                details=body.get("errors") or {},
            )
        if not isinstance(data, dict):
            raise unknown_error("gateway returned a non-JSON body", status_code=resp.status_code, operation=operation)
        return data
