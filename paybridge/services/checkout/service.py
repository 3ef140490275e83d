"""Checkout orchestration for one payment attempt.

Building -> Tokenizing (card only) -> Charging -> Settled(initial). The first
status written here may be optimistic (`processing` / `pending_payment`); the
webhook reconciler supplies the authoritative final status later.
"""

import asyncio
import time
from uuid import uuid4

from pydantic import ValidationError as SchemaValidationError

from paybridge.common.errors import (
    ChargeOutcomeUnknown,
    CheckoutInProgress,
    GatewayRejected,
    GatewayUnavailable,
    InvalidTransition,
    OrderNotFound,
    OrderNotPayable,
    ValidationError,
)
from paybridge.common.logging import charge_id_ctx, logger, order_id_ctx
from paybridge.common.metrics import (
    checkout_attempts_total,
    checkout_latency_seconds,
    rejected_transitions_total,
    retries_total,
)
from paybridge.common.state_machine import PAYABLE_STATUSES, PaymentStatus
from paybridge.services.checkout.builder import PaymentRequestBuilder
from paybridge.services.checkout.guard import CheckoutGuard
from paybridge.services.checkout.schemas import CardIn, CheckoutRequest, CheckoutResponse, PixQrCodeResponse
from paybridge.services.gateway_adapter.client import PagarmeClient
from paybridge.services.gateway_adapter.schemas import (
    BillingAddress,
    CardDetails,
    CardToken,
    GatewayChargeResult,
    PaymentMethod,
    PixChargeResult,
)
from paybridge.services.gateway_adapter.translation import translate_rejection
from paybridge.services.orders.models import Order
from paybridge.services.orders.store import UNCONFIRMED_RESULT, OrderPaymentStore


class CheckoutService:
    """Drives one checkout attempt end to end and records its initial outcome."""

    def __init__(
        self,
        store: OrderPaymentStore,
        gateway: PagarmeClient,
        builder: PaymentRequestBuilder | None = None,
        guard: CheckoutGuard | None = None,
        reconciler=None,
        tokenize_max_attempts: int = 3,
        tokenize_backoff_seconds: float = 0.5,
        service_name: str = "checkout",
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.builder = builder or PaymentRequestBuilder()
        self.guard = guard
        self.reconciler = reconciler
        self.tokenize_max_attempts = max(1, tokenize_max_attempts)
        self.tokenize_backoff_seconds = tokenize_backoff_seconds
        self.service_name = service_name

    async def pay(self, req: CheckoutRequest) -> CheckoutResponse:
        """Run one attempt; gateway errors propagate after the order state is recorded."""

        method = req.payment_method
        order_token = order_id_ctx.set(req.order_id)
        charge_token = charge_id_ctx.set("")
        try:
            order = self.store.get_order(req.order_id)
            if order is None:
                raise OrderNotFound(req.order_id)
            if self.guard is not None and not self.guard.acquire(req.order_id):
                self._count(method, "in_progress")
                raise CheckoutInProgress(f"a checkout for order {req.order_id} is already running")
            return await self._run(req, order)
        finally:
            charge_id_ctx.reset(charge_token)
            order_id_ctx.reset(order_token)

    async def _run(self, req: CheckoutRequest, order: Order) -> CheckoutResponse:
        method = req.payment_method
        start = time.perf_counter()
        try:
            # A previous attempt may have created a charge we never heard back about.
            order = await self._resolve_unconfirmed(order)
            order = self._prepare(order)
            # Building
            charge_request = self.builder.build(
                order,
                req.customer,
                method,
                installments=req.card.installments if req.card else 1,
            )
            # Tokenizing
            token = None
            if method == PaymentMethod.CREDIT_CARD:
                token = await self._tokenize(req.card)
            # Charging
            result = await self._charge(order, charge_request, token)
            return self._settle(order, method, result)
        except (ValidationError, OrderNotPayable):
            self._count(method, "invalid")
            raise
        finally:
            checkout_latency_seconds.labels(service=self.service_name, payment_method=method.value).observe(
                max(0.0, time.perf_counter() - start)
            )
            if self.guard is not None:
                self.guard.release(req.order_id)

    def _prepare(self, order: Order) -> Order:
        status = PaymentStatus(order.payment_status)
        if status not in PAYABLE_STATUSES:
            raise OrderNotPayable(f"order {order.order_id} is {order.payment_status}")
        if status == PaymentStatus.PENDING and order.payment_id is None:
            return order
        # failed/canceled: start a fresh attempt detached from the old charge.
        return self.store.reopen_for_retry(order.order_id)

    async def _tokenize(self, card: CardIn | None) -> CardToken:
        """Tokenize with bounded retries; no money has moved yet, so retrying is safe."""

        if card is None:
            raise ValidationError(["card details are required for credit card payments"])
        if card.billing_address is None:
            raise ValidationError(["billing address is required for credit card payments"])
        missing = [
            name
            for name in ("line_1", "zip_code", "city", "state", "country")
            if not str(getattr(card.billing_address, name) or "").strip()
        ]
        if missing:
            raise ValidationError([f"billing address is missing {', '.join(missing)}"])

        try:
            details = CardDetails(
                number=card.number,
                holder_name=card.holder_name,
                exp_month=card.exp_month,
                exp_year=card.exp_year,
                cvv=card.cvv,
            )
            address = BillingAddress(**card.billing_address.model_dump())
        except SchemaValidationError as exc:
            raise ValidationError([error["msg"] for error in exc.errors()]) from exc
        for attempt in range(1, self.tokenize_max_attempts + 1):
            try:
                return await self.gateway.tokenize_card(details, address)
            except GatewayRejected:
                self._count(PaymentMethod.CREDIT_CARD, "token_rejected")
                raise
            except GatewayUnavailable:
                if attempt == self.tokenize_max_attempts:
                    self._count(PaymentMethod.CREDIT_CARD, "token_unavailable")
                    raise
                retries_total.labels(service=self.service_name, dependency="gateway_tokenize").inc()
                backoff_seconds = self.tokenize_backoff_seconds * 2 ** (attempt - 1)
                logger.warning("tokenize retry attempt=%s backoff_s=%s", attempt, backoff_seconds)
                await asyncio.sleep(backoff_seconds)
        raise AssertionError("unreachable")

    async def _charge(self, order: Order, charge_request, token: CardToken | None) -> GatewayChargeResult:
        """Single, never-retried charge call; the order is failed only on a definite rejection."""

        method = charge_request.payment_method
        attempt_key = str(uuid4())
        start = time.perf_counter()
        try:
            if method == PaymentMethod.CREDIT_CARD:
                result = await self.gateway.charge_card(charge_request, token, idempotency_key=attempt_key)
            else:
                result = await self.gateway.charge_pix(charge_request, idempotency_key=attempt_key)
        except GatewayRejected as exc:
            self.store.record_charge_attempt(
                order.order_id,
                method.value,
                result="REJECTED",
                error_code=exc.error_code,
                latency_ms=self._elapsed_ms(start),
                raw_response={"message": str(exc), "errors": exc.details},
            )
            self.store.set_payment_status(order.order_id, PaymentStatus.FAILED.value, reason="gateway_rejected")
            self._count(method, "rejected")
            raise
        except ChargeOutcomeUnknown as exc:
            # Outcome unknown: keep the order pending; webhook or status poll resolves it.
            self.store.record_charge_attempt(
                order.order_id,
                method.value,
                result=UNCONFIRMED_RESULT,
                error_code=type(exc).__name__,
                latency_ms=self._elapsed_ms(start),
            )
            logger.error("charge outcome unknown order_id=%s error=%s", order.order_id, exc)
            self._count(method, "unconfirmed")
            raise
        except GatewayUnavailable as exc:
            self.store.record_charge_attempt(
                order.order_id,
                method.value,
                result="UNAVAILABLE",
                error_code=type(exc).__name__,
                latency_ms=self._elapsed_ms(start),
            )
            self._count(method, "unavailable")
            raise

        self.store.record_charge_attempt(
            order.order_id,
            method.value,
            result=result.status.value.upper(),
            gateway_order_id=result.gateway_order_id,
            gateway_charge_id=result.gateway_charge_id,
            latency_ms=self._elapsed_ms(start),
            raw_response=result.raw_response,
        )
        return result

    def _settle(self, order: Order, method: PaymentMethod, result: GatewayChargeResult) -> CheckoutResponse:
        charge_id_ctx.set(result.gateway_charge_id)
        self.store.attach_payment_id(
            order.order_id,
            result.gateway_charge_id,
            result.status.value,
            gateway_order_id=result.gateway_order_id or None,
            payment_method=method.value,
        )
        self._replay_deferred_webhooks(result)

        if result.status == PaymentStatus.FAILED:
            self._count(method, "declined")
            error_code, user_message = translate_rejection(None, result.failure_reason)
            raise GatewayRejected(
                result.failure_reason or "charge declined",
                operation="charge",
                error_code=error_code,
                user_message=user_message,
            )

        self._count(method, result.status.value)
        current = self.store.get_order(order.order_id)
        response = CheckoutResponse(
            order_id=current.order_id,
            payment_status=current.payment_status,
            payment_id=current.payment_id,
        )
        if isinstance(result, PixChargeResult):
            response.qr_code = result.qr_code
            response.qr_code_url = result.qr_code_url
            response.qr_code_expires_at = result.qr_code_expires_at
        logger.info(
            "checkout settled order_id=%s charge_id=%s status=%s",
            current.order_id,
            current.payment_id,
            current.payment_status,
        )
        return response

    def _replay_deferred_webhooks(self, result: GatewayChargeResult) -> None:
        if self.reconciler is None:
            return
        try:
            self.reconciler.replay_deferred(result.gateway_charge_id, result.gateway_order_id or None)
        except Exception as exc:
            # The charge is recorded; a replay failure must not fail the checkout.
            logger.exception("deferred webhook replay failed charge_id=%s error=%s", result.gateway_charge_id, exc)

    async def _resolve_unconfirmed(self, order: Order) -> Order:
        """Link the charge of an attempt whose outcome was never confirmed, looked up by order code."""

        if order.payment_id is not None:
            return order
        attempt = self.store.unconfirmed_attempt(order.order_id)
        if attempt is None:
            return order
        found = await self.gateway.find_order_by_code(order.order_id)
        if found is None:
            # The charge request never reached the gateway.
            self.store.resolve_unconfirmed_attempts(order.order_id, "NOT_FOUND")
            logger.info("unconfirmed charge not found order_id=%s", order.order_id)
            return self.store.get_order(order.order_id)

        try:
            self.store.attach_payment_id(
                order.order_id,
                found.gateway_charge_id,
                found.status.value,
                gateway_order_id=found.gateway_order_id or None,
                payment_method=attempt.payment_method,
                reason="charge_recovered",
            )
        except InvalidTransition as exc:
            logger.warning(
                "charge recovery transition rejected order_id=%s from=%s to=%s", order.order_id, exc.current, exc.new
            )
        self.store.resolve_unconfirmed_attempts(order.order_id, "RECOVERED", found.gateway_charge_id)
        logger.info(
            "unconfirmed charge recovered order_id=%s charge_id=%s status=%s",
            order.order_id,
            found.gateway_charge_id,
            found.status.value,
        )
        self._replay_deferred_webhooks(found)
        return self.store.get_order(order.order_id)

    async def refresh_status(self, order_id: str) -> CheckoutResponse:
        """Poll the gateway for the order's charge and apply its status through the lattice."""

        order = self.store.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        order = await self._resolve_unconfirmed(order)
        if order.payment_id is None:
            return self.status(order_id)
        result = await self.gateway.get_charge(order.payment_id)
        try:
            self.store.set_payment_status(order_id, result.status.value, reason="status_poll")
        except InvalidTransition as exc:
            logger.warning("status poll transition rejected order_id=%s from=%s to=%s", order_id, exc.current, exc.new)
            rejected_transitions_total.labels(
                service=self.service_name, from_status=exc.current, to_status=exc.new
            ).inc()
        return self.status(order_id)

    def status(self, order_id: str) -> CheckoutResponse:
        order = self.store.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return CheckoutResponse(
            order_id=order.order_id,
            payment_status=order.payment_status,
            payment_id=order.payment_id,
        )

    async def pix_qr_code(self, order_id: str) -> PixQrCodeResponse:
        """Look up the PIX QR code of the order's gateway order (status `pending` until issued)."""

        order = self.store.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if order.payment_method != PaymentMethod.PIX.value or not order.gateway_order_id:
            raise OrderNotPayable(f"order {order_id} has no PIX charge")
        result = await self.gateway.get_order(order.gateway_order_id)
        if result.qr_code and result.qr_code_url:
            return PixQrCodeResponse(
                status="found",
                order_status=result.status.value,
                qr_code=result.qr_code,
                qr_code_url=result.qr_code_url,
                expires_at=result.qr_code_expires_at,
            )
        return PixQrCodeResponse(status="pending", order_status=result.status.value)

    def _count(self, method: PaymentMethod, outcome: str) -> None:
        checkout_attempts_total.labels(
            service=self.service_name, payment_method=method.value, outcome=outcome
        ).inc()

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.perf_counter() - start) * 1000)
