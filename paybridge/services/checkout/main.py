"""HTTP surface for checkout: start a payment, poll its status, PIX QR lookup."""

import redis
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from paybridge.common.config import settings
from paybridge.common.db import SessionLocal
from paybridge.common.errors import (
    BuildInconsistency,
    ChargeOutcomeUnknown,
    CheckoutInProgress,
    GatewayRejected,
    GatewayUnavailable,
    OrderNotFound,
    OrderNotPayable,
    PaymentError,
    ValidationError,
)
from paybridge.common.logging import configure_logging, logger
from paybridge.common.metrics import metrics_response
from paybridge.common.middleware import add_request_middleware
from paybridge.common.startup import log_startup_config
from paybridge.common.tracing import instrument_app, setup_tracing
from paybridge.services.checkout.guard import CheckoutGuard
from paybridge.services.checkout.installments import simulate_installments
from paybridge.services.checkout.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    InstallmentOption,
    InstallmentRequest,
    InstallmentResponse,
)
from paybridge.services.checkout.service import CheckoutService
from paybridge.services.gateway_adapter.client import PagarmeClient
from paybridge.services.orders.store import OrderPaymentStore
from paybridge.services.webhooks.service import WebhookReconciler

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "DATABASE_URL",
        "REDIS_URL",
        "GATEWAY_BASE_URL",
        "GATEWAY_TEST_MODE",
        "GATEWAY_SECRET_KEY",
        "TOKENIZE_MAX_ATTEMPTS",
    ],
)

store = OrderPaymentStore(SessionLocal)
guard = None
if settings.redis_url:
    guard = CheckoutGuard(
        redis.Redis.from_url(settings.redis_url, decode_responses=True),
        ttl_seconds=settings.checkout_guard_ttl_seconds,
    )
service = CheckoutService(
    store,
    PagarmeClient.from_settings(),
    guard=guard,
    reconciler=WebhookReconciler(store, SessionLocal),
    tokenize_max_attempts=settings.tokenize_max_attempts,
    tokenize_backoff_seconds=settings.tokenize_backoff_seconds,
    service_name=settings.service_name,
)

app = FastAPI(title="PayBridge Checkout")
instrument_app(app)
add_request_middleware(app)

# Checked in order: ChargeOutcomeUnknown is a GatewayUnavailable.
ERROR_RESPONSES: list[tuple[type[Exception], int, str, bool]] = [
    (ValidationError, 422, "validation_error", False),
    (OrderNotFound, 404, "order_not_found", False),
    (OrderNotPayable, 409, "order_not_payable", False),
    (CheckoutInProgress, 409, "checkout_in_progress", True),
    (GatewayRejected, 402, "payment_rejected", False),
    (ChargeOutcomeUnknown, 504, "payment_unconfirmed", False),
    (GatewayUnavailable, 503, "gateway_unavailable", True),
    (BuildInconsistency, 500, "internal_error", False),
]


def get_checkout_service() -> CheckoutService:
    return service


def enforce_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Reject callers without the shared service API key."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid api key")


def to_http_error(exc: PaymentError) -> HTTPException:
    """Map a payment-domain error to its HTTP status and `{code, message, retryable}` body."""

    for error_type, status_code, code, retryable in ERROR_RESPONSES:
        if isinstance(exc, error_type):
            break
    else:
        status_code, code, retryable = 500, "internal_error", False

    message = str(exc)
    if isinstance(exc, GatewayRejected):
        message = exc.user_message
    elif isinstance(exc, ChargeOutcomeUnknown):
        message = "The payment could not be confirmed yet. Check the order status before retrying."
    elif isinstance(exc, GatewayUnavailable):
        message = "The payment provider is unavailable. Please try again."
    elif isinstance(exc, BuildInconsistency):
        logger.error("payment request inconsistent: %s", exc)
        message = "Internal error while preparing the payment."

    detail = {"code": code, "message": message, "retryable": retryable}
    if isinstance(exc, ValidationError):
        detail["errors"] = exc.errors
    if isinstance(exc, GatewayRejected) and exc.error_code:
        detail["gatewayCode"] = exc.error_code
    return HTTPException(status_code=status_code, detail=detail)


@app.exception_handler(RequestValidationError)
async def request_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
    """Answer malformed request bodies with the same `{code, message, retryable}` shape."""

    errors = [f"{'.'.join(str(part) for part in error['loc'][1:])}: {error['msg']}" for error in exc.errors()]
    logger.info("checkout request rejected errors=%s", errors)
    return JSONResponse(
        status_code=422,
        content={
            "detail": {
                "code": "validation_error",
                "message": "Invalid request payload.",
                "retryable": False,
                "errors": errors,
            }
        },
    )


@app.post("/checkout/pay", response_model=CheckoutResponse)
async def pay(
    req: CheckoutRequest,
    _: None = Depends(enforce_api_key),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Run one checkout attempt for a pending (or retryable) order."""

    try:
        return await checkout.pay(req)
    except PaymentError as exc:
        raise to_http_error(exc) from exc


@app.get("/checkout/{order_id}", response_model=CheckoutResponse)
def get_status(
    order_id: str,
    _: None = Depends(enforce_api_key),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Current payment status of one order as last recorded."""

    try:
        return checkout.status(order_id)
    except PaymentError as exc:
        raise to_http_error(exc) from exc


@app.post("/checkout/{order_id}/refresh", response_model=CheckoutResponse)
async def refresh_status(
    order_id: str,
    _: None = Depends(enforce_api_key),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Poll the gateway for the order's charge status and apply it."""

    try:
        return await checkout.refresh_status(order_id)
    except PaymentError as exc:
        raise to_http_error(exc) from exc


@app.get("/checkout/{order_id}/pix")
async def pix_qr_code(
    order_id: str,
    _: None = Depends(enforce_api_key),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """PIX QR code of the order: 200 when issued, 202 while still pending."""

    try:
        result = await checkout.pix_qr_code(order_id)
    except PaymentError as exc:
        raise to_http_error(exc) from exc
    return JSONResponse(
        status_code=200 if result.status == "found" else 202,
        content=result.model_dump(by_alias=True),
    )


@app.post("/checkout/installments", response_model=InstallmentResponse)
def installments(req: InstallmentRequest, _: None = Depends(enforce_api_key)):
    """Installment plans available for an amount and card brand."""

    options = simulate_installments(req.amount, req.card_brand)
    return InstallmentResponse(installments=[InstallmentOption(**option) for option in options])


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
