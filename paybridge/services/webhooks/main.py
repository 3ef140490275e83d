"""HTTP surface receiving gateway webhook callbacks.

Any structurally valid delivery is answered with 200, including ones whose
processing failed internally, so the gateway does not storm us with retries.
"""

import json
import secrets

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import ValidationError as SchemaValidationError

from paybridge.common.config import settings
from paybridge.common.db import SessionLocal
from paybridge.common.logging import configure_logging, logger
from paybridge.common.metrics import metrics_response, webhook_events_total
from paybridge.common.middleware import add_request_middleware
from paybridge.common.startup import log_startup_config
from paybridge.common.tracing import instrument_app, setup_tracing
from paybridge.services.orders.store import OrderPaymentStore
from paybridge.services.webhooks.schemas import WebhookEvent, WebhookPayload
from paybridge.services.webhooks.service import WebhookReconciler

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "DATABASE_URL", "WEBHOOK_USERNAME", "WEBHOOK_PASSWORD"],
)
reconciler = WebhookReconciler(OrderPaymentStore(SessionLocal), SessionLocal, service_name=settings.service_name)

app = FastAPI(title="PayBridge Webhooks")
instrument_app(app)
add_request_middleware(app)
basic_auth = HTTPBasic(auto_error=False)


def get_reconciler() -> WebhookReconciler:
    return reconciler


def enforce_webhook_auth(credentials: HTTPBasicCredentials | None = Depends(basic_auth)) -> None:
    """Check Basic credentials when the gateway is configured to send them."""

    if not settings.webhook_username:
        return
    valid = credentials is not None and (
        secrets.compare_digest(credentials.username.encode(), settings.webhook_username.encode())
        and secrets.compare_digest(credentials.password.encode(), settings.webhook_password.encode())
    )
    if not valid:
        raise HTTPException(status_code=401, detail="invalid webhook credentials")


@app.post("/webhooks/payment-gateway")
async def receive_webhook(
    request: Request,
    _: None = Depends(enforce_webhook_auth),
    webhooks: WebhookReconciler = Depends(get_reconciler),
):
    """Validate shape, then reconcile; 400 only for malformed deliveries."""

    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        webhook_events_total.labels(service=settings.service_name, event_type="unknown", outcome="invalid").inc()
        raise HTTPException(status_code=400, detail="body must be a JSON object") from exc
    if not isinstance(raw, dict):
        webhook_events_total.labels(service=settings.service_name, event_type="unknown", outcome="invalid").inc()
        raise HTTPException(status_code=400, detail="body must be a JSON object")
    try:
        payload = WebhookPayload.model_validate(raw)
    except SchemaValidationError as exc:
        logger.warning("webhook_payload_invalid errors=%s", exc.errors(include_url=False))
        webhook_events_total.labels(service=settings.service_name, event_type="unknown", outcome="invalid").inc()
        raise HTTPException(status_code=400, detail="payload must contain type and data.id") from exc

    outcome = webhooks.reconcile(WebhookEvent.from_payload(payload, raw))
    return {"received": True, "outcome": outcome.value}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
