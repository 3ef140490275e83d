"""Webhook payload schemas and the closed set of handled event types."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str

    @field_validator("id")
    @classmethod
    def strip_padding(cls, value: str) -> str:
        # The gateway has been seen padding ids with whitespace.
        value = value.strip()
        if not value:
            raise ValueError("data.id must not be blank")
        return value


class WebhookPayload(BaseModel):
    """Structural shape every gateway callback must have: `{type, data: {id}}`."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    type: str
    data: WebhookData

    @field_validator("type")
    @classmethod
    def type_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("type must not be blank")
        return value

    @field_validator("id")
    @classmethod
    def normalize_event_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class WebhookEventType(str, Enum):
    CHARGE_PAID = "charge.paid"
    ORDER_PAID = "order.paid"
    CHARGE_PAYMENT_FAILED = "charge.payment_failed"
    CHARGE_REFUNDED = "charge.refunded"
    CHARGE_CANCELED = "charge.canceled"

    @classmethod
    def parse(cls, raw: str) -> "WebhookEventType | None":
        """None for every event type this service deliberately ignores."""

        try:
            return cls(raw.strip().lower())
        except ValueError:
            return None

    @property
    def matches_gateway_order(self) -> bool:
        return self is WebhookEventType.ORDER_PAID


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    IGNORED = "ignored"
    MISS = "miss"
    REJECTED_TRANSITION = "rejected_transition"
    DUPLICATE = "duplicate"
    ERROR = "error"


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def order_hints(raw: dict[str, Any]) -> tuple[str | None, str | None]:
    """Return `(order_code, gateway_order_id)` carried by a charge payload, if any.

    Our order id travels as the gateway order `code` and in `metadata.order_id`.
    """

    data = raw.get("data") if isinstance(raw, dict) else None
    if not isinstance(data, dict):
        return None, None
    order = data.get("order") if isinstance(data.get("order"), dict) else {}
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    if not metadata and isinstance(order.get("metadata"), dict):
        metadata = order["metadata"]
    order_code = _clean(order.get("code")) or _clean(metadata.get("order_id")) or _clean(data.get("code"))
    return order_code, _clean(order.get("id"))


@dataclass(frozen=True)
class WebhookEvent:
    """One normalized gateway callback; `reference_id` is a charge id or gateway order id."""

    event_type: str
    reference_id: str
    event_id: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)
    order_code: str | None = None
    gateway_order_id: str | None = None

    @classmethod
    def from_payload(cls, payload: WebhookPayload, raw: dict[str, Any]) -> "WebhookEvent":
        return cls.from_raw(payload.type, payload.data.id, payload.id, raw)

    @classmethod
    def from_raw(
        cls, event_type: str, reference_id: str, event_id: str | None, raw: dict[str, Any]
    ) -> "WebhookEvent":
        order_code, gateway_order_id = order_hints(raw)
        return cls(
            event_type=event_type,
            reference_id=reference_id,
            event_id=event_id,
            raw_payload=raw,
            order_code=order_code,
            gateway_order_id=gateway_order_id,
        )
