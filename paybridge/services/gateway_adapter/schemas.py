"""Gateway-facing request/response shapes.

`ChargeRequest` is what the request builder produces and the gateway client
consumes; `GatewayChargeResult` is what the client hands back. Amounts are
always minor units.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from paybridge.common.state_machine import PaymentStatus


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    PIX = "pix"


class LineItem(BaseModel):
    """One gateway-visible item; `amount_cents` is per unit."""

    model_config = ConfigDict(frozen=True)

    description: str = Field(min_length=1)
    amount_cents: int = Field(gt=0)
    quantity: int = Field(ge=1)
    code: str = Field(min_length=1)


class GatewayCustomer(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    email: str
    document: str
    document_type: str
    customer_type: str
    phone_country_code: str = "55"
    phone_area_code: str
    phone_number: str


class ChargeRequest(BaseModel):
    """Gateway-shaped charge for one order (sum of line items == amount)."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    amount_cents: int = Field(ge=1)
    currency: str = "BRL"
    line_items: list[LineItem]
    customer: GatewayCustomer
    payment_method: PaymentMethod
    installments: int = Field(default=1, ge=1)

    def items_total(self) -> int:
        return sum(item.amount_cents * item.quantity for item in self.line_items)


class BillingAddress(BaseModel):
    line_1: str = Field(min_length=1)
    line_2: str | None = None
    zip_code: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    country: str = Field(default="BR", min_length=2, max_length=2)


class CardDetails(BaseModel):
    number: SecretStr
    holder_name: str = Field(min_length=1)
    exp_month: int = Field(ge=1, le=12)
    exp_year: int = Field(ge=2000)
    cvv: SecretStr


class CardToken(BaseModel):
    """Opaque gateway token plus the billing address the charge must carry."""

    token_id: str
    billing_address: BillingAddress
    brand: str | None = None
    last_four_digits: str | None = None


class GatewayChargeResult(BaseModel):
    """Immutable outcome of one charge creation (or status poll)."""

    model_config = ConfigDict(frozen=True)

    gateway_order_id: str
    gateway_charge_id: str
    status: PaymentStatus
    gateway_status: str
    failure_reason: str | None = None
    raw_response: dict[str, Any] = Field(default_factory=dict)


class PixChargeResult(GatewayChargeResult):
    qr_code: str | None = None
    qr_code_url: str | None = None
    qr_code_expires_at: str | None = None
