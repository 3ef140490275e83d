"""API request/response schemas for checkout endpoints.

Bodies are accepted in camelCase (UI) or snake_case and answered in camelCase.
"""

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic.alias_generators import to_camel

from paybridge.services.gateway_adapter.schemas import PaymentMethod


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CustomerIn(CamelModel):
    """Customer as declared at checkout; `document` and `phone` may carry punctuation."""

    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    document: str
    legal_status: str | None = None
    organization_name: str | None = None
    phone: str


class BillingAddressIn(CamelModel):
    line_1: str
    line_2: str | None = None
    zip_code: str
    city: str
    state: str
    country: str = "BR"


class CardIn(CamelModel):
    number: SecretStr
    holder_name: str
    exp_month: int = Field(ge=1, le=12)
    exp_year: int
    cvv: SecretStr
    installments: int = Field(default=1, ge=1, le=12)
    billing_address: BillingAddressIn | None = None

    @field_validator("exp_year")
    @classmethod
    def expand_two_digit_year(cls, value: int) -> int:
        return value + 2000 if value < 100 else value


class CheckoutRequest(CamelModel):
    """Payload accepted by `POST /checkout/pay`."""

    order_id: str = Field(min_length=1)
    payment_method: PaymentMethod
    customer: CustomerIn
    card: CardIn | None = None


class CheckoutResponse(CamelModel):
    order_id: str
    payment_status: str
    payment_id: str | None = None
    qr_code: str | None = None
    qr_code_url: str | None = None
    qr_code_expires_at: str | None = None


class InstallmentRequest(CamelModel):
    amount: int = Field(ge=100, description="Order amount in minor units")
    card_brand: str = Field(min_length=3)


class InstallmentOption(CamelModel):
    installments: int
    amount: int
    total: int


class InstallmentResponse(CamelModel):
    installments: list[InstallmentOption]


class PixQrCodeResponse(CamelModel):
    status: str
    order_status: str
    qr_code: str | None = None
    qr_code_url: str | None = None
    expires_at: str | None = None
