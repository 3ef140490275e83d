"""Assemble a gateway-shaped `ChargeRequest` from an order and its customer.

The order total is already in minor units and is used as-is; line items are
checked to add up to it exactly before anything is sent.
"""

from paybridge.common.errors import BuildInconsistency, ValidationError
from paybridge.common.logging import logger
from paybridge.common.money import MinorUnits, line_total, minor_units
from paybridge.services.checkout import documents
from paybridge.services.checkout.schemas import CustomerIn
from paybridge.services.gateway_adapter.schemas import ChargeRequest, GatewayCustomer, LineItem, PaymentMethod
from paybridge.services.orders.models import Order

CONTENT_ITEM_CODE = "CONTENT"
BRAZIL_COUNTRY_CODE = "55"


def split_phone(phone: str) -> tuple[str, str, str]:
    """Return `(country_code, area_code, number)` from a Brazilian phone in any format."""

    digits = documents.strip_non_digits(phone)
    if len(digits) in (12, 13) and digits.startswith(BRAZIL_COUNTRY_CODE):
        digits = digits[len(BRAZIL_COUNTRY_CODE):]
    if len(digits) not in (10, 11):
        raise ValidationError([f"phone must have 10 or 11 digits with area code, got {len(digits)}"])
    return BRAZIL_COUNTRY_CODE, digits[:2], digits[2:]


def build_customer(customer: CustomerIn) -> GatewayCustomer:
    """Validate the customer and map it to the gateway's customer shape."""

    classification = documents.classify(customer.legal_status, customer.document)
    errors = []
    if not customer.name.strip():
        errors.append("name is required")
    if "@" not in customer.email:
        errors.append("email is invalid")
    if not documents.validate(customer.document, classification.expected_digits):
        errors.append(
            f"{classification.document_type.upper()} must have {classification.expected_digits} digits, "
            f"got {len(documents.strip_non_digits(customer.document))}"
        )
    try:
        country_code, area_code, number = split_phone(customer.phone)
    except ValidationError as exc:
        errors.extend(exc.errors)
    if errors:
        raise ValidationError(errors)

    display_name = customer.name.strip()
    if documents.is_organization(customer.legal_status) and (customer.organization_name or "").strip():
        display_name = customer.organization_name.strip()

    return GatewayCustomer(
        name=display_name,
        email=customer.email.strip(),
        document=documents.strip_non_digits(customer.document),
        document_type=classification.document_type,
        customer_type=classification.customer_type,
        phone_country_code=country_code,
        phone_area_code=area_code,
        phone_number=number,
    )


class PaymentRequestBuilder:
    """Turns internal order data into a `ChargeRequest` whose items reconcile to the total."""

    def line_items(self, order: Order) -> list[LineItem]:
        items = [
            LineItem(
                description=item.description,
                amount_cents=minor_units(item.amount_cents),
                quantity=item.quantity,
                code=item.code,
            )
            for item in order.items
            if item.amount_cents > 0
        ]
        if order.content_cents and order.content_cents > 0:
            description = "Extra content"
            if order.content_word_count:
                description = f"Extra content ({order.content_word_count} words)"
            items.append(
                LineItem(
                    description=description,
                    amount_cents=minor_units(order.content_cents),
                    quantity=1,
                    code=CONTENT_ITEM_CODE,
                )
            )
        return items

    def build(
        self,
        order: Order,
        customer: CustomerIn,
        payment_method: PaymentMethod,
        installments: int = 1,
    ) -> ChargeRequest:
        gateway_customer = build_customer(customer)
        amount: MinorUnits = minor_units(order.total_cents)
        if amount < 1:
            raise ValidationError([f"order total must be positive, got {amount}"])

        items = self.line_items(order)
        items_total = sum(line_total(item.amount_cents, item.quantity) for item in items)
        if items_total != amount:
            logger.error(
                "charge_build_inconsistency order_id=%s total=%s items_total=%s",
                order.order_id,
                amount,
                items_total,
            )
            raise BuildInconsistency(expected=amount, actual=items_total)

        return ChargeRequest(
            order_id=order.order_id,
            amount_cents=amount,
            currency=order.currency,
            line_items=items,
            customer=gateway_customer,
            payment_method=payment_method,
            installments=installments if payment_method == PaymentMethod.CREDIT_CARD else 1,
        )
