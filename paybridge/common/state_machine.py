"""Order payment status lattice enforced by the order store.

Statuses only move forward. `failed` and `canceled` may be re-opened to
`pending` for a fresh checkout attempt; `refunded` absorbs everything.
"""

from enum import Enum

from paybridge.common.errors import InvalidTransition


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PENDING_PAYMENT = "pending_payment"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUNDED = "refunded"


ALLOWED_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.PENDING_PAYMENT,
        PaymentStatus.PROCESSING,
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELED,
    },
    PaymentStatus.PENDING_PAYMENT: {
        PaymentStatus.PROCESSING,
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELED,
    },
    PaymentStatus.PROCESSING: {PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.CANCELED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: {PaymentStatus.PENDING},
    PaymentStatus.CANCELED: {PaymentStatus.PENDING},
    PaymentStatus.REFUNDED: set(),
}

# Statuses a checkout may start from (after re-opening, where needed).
PAYABLE_STATUSES = {PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.CANCELED}

# Statuses that still wait on the gateway for a final answer.
UNSETTLED_STATUSES = {PaymentStatus.PENDING_PAYMENT, PaymentStatus.PROCESSING}


def is_noop(current: str, new: str) -> bool:
    """Re-applying the current status changes nothing."""

    return PaymentStatus(current) == PaymentStatus(new)


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the status lattice."""

    if PaymentStatus(new) not in ALLOWED_TRANSITIONS.get(PaymentStatus(current), set()):
        raise InvalidTransition(current, new)
