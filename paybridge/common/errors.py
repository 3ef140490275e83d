"""Error taxonomy shared by the checkout and webhook services."""


class PaymentError(Exception):
    """Base class for every payment-domain error."""


class ValidationError(PaymentError):
    """Customer, card or address input rejected before any gateway call."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class BuildInconsistency(PaymentError):
    """Line items do not reconcile to the charged amount (upstream bug, never retried)."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"line items sum to {actual} but order total is {expected}")
        self.expected = expected
        self.actual = actual


class GatewayError(PaymentError):
    """Base class for failures talking to the payment gateway."""

    def __init__(self, message: str, status_code: int | None = None, operation: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.operation = operation


class GatewayRejected(GatewayError):
    """Gateway refused the request (4xx) or declined the charge."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        operation: str = "",
        error_code: str | None = None,
        user_message: str = "",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, operation=operation)
        self.error_code = error_code
        self.user_message = user_message or message
        self.details = details or {}


class GatewayUnavailable(GatewayError):
    """Gateway unreachable or failing (network, timeout, 5xx)."""


class ChargeOutcomeUnknown(GatewayUnavailable):
    """A charge request was sent but no definitive answer came back."""


class ReconciliationMiss(PaymentError):
    """Webhook references a charge/order this environment does not know."""

    def __init__(self, reference_id: str) -> None:
        super().__init__(f"no order matches {reference_id!r}")
        self.reference_id = reference_id


class InvalidTransition(ValueError):
    """Status change would move an order backwards in the status lattice."""

    def __init__(self, current: str, new: str) -> None:
        super().__init__(f"Invalid transition: {current} -> {new}")
        self.current = current
        self.new = new


class ConcurrentUpdateError(RuntimeError):
    """Optimistic status update kept losing races."""


class OrderNotFound(PaymentError):
    pass


class OrderNotPayable(PaymentError):
    pass


class CheckoutInProgress(PaymentError):
    pass


class ConfigurationError(RuntimeError):
    pass
