"""Translate gateway rejections into user-facing messages."""

HTTP_STATUS_MESSAGES: dict[int, str] = {
    400: "The payment request is invalid. Please review your details.",
    401: "Payment configuration error. Please contact support.",
    403: "Payment not allowed. Please contact support.",
    404: "Payment resource not found.",
    412: "The payment could not be completed. Please try again.",
    422: "Invalid payment data. Please review your card details and try again.",
    429: "Too many attempts. Please wait a few minutes and try again.",
}

GATEWAY_ERROR_MESSAGES: dict[str, tuple[str, str]] = {
    "The request is invalid": ("invalid_request", "Your card details are incorrect. Please review them and try again."),
    "The number field is not a valid card number": ("invalid_card_number", "Invalid card number."),
    "At least one customer phone is required": ("missing_phone", "A customer phone number is required."),
    "card_declined": ("card_declined", "Card declined. Please check your details or use another card."),
    "insufficient_funds": ("insufficient_funds", "Insufficient funds on this card."),
    "expired_card": ("expired_card", "This card has expired. Please use a valid card."),
    "incorrect_cvc": ("incorrect_cvc", "Incorrect security code (CVV)."),
    "incorrect_number": ("incorrect_number", "Incorrect card number."),
    "invalid_expiry_date": ("invalid_expiry_date", "Invalid expiry date."),
    "issuer_unavailable": ("issuer_unavailable", "The card issuer is unavailable. Please try again later."),
    "authentication_failed": ("authentication_failed", "Card authentication failed. Please check your details."),
    "Transação negada": ("card_declined", "Card declined. Please check your details or use another card."),
    "Transação não autorizada": ("card_declined", "Card declined. Please check your details or use another card."),
    "Saldo insuficiente": ("insufficient_funds", "Insufficient funds on this card."),
    "Cartão vencido": ("expired_card", "This card has expired. Please use a valid card."),
}

DEFAULT_MESSAGE = "Your payment was not approved. Please try another payment method."


def translate_rejection(status_code: int | None, message: str | None) -> tuple[str, str]:
    """Return `(error_code, user_message)` for a gateway rejection."""

    if message:
        for known, translated in GATEWAY_ERROR_MESSAGES.items():
            if known.lower() in message.lower():
                return translated
    if status_code in HTTP_STATUS_MESSAGES:
        return f"http_{status_code}", HTTP_STATUS_MESSAGES[status_code]
    return "payment_declined", DEFAULT_MESSAGE
