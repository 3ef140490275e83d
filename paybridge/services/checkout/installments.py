"""Local card installment simulation."""

from dataclasses import dataclass

MIN_INSTALLMENT_CENTS = 500


@dataclass(frozen=True)
class InstallmentRule:
    max_installments: int
    min_installment_cents: int = MIN_INSTALLMENT_CENTS


BRAND_RULES: dict[str, InstallmentRule] = {
    "visa": InstallmentRule(12),
    "mastercard": InstallmentRule(12),
    "amex": InstallmentRule(12),
    "elo": InstallmentRule(6),
}
DEFAULT_RULE = InstallmentRule(6)


def simulate_installments(amount_cents: int, card_brand: str) -> list[dict[str, int]]:
    """List the installment plans available for `amount_cents` on `card_brand`.

    Installment values are floored, so `total` may be a few cents under the
    amount; the gateway charges the full amount regardless.
    """

    rule = BRAND_RULES.get(card_brand.strip().lower(), DEFAULT_RULE)
    options = []
    for count in range(1, rule.max_installments + 1):
        installment = amount_cents // count
        if installment < rule.min_installment_cents:
            break
        options.append({"installments": count, "amount": installment, "total": installment * count})
    return options
