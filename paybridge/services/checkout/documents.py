"""Customer document classification (CPF for individuals, CNPJ for organizations)."""

import re
from dataclasses import dataclass

CPF_DIGITS = 11
CNPJ_DIGITS = 14

ORGANIZATION_STATUSES = {"organization", "organisation", "business", "company", "legal_entity", "pj"}

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class DocumentClassification:
    document_type: str
    customer_type: str
    expected_digits: int


INDIVIDUAL = DocumentClassification(document_type="cpf", customer_type="individual", expected_digits=CPF_DIGITS)
ORGANIZATION = DocumentClassification(document_type="cnpj", customer_type="company", expected_digits=CNPJ_DIGITS)


def strip_non_digits(value: str | None) -> str:
    return _NON_DIGITS.sub("", value or "")


def is_organization(legal_status: str | None) -> bool:
    return (legal_status or "").strip().lower() in ORGANIZATION_STATUSES


def classify(legal_status: str | None, document: str | None = None) -> DocumentClassification:
    """Map a declared legal status to the document kind the gateway expects.

    Total: unknown or missing statuses fall back to an individual/CPF
    classification. The document itself never changes the kind; pass it to
    `validate` to check its digit count.
    """

    del document
    return ORGANIZATION if is_organization(legal_status) else INDIVIDUAL


def validate(document: str | None, expected_digits: int) -> bool:
    """True when the document has exactly `expected_digits` digits once punctuation is removed."""

    return len(strip_non_digits(document)) == expected_digits
