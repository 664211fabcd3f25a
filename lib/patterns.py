# =============================================================================
# lib/patterns.py - Value Pattern Catalogue
# =============================================================================
# Regular expressions used to validate text subtypes (email, Brazilian
# documents, phones, postal codes) and to describe sampled values.
#
# Usage:
#   from lib.patterns import matches_classification
#   matches_classification("a@b.com", ColumnClassification.EMAIL)  # True
# =============================================================================

import re

from core.models.metadata import ColumnClassification


PATTERNS: dict[str, re.Pattern[str]] = {
    "email": re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"),
    "cpf": re.compile(r"^\d{3}\.\d{3}\.\d{3}-\d{2}$|^\d{11}$"),
    "cnpj": re.compile(r"^\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}$|^\d{14}$"),
    "phone_br": re.compile(r"^\(\d{2}\)\s?\d{4,5}-?\d{4}$|^\d{10,11}$"),
    "phone_intl": re.compile(r"^\+\d{1,3}[\s-]?\d{6,14}$"),
    "cep": re.compile(r"^\d{5}-?\d{3}$"),
    "url": re.compile(r"^https?://[^\s]+$"),
    "uuid": re.compile(
        r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
    ),
    "date_iso": re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    "time": re.compile(r"^\d{1,2}:\d{2}(:\d{2})?$"),
}

# Classifications whose values must match one of these patterns
CLASSIFICATION_PATTERNS: dict[ColumnClassification, tuple[str, ...]] = {
    ColumnClassification.EMAIL: ("email",),
    ColumnClassification.DOCUMENT: ("cpf", "cnpj"),
    ColumnClassification.PHONE: ("phone_br", "phone_intl"),
}


def matches_classification(value: object, classification: ColumnClassification) -> bool:
    """
    Check a value against the patterns registered for a classification.

    Classifications without patterns accept every value.
    """
    names = CLASSIFICATION_PATTERNS.get(classification)
    if not names:
        return True
    text = str(value).strip()
    return any(PATTERNS[name].match(text) for name in names)


def detect_pattern(value: object) -> str | None:
    """Return the name of the first pattern the value matches, if any."""
    text = str(value).strip()
    for name, pattern in PATTERNS.items():
        if pattern.match(text):
            return name
    return None
