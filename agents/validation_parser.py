# =============================================================================
# agents/validation_parser.py - Numbered Validation List Parser
# =============================================================================
# Some model answers come back as free text with numbered items:
#
#   1. Check that email contains '@'
#   2. Ensure created_at is not in the future
#
# This parser is deliberately narrow: it extracts "N. text" lines, sorts them
# by number, and reports how many non-empty lines it could not parse so the
# caller can decide whether the answer is usable.
# =============================================================================

from __future__ import annotations

import re

from pydantic import BaseModel, Field

_NUMBERED_LINE = re.compile(r"^\s*(\d+)\.\s*(.+?)\s*$")


class ValidationItem(BaseModel):
    number: int = Field(..., ge=0)
    text: str = Field(..., min_length=1)


class ParsedValidations(BaseModel):
    """Parsed items plus the count of lines that were dropped."""

    items: list[ValidationItem] = Field(default_factory=list)
    dropped_count: int = Field(default=0, ge=0)

    @property
    def texts(self) -> list[str]:
        return [item.text for item in self.items]


def parse_numbered_validations(text: str | None) -> ParsedValidations:
    """
    Parse "N. description" lines out of free text.

    Blank lines are ignored; every other line that does not match is counted
    in `dropped_count`. Items are returned sorted by their number (stable for
    duplicate numbers).

    Example:
        >>> parsed = parse_numbered_validations("2. b\\nnoise\\n1. a")
        >>> parsed.texts, parsed.dropped_count
        (['a', 'b'], 1)
    """
    if not text:
        return ParsedValidations()

    items: list[ValidationItem] = []
    dropped = 0
    for line in text.splitlines():
        if not line.strip():
            continue
        match = _NUMBERED_LINE.match(line)
        if match is None:
            dropped += 1
            continue
        items.append(ValidationItem(number=int(match.group(1)), text=match.group(2)))

    items.sort(key=lambda item: item.number)
    return ParsedValidations(items=items, dropped_count=dropped)
