"""
Deterministic parser for the fixed voice grammar.

    <trigger phrase> <tab> <item> <qty> at <price> <status>

The trigger phrase is configured and matched case-insensitively. The
parser is a pure function of its input and safe to share across threads.
"""

import math
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from errors import FormatError
from models import InventoryUpdate
from parsers.outcome import Outcome

NUMBER_WORDS = {
    "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14, "fifteen": 15,
    "sixteen": 16, "seventeen": 17, "eighteen": 18, "nineteen": 19, "twenty": 20,
}

# tab, item, qty, "at", price; status may be absent and is reported as invalid
MIN_TOKENS_AFTER_TRIGGER = 5
CONNECTOR = "at"

INVALID_VALUES = "Invalid values - check tab, item, quantity (must be > 0), and price (must be > 0)"


def normalize(text: str) -> List[str]:
    """Lower-case and split on any whitespace."""
    return text.lower().split()


def parse_number(token: Optional[str]) -> Optional[float]:
    """Parse a decimal token; NaN and infinities are rejected."""
    if not token:
        return None
    try:
        value = float(token)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_quantity(token: Optional[str]) -> Optional[float]:
    """Number words zero..twenty first, then decimal parsing."""
    if token in NUMBER_WORDS:
        return float(NUMBER_WORDS[token])
    return parse_number(token)


class LexicalParser:
    """Matches the fixed grammar after a configured trigger phrase."""

    def __init__(self, trigger_phrase: str):
        self.trigger_tokens = normalize(trigger_phrase)
        if not self.trigger_tokens:
            raise ValueError("trigger phrase must contain at least one word")

    @property
    def expected_format(self) -> str:
        return f"{' '.join(self.trigger_tokens)} [tab] [item] [quantity] at [price] [status]"

    def _bad_format(self) -> FormatError:
        return FormatError(
            f"Bad format - use: {self.expected_format}",
            {"expected_format": self.expected_format},
        )

    def parse(self, transcript: Optional[str]) -> InventoryUpdate:
        """
        Parse a transcript into an InventoryUpdate.

        Raises:
            FormatError: if the transcript does not match the grammar
        """
        if not transcript or not isinstance(transcript, str) or not transcript.strip():
            raise FormatError("Invalid command input", {"expected_format": self.expected_format})

        words = normalize(transcript)
        prefix_len = len(self.trigger_tokens)

        if len(words) - prefix_len < MIN_TOKENS_AFTER_TRIGGER:
            raise self._bad_format()

        if words[:prefix_len] != self.trigger_tokens:
            raise self._bad_format()

        rest = words[prefix_len:]
        tab, item = rest[0], rest[1]
        qty = parse_quantity(rest[2])
        connector = rest[3]
        price = parse_number(rest[4])
        status = " ".join(rest[5:])

        if (connector != CONNECTOR or qty is None or qty <= 0
                or price is None or price <= 0 or not tab or not item or not status):
            raise FormatError(INVALID_VALUES, {"expected_format": self.expected_format})

        try:
            return InventoryUpdate(tab=tab, item=item, qty=qty, price=price, status=status)
        except PydanticValidationError:
            raise FormatError(INVALID_VALUES, {"expected_format": self.expected_format})

    def try_parse(self, transcript: Optional[str]) -> Outcome:
        """Outcome-returning variant used by the fallback chain."""
        try:
            return Outcome.success("lexical", self.parse(transcript))
        except FormatError as e:
            return Outcome.failure("lexical", e)
