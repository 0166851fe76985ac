"""
Field-level validation for inventory updates.

Every rule is checked and every violation is reported, so a caller can
show all defects in one response. An optional AI correction pass runs on
records that are already valid and can never make them less valid.
"""

import math
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from errors import OutOfRangeError, ValidationError
from logger import get_logger
from models import InventoryUpdate
from parsers.ai_parser import AIParser

logger = get_logger(__name__)

FIELDS = ("tab", "item", "qty", "price", "status")


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


@dataclass
class ValidationResult:
    """Normalized record on success, ordered reasons on failure."""
    record: Optional[InventoryUpdate] = None
    reasons: List[str] = field(default_factory=list)
    out_of_range: bool = False

    @property
    def ok(self) -> bool:
        return self.record is not None and not self.reasons

    def raise_for_errors(self) -> InventoryUpdate:
        if self.ok:
            return self.record
        if self.out_of_range:
            raise OutOfRangeError(self.reasons)
        raise ValidationError(self.reasons)


class CommandValidator:
    """Presence, quantity, price range and status allow-list rules."""

    def __init__(self, price_min: float, price_max: float,
                 status_allowlist: Sequence[str] = (), ai_parser: Optional[AIParser] = None):
        self.price_min = price_min
        self.price_max = price_max
        self.status_allowlist = [s.strip().lower() for s in status_allowlist if s.strip()]
        self.ai_parser = ai_parser

    def check(self, candidate: Mapping[str, Any]) -> ValidationResult:
        reasons: List[str] = []
        out_of_range = False

        # 1. presence
        for name in FIELDS:
            if not _is_present(candidate.get(name)):
                reasons.append(f"Missing required field: {name}")

        # 2. quantity
        qty = None
        if _is_present(candidate.get("qty")):
            qty = _to_number(candidate.get("qty"))
            if qty is None:
                reasons.append("Quantity must be a number")
            elif qty <= 0:
                reasons.append("Quantity must be greater than 0")

        # 3. price
        price = None
        if _is_present(candidate.get("price")):
            price = _to_number(candidate.get("price"))
            if price is None:
                reasons.append("Price must be a number")
            elif price <= 0:
                reasons.append("Price must be greater than 0")
            elif not (self.price_min <= price <= self.price_max):
                reasons.append(
                    f"Price {price:g} is outside the plausible range [{self.price_min:g}, {self.price_max:g}]"
                )
                out_of_range = True

        # 4. status
        status = candidate.get("status")
        if _is_present(status):
            if not isinstance(status, str):
                reasons.append("Status must be text")
            elif self.status_allowlist and status.strip().lower() not in self.status_allowlist:
                reasons.append(
                    f"Status '{status.strip().lower()}' is not one of: {', '.join(self.status_allowlist)}"
                )

        for name in ("tab", "item"):
            value = candidate.get(name)
            if _is_present(value) and not isinstance(value, str):
                reasons.append(f"Field '{name}' must be text")

        if reasons:
            return ValidationResult(reasons=reasons, out_of_range=out_of_range)

        record = InventoryUpdate(
            tab=candidate["tab"], item=candidate["item"],
            qty=qty, price=price, status=status,
        )
        return ValidationResult(record=record)

    def validate(self, candidate: Mapping[str, Any]) -> InventoryUpdate:
        """
        Validate and normalize a candidate record.

        Raises:
            OutOfRangeError: if the price is outside the plausible range
            ValidationError: for every other combination of violations
        """
        result = self.check(candidate)
        if not result.ok:
            logger.info("Validation failed", reasons=result.reasons)
        return result.raise_for_errors()

    async def validate_and_correct(self, candidate: Mapping[str, Any]) -> Tuple[InventoryUpdate, List[str]]:
        """Validate, then run the AI correction pass if one is configured."""
        record = self.validate(candidate)
        if self.ai_parser is None:
            return record, []

        corrected, warnings = await self.ai_parser.validate_and_correct(record)
        if corrected == record:
            return record, warnings

        recheck = self.check(corrected.model_dump())
        if not recheck.ok:
            logger.warning("Correction rejected by validation rules", reasons=recheck.reasons)
            return record, warnings + [f"Correction ignored: {r}" for r in recheck.reasons]
        return recheck.record, warnings
