"""
Data models for parsed commands.

A ParsedCommand is one of three tagged variants: a structured inventory
update, a generic row write, or a parse failure with a readable reason.
"""

import math
from enum import Enum
from typing import Any, List, Literal, Union

from pydantic import BaseModel, Field, field_validator


class Intent(str, Enum):
    """What a free-form command wants to do with the data backend."""
    READ = "READ"
    WRITE = "WRITE"


class InventoryUpdate(BaseModel):
    """Structured inventory update: `<tab> <item> <qty> at <price> <status>`."""
    kind: Literal["inventory"] = "inventory"
    tab: str
    item: str
    qty: float
    price: float
    status: str

    @field_validator("tab", "item", "status")
    @classmethod
    def _normalize_text(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("must be a non-empty string")
        return value

    @field_validator("qty", "price")
    @classmethod
    def _positive_finite(cls, value: float) -> float:
        if not math.isfinite(value) or value <= 0:
            raise ValueError("must be a finite number greater than 0")
        return value

    def row_values(self) -> List[Any]:
        """Values appended to the tab, in column order."""
        return [self.item, self.qty, self.price, self.status]


class RowWrite(BaseModel):
    """Generic row write extracted from a free-form command."""
    kind: Literal["row"] = "row"
    sheet_name: str = Field(..., min_length=1)
    data: List[Any] = Field(default_factory=list)


class ParseFailure(BaseModel):
    """Classification or parse failure with a human-readable reason."""
    kind: Literal["failure"] = "failure"
    reason: str


ParsedCommand = Union[InventoryUpdate, RowWrite, ParseFailure]
