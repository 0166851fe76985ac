"""
Aggregates over rows read from the data backend.

Rows are the dicts the backend returns for one collection. Column names
differ between sheets ("Item" or "item", "Price/kg" or "price"), so every
lookup goes through a short alias list.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

ITEM_KEYS = ("Item", "item")
QTY_KEYS = ("Quantity", "quantity", "Qty", "qty")
PRICE_KEYS = ("Price/kg", "Price", "price", "pricePerKg")
STATUS_KEYS = ("Status", "status")
PERSON_KEYS = ("Person", "person")
TIMESTAMP_KEYS = ("Timestamp", "timestamp")

OWED_MARKERS = ("owe", "debt")
PAID_MARKERS = ("paid", "complete")

Rows = List[Dict[str, Any]]


def _first(row: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = row.get(key)
        if value is not None and value != "":
            return value
    return None


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _field(row: Mapping[str, Any], name: str) -> Any:
    if name in row:
        return row[name]
    wanted = name.lower()
    for key, value in row.items():
        if str(key).lower() == wanted:
            return value
    return None


def _matches(value: Any, wanted: Any) -> bool:
    if isinstance(wanted, str):
        return value is not None and wanted.strip().lower() in str(value).lower()
    if isinstance(wanted, (int, float)) and not isinstance(wanted, bool):
        return value is not None and _number(value) == float(wanted)
    return value == wanted


def row_value(row: Mapping[str, Any]) -> float:
    """Quantity times price for one row, 0 when either is missing."""
    return _number(_first(row, QTY_KEYS)) * _number(_first(row, PRICE_KEYS))


def find_rows(rows: Rows, criteria: Mapping[str, Any]) -> Rows:
    """
    Rows matching every criterion.

    Text criteria match case-insensitive substrings, numbers compare by
    value, anything else compares for equality. Column names are matched
    case-insensitively.
    """
    return [
        row for row in rows
        if all(_matches(_field(row, name), wanted) for name, wanted in criteria.items())
    ]


def summarize_collection(rows: Rows) -> Dict[str, Any]:
    """Totals, averages and breakdowns for one collection."""
    total_value = 0.0
    prices: List[float] = []
    status_breakdown: Dict[str, int] = {}
    item_breakdown: Dict[str, Dict[str, float]] = {}
    person_breakdown: Dict[str, Dict[str, float]] = {}
    earliest: Optional[datetime] = None
    latest: Optional[datetime] = None

    for row in rows:
        qty = _number(_first(row, QTY_KEYS))
        price = _number(_first(row, PRICE_KEYS))
        value = qty * price
        total_value += value
        if price > 0:
            prices.append(price)

        status = str(_first(row, STATUS_KEYS) or "unknown")
        status_breakdown[status] = status_breakdown.get(status, 0) + 1

        item = str(_first(row, ITEM_KEYS) or "unknown")
        entry = item_breakdown.setdefault(item, {"count": 0, "totalQty": 0.0, "totalValue": 0.0})
        entry["count"] += 1
        entry["totalQty"] += qty
        entry["totalValue"] = round(entry["totalValue"] + value, 2)

        person = str(_first(row, PERSON_KEYS) or "unknown")
        entry = person_breakdown.setdefault(person, {"count": 0, "totalValue": 0.0})
        entry["count"] += 1
        entry["totalValue"] = round(entry["totalValue"] + value, 2)

        when = _timestamp(_first(row, TIMESTAMP_KEYS))
        if when is not None:
            earliest = when if earliest is None or when < earliest else earliest
            latest = when if latest is None or when > latest else latest

    return {
        "totalRows": len(rows),
        "totalValue": round(total_value, 2),
        "averagePrice": round(sum(prices) / len(prices), 2) if prices else 0.0,
        "statusBreakdown": status_breakdown,
        "itemBreakdown": item_breakdown,
        "personBreakdown": person_breakdown,
        "dateRange": {
            "earliest": earliest.isoformat() if earliest else None,
            "latest": latest.isoformat() if latest else None,
        },
    }


def summarize(data: Mapping[str, Rows]) -> Dict[str, Any]:
    """Per-collection summaries for a whole document."""
    return {
        "totalSheets": len(data),
        "sheets": {name: summarize_collection(rows) for name, rows in data.items()},
    }


def person_totals(data: Mapping[str, Rows], person: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
    """
    Owed, paid and pending totals per person across every collection.

    A status containing "owe" or "debt" counts as owed, "paid" or
    "complete" as paid, anything else as pending.
    """
    wanted = person.strip().lower() if person and person.strip() else None
    totals: Dict[str, Dict[str, Any]] = {}

    for collection, rows in data.items():
        for row in rows:
            name = str(_first(row, PERSON_KEYS) or "Unknown")
            if wanted is not None and name.lower() != wanted:
                continue

            qty = _number(_first(row, QTY_KEYS))
            price = _number(_first(row, PRICE_KEYS))
            status = str(_first(row, STATUS_KEYS) or "pending").lower()
            value = qty * price

            entry = totals.setdefault(name, {
                "totalOwed": 0.0, "totalPaid": 0.0, "totalPending": 0.0, "itemCount": 0, "items": [],
            })
            entry["itemCount"] += 1
            entry["items"].append({
                "item": _first(row, ITEM_KEYS),
                "qty": qty,
                "price": price,
                "totalValue": round(value, 2),
                "status": status,
                "timestamp": _first(row, TIMESTAMP_KEYS),
                "sheet": collection,
            })

            if any(marker in status for marker in OWED_MARKERS):
                bucket = "totalOwed"
            elif any(marker in status for marker in PAID_MARKERS):
                bucket = "totalPaid"
            else:
                bucket = "totalPending"
            entry[bucket] = round(entry[bucket] + value, 2)

    return totals
