"""
Unit tests for analytics.py - row search, summaries and per-person totals.
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from analytics import find_rows, person_totals, row_value, summarize, summarize_collection
from tests.test_logger import test_logger

ROWS = [
    {"Timestamp": "2024-03-02T10:00:00Z", "Item": "apples", "Quantity": 2, "Price/kg": 3,
     "Status": "paid", "Person": "Ana"},
    {"Timestamp": "2024-03-01T09:30:00Z", "Item": "apples", "Quantity": "1", "Price/kg": "3",
     "Status": "owes", "Person": "Ben"},
    {"item": "pears", "qty": 4, "price": 2.5, "status": "pending"},
]


class TestFindRows:

    def setup_method(self):
        test_logger.log_section("TESTING: analytics.py - find_rows")

    def test_text_criteria_match_substrings(self):
        """Test text criteria match case-insensitive substrings."""
        with test_logger.check("analytics.py", "find_rows", "substring"):
            assert [r["Person"] for r in find_rows(ROWS, {"item": "APP"})] == ["Ana", "Ben"]
            assert find_rows(ROWS, {"status": "owe"}) == [ROWS[1]]

    def test_numeric_criteria_compare_by_value(self):
        """Test numeric criteria compare numbers, not text."""
        with test_logger.check("analytics.py", "find_rows", "numeric"):
            assert find_rows(ROWS, {"Quantity": 1}) == [ROWS[1]]

    def test_every_criterion_must_match(self):
        """Test rows must match every criterion."""
        with test_logger.check("analytics.py", "find_rows", "all_criteria"):
            assert find_rows(ROWS, {"item": "apples", "person": "ana"}) == [ROWS[0]]
            assert find_rows(ROWS, {"item": "apples", "person": "zoe"}) == []
            assert find_rows(ROWS, {}) == ROWS


class TestSummaries:

    def setup_method(self):
        test_logger.log_section("TESTING: analytics.py - summaries")

    def test_row_value_handles_aliases_and_text(self):
        """Test row value reads aliased columns and numeric text."""
        with test_logger.check("analytics.py", "row_value", "aliases"):
            assert row_value(ROWS[1]) == 3.0
            assert row_value(ROWS[2]) == 10.0
            assert row_value({"Item": "x"}) == 0.0

    def test_summarize_collection(self):
        """Test totals, breakdowns and date range for one sheet."""
        with test_logger.check("analytics.py", "summarize_collection", "breakdowns"):
            summary = summarize_collection(ROWS)
            assert summary["totalRows"] == 3
            assert summary["totalValue"] == 19.0
            assert summary["averagePrice"] == pytest.approx(2.83, abs=0.01)
            assert summary["statusBreakdown"] == {"paid": 1, "owes": 1, "pending": 1}
            assert summary["itemBreakdown"]["apples"] == {"count": 2, "totalQty": 3.0, "totalValue": 9.0}
            assert summary["personBreakdown"]["unknown"]["count"] == 1
            assert summary["dateRange"]["earliest"].startswith("2024-03-01T09:30")
            assert summary["dateRange"]["latest"].startswith("2024-03-02T10:00")

    def test_empty_collection(self):
        """Test an empty sheet summarizes to zeros."""
        with test_logger.check("analytics.py", "summarize_collection", "empty"):
            summary = summarize_collection([])
            assert summary["totalRows"] == 0
            assert summary["averagePrice"] == 0.0
            assert summary["dateRange"] == {"earliest": None, "latest": None}

    def test_summarize_document(self):
        """Test a document summary has one entry per sheet."""
        with test_logger.check("analytics.py", "summarize", "document"):
            summary = summarize({"groceries": ROWS, "hardware": []})
            assert summary["totalSheets"] == 2
            assert set(summary["sheets"]) == {"groceries", "hardware"}


class TestPersonTotals:

    def setup_method(self):
        test_logger.log_section("TESTING: analytics.py - person_totals")

    def test_totals_by_status(self):
        """Test owed, paid and pending buckets per person."""
        with test_logger.check("analytics.py", "person_totals", "buckets"):
            totals = person_totals({"groceries": ROWS})
            assert totals["Ana"]["totalPaid"] == 6.0
            assert totals["Ben"]["totalOwed"] == 3.0
            assert totals["Unknown"]["totalPending"] == 10.0
            assert totals["Ana"]["items"][0]["sheet"] == "groceries"

    def test_single_person_filter(self):
        """Test filtering totals to one person ignores case."""
        with test_logger.check("analytics.py", "person_totals", "filter"):
            totals = person_totals({"groceries": ROWS, "extra": [dict(ROWS[1], Item="plums")]}, "ben")
            assert list(totals) == ["Ben"]
            assert totals["Ben"]["itemCount"] == 2
            assert totals["Ben"]["totalOwed"] == 6.0
