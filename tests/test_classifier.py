"""
Unit tests for classifier.py - READ/WRITE intent.
"""

import asyncio

import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from classifier import IntentClassifier
from errors import AmbiguousIntentError, GatewayError
from models import Intent
from tests.fakes import FakeOracle
from tests.test_logger import test_logger


class TestIntentClassifier:

    def setup_method(self):
        test_logger.log_section("TESTING: classifier.py - IntentClassifier")

    @pytest.mark.parametrize("reply, expected", [
        ("READ", Intent.READ),
        ("write", Intent.WRITE),
        ("  Write \n", Intent.WRITE),
    ])
    def test_literal_replies(self, reply, expected):
        """Test READ and WRITE replies map to intents."""
        with test_logger.check("classifier.py", "IntentClassifier.classify", "literal"):
            intent = asyncio.run(IntentClassifier(FakeOracle([reply])).classify("add milk", ["groceries"]))
            assert intent == expected

    @pytest.mark.parametrize("reply", ["READ.", "I think WRITE", "MAYBE"])
    def test_anything_else_is_ambiguous(self, reply):
        """Test any other reply is an ambiguous intent."""
        with test_logger.check("classifier.py", "IntentClassifier.classify", "ambiguous"):
            with pytest.raises(AmbiguousIntentError) as exc:
                asyncio.run(IntentClassifier(FakeOracle([reply])).classify("hmm", ["groceries"]))
            assert exc.value.reply == reply.strip()
            assert exc.value.status_code == 422

    def test_constrained_sampling(self):
        """Test classification uses constrained sampling."""
        with test_logger.check("classifier.py", "IntentClassifier.classify", "sampling"):
            oracle = FakeOracle(["READ"])
            asyncio.run(IntentClassifier(oracle).classify("how many apples", ["groceries", "hardware"]))
            assert oracle.calls[0]["temperature"] == 0.0
            assert oracle.calls[0]["max_tokens"] <= 5
            assert '"hardware"' in oracle.calls[0]["messages"][0]["content"]
            assert len(oracle.calls) == 1

    def test_gateway_failure_propagates(self):
        """Test oracle failures propagate from the classifier."""
        with test_logger.check("classifier.py", "IntentClassifier.classify", "gateway_failure"):
            with pytest.raises(GatewayError):
                asyncio.run(IntentClassifier(FakeOracle([RuntimeError("down")])).classify("x", []))
