"""
Unit tests for session_store.py - history, context, auth and expiry.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import Interaction, InteractionType
from session_store import DEFAULT_SESSION_ID, SessionStore
from tests.test_logger import test_logger


class FakeClock:
    """Manually advanced clock."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(max_age_seconds=60, max_history_length=3, sweep_interval_seconds=3600, clock=clock)


def action(clock, item, collection="groceries", success=True, command=None):
    return Interaction(
        timestamp=clock(),
        command=command or f"add {item}",
        type=InteractionType.ACTION,
        success=success,
        action="add",
        item=item,
        collection=collection,
    )


class TestSessionLifecycle:

    def setup_method(self):
        test_logger.log_section("TESTING: session_store.py - lifecycle")

    def test_absent_id_uses_default_session(self, store):
        """Test an absent id maps to the default session."""
        with test_logger.check("session_store.py", "SessionStore.get_or_create", "default_id"):
            assert store.get_or_create(None).id == DEFAULT_SESSION_ID
            assert store.get_or_create("  ").id == DEFAULT_SESSION_ID
            assert len(store) == 1

    def test_get_or_create_touches(self, store, clock):
        """Test get_or_create refreshes last activity."""
        with test_logger.check("session_store.py", "SessionStore.get_or_create", "touch"):
            session = store.get_or_create("s1")
            created = session.created_at
            clock.advance(30)
            session = store.get_or_create("s1")
            assert session.created_at == created
            assert session.last_activity == clock()

    def test_new_session_uses_default_collection(self, clock):
        """Test new sessions start with the default collection."""
        with test_logger.check("session_store.py", "SessionStore.get_or_create", "default_collection"):
            store = SessionStore(default_collection="hardware", clock=clock)
            assert store.get_or_create("s1").context.preferred_collection == "hardware"

    def test_clear_session(self, store):
        """Test clearing a session."""
        with test_logger.check("session_store.py", "SessionStore.clear_session", "clear"):
            store.get_or_create("s1")
            assert store.clear_session("s1") is True
            assert store.clear_session("s1") is False
            assert "s1" not in store


class TestHistoryAndContext:

    def setup_method(self):
        test_logger.log_section("TESTING: session_store.py - history and context")

    def test_history_capacity_evicts_oldest(self, store, clock):
        """Test history evicts the oldest interaction at capacity."""
        with test_logger.check("session_store.py", "SessionStore.record_interaction", "capacity"):
            for item in ["a", "b", "c", "d", "e"]:
                store.record_interaction("s1", action(clock, item))
            history = store.get_or_create("s1").history
            assert [h.item for h in history] == ["c", "d", "e"]

    def test_successful_action_updates_context(self, store, clock):
        """Test a successful action updates the context."""
        with test_logger.check("session_store.py", "SessionStore.record_interaction", "context_update"):
            store.record_interaction("s1", action(clock, "nails", collection="hardware"))
            context = store.get_or_create("s1").context
            assert context.preferred_collection == "hardware"
            assert context.last_actions[0].item == "nails"

    def test_failed_and_answer_interactions_leave_context(self, store, clock):
        """Test failures and answers leave the context unchanged."""
        with test_logger.check("session_store.py", "SessionStore.record_interaction", "no_context_update"):
            store.record_interaction("s1", action(clock, "nails", collection="hardware", success=False))
            store.record_interaction("s1", Interaction(
                timestamp=clock(), command="how many?", type=InteractionType.ANSWER, collection="toys"
            ))
            context = store.get_or_create("s1").context
            assert context.preferred_collection == "groceries"
            assert context.last_actions == []

    def test_last_actions_ring_is_newest_first_and_bounded(self, clock):
        """Test recent actions are newest first and bounded."""
        with test_logger.check("session_store.py", "SessionStore.record_interaction", "ring"):
            store = SessionStore(max_history_length=50, clock=clock)
            for i in range(12):
                store.record_interaction("s1", action(clock, f"item{i}"))
            actions = store.get_or_create("s1").context.last_actions
            assert len(actions) == 10
            assert actions[0].item == "item11"
            assert actions[-1].item == "item2"

    def test_conversation_context_is_bounded(self, clock):
        """Test the conversation context is bounded."""
        with test_logger.check("session_store.py", "SessionStore.get_conversation_context", "bounded"):
            store = SessionStore(max_history_length=50, clock=clock)
            for i in range(20):
                store.record_interaction("s1", action(clock, f"item{i}"))
            store.set_preference("s1", "units", "kg")
            store.set_current_spreadsheet("s1", "doc-1")

            context = store.get_conversation_context("s1")
            assert len(context["recentHistory"]) == 5
            assert context["recentHistory"][-1]["command"] == "add item19"
            assert len(context["recentActions"]) == 3
            assert context["recentActions"][0]["item"] == "item19"
            assert context["preferences"] == {"units": "kg"}
            assert context["currentSpreadsheetId"] == "doc-1"

    def test_patterns(self, store, clock):
        """Test conversation pattern analysis."""
        with test_logger.check("session_store.py", "SessionStore.analyze_conversation_patterns", "counts"):
            store.record_interaction("s1", action(clock, "milk", command="please add milk"))
            store.record_interaction("s1", action(clock, "milk", command="please add more milk"))
            patterns = store.analyze_conversation_patterns("s1")
            assert patterns["commonCommands"]["please"] == 2
            assert "add" not in patterns["commonCommands"]
            assert patterns["frequentItems"] == {"milk": 2}
            assert patterns["timePatterns"] == {12: 2}
            assert store.analyze_conversation_patterns("missing") is None

    def test_stats_and_snapshot(self, store, clock):
        """Test session statistics and snapshots."""
        with test_logger.check("session_store.py", "SessionStore.get_session_stats", "stats"):
            store.record_interaction("s1", action(clock, "milk"))
            store.record_interaction("s1", action(clock, "eggs", success=False))
            stats = store.get_session_stats("s1")
            assert stats["totalInteractions"] == 2
            assert stats["successfulActions"] == 1
            snapshot = store.snapshot("s1")
            assert snapshot["sessionId"] == "s1"
            assert len(snapshot["history"]) == 2
            assert store.snapshot("missing") is None


class TestAuthState:

    def setup_method(self):
        test_logger.log_section("TESTING: session_store.py - auth")

    def test_authenticated_iff_tokens(self, store):
        """Test a session is authenticated only with tokens."""
        with test_logger.check("session_store.py", "SessionStore.set_auth", "derived_flag"):
            assert store.is_authenticated("s1") is False
            store.set_auth("s1", {"access_token": "abc"}, name="Ana")
            assert store.is_authenticated("s1") is True
            assert store.get_tokens("s1") == {"access_token": "abc"}
            store.set_auth("s1", None)
            assert store.is_authenticated("s1") is False
            assert store.get_tokens("s1") is None


class TestExpiry:

    def setup_method(self):
        test_logger.log_section("TESTING: session_store.py - expiry")

    def test_sweep_removes_exactly_the_expired(self, store, clock):
        """Test the sweep removes only expired sessions."""
        with test_logger.check("session_store.py", "SessionStore.expire_sweep", "exact"):
            store.get_or_create("old")
            clock.advance(45)
            store.get_or_create("fresh")
            clock.advance(20)

            assert store.expire_sweep() == ["old"]
            assert "old" not in store
            assert "fresh" in store

    def test_sweep_is_idempotent(self, store, clock):
        """Test a second sweep removes nothing."""
        with test_logger.check("session_store.py", "SessionStore.expire_sweep", "idempotent"):
            store.get_or_create("s1")
            clock.advance(61)
            assert store.expire_sweep() == ["s1"]
            assert store.expire_sweep() == []

    def test_age_exactly_max_is_kept(self, store, clock):
        """Test a session exactly at the maximum age is kept."""
        with test_logger.check("session_store.py", "SessionStore.expire_sweep", "boundary"):
            store.get_or_create("s1")
            clock.advance(60)
            assert store.expire_sweep() == []

    def test_expired_session_is_recreated_fresh(self, store, clock):
        """Test an expired id comes back as a fresh session."""
        with test_logger.check("session_store.py", "SessionStore.expire_sweep", "recreate"):
            store.record_interaction("s1", action(clock, "milk"))
            clock.advance(120)
            store.expire_sweep()
            assert store.get_or_create("s1").history == []

    def test_reaper_start_and_destroy(self, clock):
        """Test the reaper thread starts and stops."""
        with test_logger.check("session_store.py", "SessionStore.start", "reaper_thread"):
            store = SessionStore(max_age_seconds=60, sweep_interval_seconds=0.01, clock=clock)
            store.get_or_create("s1")
            clock.advance(120)
            store.start()
            store.start()
            try:
                for _ in range(200):
                    if "s1" not in store:
                        break
                    threading.Event().wait(0.01)
                assert "s1" not in store
            finally:
                store.destroy()
            assert len(store) == 0


class TestConcurrency:

    def setup_method(self):
        test_logger.log_section("TESTING: session_store.py - concurrency")

    def test_parallel_writers_and_sweeps(self, clock):
        """Test concurrent writers and sweeps."""
        with test_logger.check("session_store.py", "SessionStore", "parallel_smoke"):
            store = SessionStore(max_history_length=1000, clock=clock)
            errors = []

            def writer(session_id):
                try:
                    for i in range(100):
                        store.record_interaction(session_id, action(clock, f"item{i}"))
                        store.get_conversation_context(session_id)
                except Exception as e:
                    errors.append(e)

            def sweeper():
                try:
                    for _ in range(50):
                        store.expire_sweep()
                except Exception as e:
                    errors.append(e)

            threads = [threading.Thread(target=writer, args=(f"s{n}",)) for n in range(8)]
            threads.append(threading.Thread(target=sweeper))
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert errors == []
            assert all(len(store.get_or_create(f"s{n}").history) == 100 for n in range(8))
