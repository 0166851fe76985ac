"""
In-memory session store for conversational context.

Holds per-session history, derived context and authentication state, and
owns a background reaper thread that removes sessions idle for longer
than ``max_age_seconds``. Nothing here survives a restart.

Locking: ``_lock`` guards only the id -> Session map and is held for short,
bounded sections. Each Session has its own lock for its contents, so
requests for different sessions never wait on each other.
"""

import threading
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from config import AppConfig
from logger import get_logger
from models import ActionRecord, AuthState, Interaction, InteractionType, Session, SessionContext

logger = get_logger(__name__)

DEFAULT_SESSION_ID = "default"
MAX_LAST_ACTIONS = 10
CONTEXT_HISTORY = 5
CONTEXT_ACTIONS = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Sessions keyed by an opaque id, with bounded history and TTL expiry."""

    def __init__(
        self,
        max_age_seconds: float = 1800,
        max_history_length: int = 50,
        sweep_interval_seconds: float = 300,
        default_collection: str = "groceries",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if max_history_length < 1:
            raise ValueError("max_history_length must be at least 1")
        self.max_age_seconds = max_age_seconds
        self.max_history_length = max_history_length
        self.sweep_interval_seconds = sweep_interval_seconds
        self.default_collection = default_collection
        self._clock = clock or utcnow

        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._reaper: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, config: AppConfig) -> "SessionStore":
        return cls(
            max_age_seconds=config.session_max_age,
            max_history_length=config.session_max_history,
            sweep_interval_seconds=config.session_sweep_interval,
            default_collection=config.default_sheet_name,
        )

    def now(self) -> datetime:
        return self._clock()

    @staticmethod
    def resolve_id(session_id: Optional[str]) -> str:
        """Absent ids share one default session."""
        if session_id and session_id.strip():
            return session_id.strip()
        return DEFAULT_SESSION_ID

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return self.resolve_id(session_id) in self._sessions

    def _peek(self, session_id: Optional[str]) -> Optional[Session]:
        """Look up without creating or touching."""
        with self._lock:
            return self._sessions.get(self.resolve_id(session_id))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background reaper. Calling it twice is a no-op."""
        if self._reaper is not None and self._reaper.is_alive():
            return
        self._stop_event.clear()
        self._reaper = threading.Thread(target=self._run_reaper, daemon=True, name="SessionReaper")
        self._reaper.start()
        logger.info(
            "Session reaper started",
            interval_s=self.sweep_interval_seconds,
            max_age_s=self.max_age_seconds,
        )

    def _run_reaper(self) -> None:
        while not self._stop_event.wait(self.sweep_interval_seconds):
            try:
                self.expire_sweep()
            except Exception as e:
                logger.error(f"Session sweep failed: {str(e)}", exc_info=True)

    def destroy(self) -> None:
        """Stop the reaper and drop every session. Used at shutdown."""
        self._stop_event.set()
        if self._reaper is not None:
            self._reaper.join(timeout=5)
            self._reaper = None
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        logger.info("Session store destroyed", dropped=count)

    def expire_sweep(self) -> List[str]:
        """
        Remove every session idle for longer than max_age_seconds.

        The map is copied under the lock, ages are computed outside it, and
        each candidate is re-checked under the lock before removal, so a
        session touched during the sweep is kept.

        Returns:
            Ids of the removed sessions
        """
        now = self._clock()
        with self._lock:
            snapshot = list(self._sessions.items())

        candidates = [sid for sid, s in snapshot if s.age_seconds(now) > self.max_age_seconds]

        removed = []
        for session_id in candidates:
            with self._lock:
                session = self._sessions.get(session_id)
                if session is not None and session.age_seconds(now) > self.max_age_seconds:
                    del self._sessions[session_id]
                    removed.append(session_id)

        if removed:
            logger.info("Cleaned up expired sessions", count=len(removed), session_ids=removed)
        return removed

    # ------------------------------------------------------------------
    # Sessions and history
    # ------------------------------------------------------------------

    def get_or_create(self, session_id: Optional[str]) -> Session:
        """Return the session, creating it on first reference. Updates last activity."""
        session_id = self.resolve_id(session_id)
        now = self._clock()
        created = False
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = Session(
                    id=session_id,
                    created_at=now,
                    last_activity=now,
                    context=SessionContext(preferred_collection=self.default_collection),
                )
                self._sessions[session_id] = session
                created = True
            else:
                session.last_activity = now

        if created:
            logger.info("New session created", session_id=session_id)
        return session

    def record_interaction(self, session_id: Optional[str], interaction: Interaction) -> Session:
        """Append an interaction, trim history to capacity and update the context."""
        session = self.get_or_create(session_id)
        with session.lock:
            session.history.append(interaction)
            overflow = len(session.history) - self.max_history_length
            if overflow > 0:
                del session.history[:overflow]
            self._update_context(session, interaction)
        return session

    def _update_context(self, session: Session, interaction: Interaction) -> None:
        if interaction.type != InteractionType.ACTION or not interaction.success:
            return

        session.context.last_actions.insert(0, ActionRecord(
            timestamp=interaction.timestamp,
            action=interaction.action,
            item=interaction.item,
            collection=interaction.collection,
        ))
        del session.context.last_actions[MAX_LAST_ACTIONS:]

        if interaction.collection:
            session.context.preferred_collection = interaction.collection

    def get_conversation_context(self, session_id: Optional[str]) -> Dict[str, Any]:
        """
        Bounded summary of a session for inclusion in oracle prompts.

        Only the last 5 interactions and last 3 actions are included, so the
        prompt size does not grow with the age of the session.
        """
        session = self.get_or_create(session_id)
        with session.lock:
            recent_history = session.history[-CONTEXT_HISTORY:]
            recent_actions = session.context.last_actions[:CONTEXT_ACTIONS]
            return {
                "sessionId": session.id,
                "recentHistory": [
                    {
                        "command": h.command,
                        "type": h.type.value,
                        "success": h.success,
                        "timestamp": h.timestamp.isoformat(),
                    }
                    for h in recent_history
                ],
                "recentActions": [a.model_dump(mode="json") for a in recent_actions],
                "preferredCollection": session.context.preferred_collection,
                "currentSpreadsheetId": session.context.current_spreadsheet_id,
                "preferences": dict(session.context.preferences),
            }

    def clear_session(self, session_id: Optional[str]) -> bool:
        with self._lock:
            removed = self._sessions.pop(self.resolve_id(session_id), None)
        if removed is not None:
            logger.info("Session deleted", session_id=removed.id)
        return removed is not None

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def set_auth(self, session_id: Optional[str], tokens: Optional[Dict[str, Any]],
                 name: Optional[str] = None) -> None:
        session = self.get_or_create(session_id)
        with session.lock:
            session.auth = AuthState(tokens=dict(tokens) if tokens is not None else None, name=name)

    def is_authenticated(self, session_id: Optional[str]) -> bool:
        session = self._peek(session_id)
        return bool(session and session.auth.authenticated)

    def get_tokens(self, session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        session = self._peek(session_id)
        return session.auth.tokens if session else None

    # ------------------------------------------------------------------
    # Context accessors
    # ------------------------------------------------------------------

    def set_current_spreadsheet(self, session_id: Optional[str], spreadsheet_id: Optional[str]) -> None:
        session = self.get_or_create(session_id)
        with session.lock:
            session.context.current_spreadsheet_id = spreadsheet_id

    def get_current_spreadsheet(self, session_id: Optional[str]) -> Optional[str]:
        session = self._peek(session_id)
        return session.context.current_spreadsheet_id if session else None

    def set_preference(self, session_id: Optional[str], key: str, value: Any) -> None:
        session = self.get_or_create(session_id)
        with session.lock:
            session.context.preferences[key] = value

    def get_preference(self, session_id: Optional[str], key: str, default: Any = None) -> Any:
        session = self._peek(session_id)
        if session is None:
            return default
        return session.context.preferences.get(key, default)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def snapshot(self, session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """Read-only JSON view of a session, or None if it does not exist."""
        session = self._peek(session_id)
        if session is None:
            return None
        with session.lock:
            return {
                "sessionId": session.id,
                "createdAt": session.created_at.isoformat(),
                "lastActivity": session.last_activity.isoformat(),
                "history": [h.model_dump(mode="json") for h in session.history],
                "context": session.context.model_dump(mode="json"),
                "auth": {"authenticated": session.auth.authenticated, "name": session.auth.name},
            }

    def get_session_stats(self, session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        session = self._peek(session_id)
        if session is None:
            return None
        with session.lock:
            history = list(session.history)
            return {
                "sessionId": session.id,
                "createdAt": session.created_at.isoformat(),
                "lastActivity": session.last_activity.isoformat(),
                "totalInteractions": len(history),
                "successfulActions": sum(
                    1 for h in history if h.type == InteractionType.ACTION and h.success
                ),
                "questions": sum(1 for h in history if h.type == InteractionType.ANSWER),
                "authenticated": session.auth.authenticated,
                "currentSpreadsheet": session.context.current_spreadsheet_id,
            }

    def active_sessions(self) -> List[Dict[str, Any]]:
        with self._lock:
            ids = list(self._sessions.keys())
        return [stats for stats in (self.get_session_stats(sid) for sid in ids) if stats]

    def analyze_conversation_patterns(self, session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """Word, item, collection and hour-of-day frequencies for one session."""
        session = self._peek(session_id)
        if session is None:
            return None
        with session.lock:
            history = list(session.history)

        commands, items, collections, hours = Counter(), Counter(), Counter(), Counter()
        for interaction in history:
            # Ignore short words
            commands.update(w for w in interaction.command.lower().split() if len(w) > 3)
            if interaction.item:
                items[interaction.item] += 1
            if interaction.collection:
                collections[interaction.collection] += 1
            hours[interaction.timestamp.hour] += 1

        return {
            "commonCommands": dict(commands),
            "frequentItems": dict(items),
            "preferredCollections": dict(collections),
            "timePatterns": dict(hours),
        }
