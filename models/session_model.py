"""
Data models for Session, Interaction, Context and AuthState entities.
"""

import threading
from datetime import datetime
from enum import Enum
from typing import List, Dict, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, computed_field


class InteractionType(str, Enum):
    ACTION = "action"
    ANSWER = "answer"
    UNKNOWN = "unknown"


class Interaction(BaseModel):
    """A single command/response exchange. Immutable once recorded."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    command: str
    response: Dict[str, Any] = Field(default_factory=dict)
    type: InteractionType = InteractionType.UNKNOWN
    success: bool = True
    # Set when the interaction changed the backend
    action: Optional[str] = None
    item: Optional[str] = None
    collection: Optional[str] = None


class ActionRecord(BaseModel):
    """Summary of an executed action, kept in the context ring."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    action: Optional[str] = None
    item: Optional[str] = None
    collection: Optional[str] = None


class SessionContext(BaseModel):
    """Context derived from the interactions of a session."""
    preferred_collection: str = "groceries"
    last_actions: List[ActionRecord] = Field(default_factory=list)
    preferences: Dict[str, Any] = Field(default_factory=dict)
    current_spreadsheet_id: Optional[str] = None


class AuthState(BaseModel):
    """Authentication sub-record. Authenticated exactly when tokens are present."""
    tokens: Optional[Dict[str, Any]] = None
    name: Optional[str] = None

    @computed_field
    @property
    def authenticated(self) -> bool:
        return self.tokens is not None


class Session(BaseModel):
    """Represents a user's conversation context."""
    id: str
    created_at: datetime
    last_activity: datetime
    history: List[Interaction] = Field(default_factory=list)
    context: SessionContext = Field(default_factory=SessionContext)
    auth: AuthState = Field(default_factory=AuthState)

    # Guards history/context/auth of this session only
    _lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def age_seconds(self, now: datetime) -> float:
        """Seconds since the last activity."""
        return (now - self.last_activity).total_seconds()
