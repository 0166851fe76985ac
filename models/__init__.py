"""Data models for Ara Voice."""

from .command_models import Intent, InventoryUpdate, RowWrite, ParseFailure, ParsedCommand
from .api_models import (
    CommandRequest, TranscriptRequest, StructuredCommandRequest,
    SpreadsheetRequest, PreferenceRequest, CollectionRequest, FindRowsRequest, CommandResponse
)
from .session_model import (
    Session, Interaction, InteractionType, ActionRecord, SessionContext, AuthState
)

__all__ = [
    "Intent", "InventoryUpdate", "RowWrite", "ParseFailure", "ParsedCommand",
    "CommandRequest", "TranscriptRequest", "StructuredCommandRequest",
    "SpreadsheetRequest", "PreferenceRequest", "CollectionRequest", "FindRowsRequest", "CommandResponse",
    "Session", "Interaction", "InteractionType", "ActionRecord", "SessionContext", "AuthState"
]
