"""
Request and response models for the HTTP endpoints.
"""

from typing import Dict, Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class CommandRequest(BaseModel):
    """Free-form or fixed-grammar command text."""
    model_config = ConfigDict(populate_by_name=True)

    command: str = Field(..., min_length=1, max_length=2000)
    session_id: Optional[str] = Field(None, alias="sessionId", max_length=200)


class TranscriptRequest(BaseModel):
    """Voice transcript for the AI-assisted parse chain."""
    model_config = ConfigDict(populate_by_name=True)

    transcript: str = Field(..., min_length=1, max_length=2000)
    session_id: Optional[str] = Field(None, alias="sessionId", max_length=200)


class StructuredCommandRequest(BaseModel):
    """Already-structured inventory update gated by the secret phrase."""
    model_config = ConfigDict(populate_by_name=True)

    key: str
    tab: Optional[str] = None
    item: Optional[str] = None
    qty: Optional[Union[float, str]] = None
    price: Optional[Union[float, str]] = None
    status: Optional[str] = None
    session_id: Optional[str] = Field(None, alias="sessionId", max_length=200)

    def record(self) -> Dict[str, Any]:
        return {
            "tab": self.tab,
            "item": self.item,
            "qty": self.qty,
            "price": self.price,
            "status": self.status,
        }


class SpreadsheetRequest(BaseModel):
    """Select the backend document for a session."""
    model_config = ConfigDict(populate_by_name=True)

    spreadsheet_id: str = Field(..., alias="spreadsheetId", min_length=1)


class PreferenceRequest(BaseModel):
    """Set one free-form preference on a session."""
    key: str = Field(..., min_length=1, max_length=100)
    value: Any = None


class CollectionRequest(BaseModel):
    """Create a new collection in the session's document."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=100)
    session_id: Optional[str] = Field(None, alias="sessionId", max_length=200)


class FindRowsRequest(BaseModel):
    """Search one collection; every criterion must match."""
    model_config = ConfigDict(populate_by_name=True)

    collection: str = Field(..., min_length=1)
    criteria: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = Field(None, alias="sessionId", max_length=200)


class CommandResponse(BaseModel):
    """Successful command response."""
    model_config = ConfigDict(populate_by_name=True)

    status: str = "success"
    type: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    session_id: str = Field(..., serialization_alias="sessionId")
