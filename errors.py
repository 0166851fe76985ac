"""
Error taxonomy for the command pipeline.

Every error carries a stable machine-readable ``kind`` and the HTTP status
the API layer answers with. Parse and correction failures are normally
recovered inside the orchestrator's fallback chains; the others reach the
caller as structured JSON.
"""

from typing import Any, Dict, List, Optional


class CommandError(Exception):
    """Base class for every error the pipeline surfaces."""

    kind = "command_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "status": "error",
            "kind": self.kind,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body


class FormatError(CommandError):
    """Lexical parse failure. Triggers suggestion generation."""

    kind = "format_error"
    status_code = 400


class AIParseFailure(CommandError):
    """The oracle returned a reply that does not decode into a usable command."""

    kind = "ai_parse_failure"
    status_code = 422

    def __init__(self, message: str, raw_reply: Optional[str] = None):
        super().__init__(message, {"raw_reply": raw_reply} if raw_reply else None)
        self.raw_reply = raw_reply


class AmbiguousIntentError(CommandError):
    """The classifier replied with something other than READ or WRITE."""

    kind = "ambiguous_intent"
    status_code = 422

    def __init__(self, reply: str):
        super().__init__(
            f"Could not tell whether the command reads or writes data (classifier said {reply!r})",
            {"reply": reply},
        )
        self.reply = reply


class ValidationError(CommandError):
    """One or more field-level violations, reported together."""

    kind = "validation_error"
    status_code = 422

    def __init__(self, reasons: List[str]):
        super().__init__("; ".join(reasons), {"reasons": list(reasons)})
        self.reasons = list(reasons)


class OutOfRangeError(ValidationError):
    """A numeric field is outside its configured plausible range."""

    kind = "out_of_range"


class GatewayError(CommandError):
    """Transport or backend failure from the data backend or the oracle."""

    kind = "gateway_error"
    status_code = 502

    def __init__(self, gateway: str, message: str, upstream_status: Optional[int] = None,
                 timed_out: bool = False):
        details: Dict[str, Any] = {"gateway": gateway}
        if upstream_status is not None:
            details["upstream_status"] = upstream_status
        if timed_out:
            details["timed_out"] = True
        super().__init__(message, details)
        self.gateway = gateway
        self.upstream_status = upstream_status
        self.timed_out = timed_out
        if timed_out:
            self.status_code = 504


class AuthError(CommandError):
    """A credential was missing or did not match."""

    kind = "auth_required"
    status_code = 401

    ACCEPTED_METHODS = [
        "Bearer token in Authorization header",
        'Spoken PIN: "pin is [PIN]"',
    ]

    def __init__(self, message: Optional[str] = None, methods: Optional[List[str]] = None):
        super().__init__(
            message or (
                "Authentication required. Provide Bearer token in Authorization header "
                'or spoken PIN with "pin is [PIN]".'
            ),
            {"authMethods": list(methods or self.ACCEPTED_METHODS)},
        )
