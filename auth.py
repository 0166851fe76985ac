"""
Request authentication for the command endpoints.

Two methods are accepted: a bearer token in the Authorization header, or a
spoken PIN at the start of the command ("pin is 1234 ..."). Secrets are
compared in constant time and an empty configured secret never matches.
"""

import hmac
from dataclasses import dataclass
from typing import Optional

from errors import AuthError
from logger import get_logger

logger = get_logger(__name__)

BEARER_SCHEME = "bearer"
PIN_PREFIX = ("pin", "is")

METHOD_BEARER = "Bearer token"
METHOD_PIN = "Spoken PIN"


@dataclass(frozen=True)
class AuthResult:
    """How the request authenticated and the command left to process."""
    method: str
    command: str

    @property
    def pin_only(self) -> bool:
        """True when the command held nothing but the PIN."""
        return self.method == METHOD_PIN and not self.command


def _matches(supplied: Optional[str], expected: str) -> bool:
    if not expected or not supplied:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def validate_bearer_token(authorization: Optional[str], expected: str) -> bool:
    """Check an `Authorization: Bearer <token>` header. The scheme is case-insensitive."""
    if not authorization:
        return False
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != BEARER_SCHEME:
        return False
    return _matches(token.strip(), expected)


def validate_secret_phrase(supplied: Optional[str], expected: str) -> bool:
    """Case-insensitive, whitespace-normalized secret phrase check."""
    if not supplied or not expected:
        return False
    return _matches(" ".join(supplied.lower().split()), " ".join(expected.lower().split()))


def extract_spoken_pin(command: Optional[str]):
    """
    Split "pin is <PIN> rest..." into (pin, rest).

    Returns (None, command) when the command does not start with the PIN words.
    """
    if not command:
        return None, command or ""
    words = command.split()
    if len(words) >= 3 and [w.lower() for w in words[:2]] == list(PIN_PREFIX):
        return words[2], " ".join(words[3:])
    return None, command


def authenticate(authorization: Optional[str], command: Optional[str],
                 bearer_token: str, spoken_pin: str) -> AuthResult:
    """
    Authenticate one request.

    The bearer token is checked first. Otherwise the command must start with
    the spoken PIN, which is stripped from the returned command.

    Raises:
        AuthError: if neither method matches
    """
    if validate_bearer_token(authorization, bearer_token):
        return AuthResult(method=METHOD_BEARER, command=(command or "").strip())

    pin, rest = extract_spoken_pin(command)
    if pin is not None:
        if _matches(pin, spoken_pin):
            return AuthResult(method=METHOD_PIN, command=rest.strip())
        logger.warning("Invalid spoken PIN")
        raise AuthError("Invalid PIN")

    logger.warning("Authentication required", has_authorization=bool(authorization))
    raise AuthError()
