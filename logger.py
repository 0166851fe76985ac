"""
Structured logging for Ara Voice.

Console output is human-readable; setting LOG_FILE adds a JSON lines file.
Keyword arguments passed to a log call become structured fields. Fields
that look like secrets are masked, and the id of the HTTP request being
served is attached to every record logged while handling it.
"""

import os
import sys
import logging
import json
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Set by the request middleware for the duration of one request
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

SECRET_FIELDS = frozenset({
    "token", "tokens", "bearer_token", "pin", "spoken_pin", "api_key",
    "openai_api_key", "gemini_api_key", "secret_phrase", "authorization", "key",
})


def redact(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Mask values whose field name marks them as a credential."""
    masked = {}
    for name, value in fields.items():
        if value and name.lower() in SECRET_FIELDS:
            masked[name] = "***"
        else:
            masked[name] = value
    return masked


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id:
            log_data["request_id"] = request_id

        if getattr(record, "extra_data", None):
            log_data["data"] = record.extra_data

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter with colors."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m"
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset = self.COLORS["RESET"]
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S")

        request_id = getattr(record, "request_id", None)
        prefix = f"[{request_id}] " if request_id else ""
        msg = f"{color}[{timestamp}] {record.levelname:8}{reset} | {prefix}{record.name}: {record.getMessage()}"

        extra = dict(getattr(record, "extra_data", None) or {})
        trace = extra.pop("traceback", None)
        if extra:
            msg += " | " + ", ".join(f"{k}={v}" for k, v in extra.items())
        if trace:
            msg += f"\n{trace}"

        return msg


class AppLogger:
    """Application logger with structured fields and domain helpers."""

    _instances: Dict[str, 'AppLogger'] = {}

    def __init__(self, name: str, level: str = None):
        """
        Initialize logger.

        Args:
            name: Logger name (usually module name)
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        """
        self.name = name
        self.level = level or os.getenv("LOG_LEVEL", "INFO")
        self.logger = logging.getLogger(name)
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        if self.logger.handlers:
            return

        self.logger.setLevel(getattr(logging, self.level.upper(), logging.INFO))

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(ConsoleFormatter())
        self.logger.addHandler(console_handler)

        log_file = os.getenv("LOG_FILE")
        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(file_handler)

        self.logger.propagate = False

    def _log(self, level: int, message: str, extra: Dict[str, Any] = None) -> None:
        if not self.logger.isEnabledFor(level):
            return
        record = self.logger.makeRecord(self.name, level, "", 0, message, (), None)
        record.request_id = request_id_var.get()
        if extra:
            record.extra_data = redact(extra)
        self.logger.handle(record)

    def debug(self, message: str, **kwargs) -> None:
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs) -> None:
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs) -> None:
        if exc_info:
            kwargs["traceback"] = traceback.format_exc()
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, exc_info: bool = False, **kwargs) -> None:
        if exc_info:
            kwargs["traceback"] = traceback.format_exc()
        self._log(logging.CRITICAL, message, kwargs)

    def request(self, method: str, path: str, status: int, duration_ms: float, **kwargs) -> None:
        """Log one HTTP request."""
        level = logging.WARNING if status >= 400 else logging.INFO
        self._log(
            level,
            f"{method} {path} -> {status}",
            {"method": method, "path": path, "status": status,
             "duration_ms": round(duration_ms, 2), **kwargs}
        )

    def gateway_call(self, gateway: str, operation: str, success: bool, duration_ms: float, **kwargs) -> None:
        """Log an external gateway operation (data backend or oracle)."""
        level = logging.INFO if success else logging.WARNING
        status = "SUCCESS" if success else "FAILED"
        self._log(
            level,
            f"Gateway [{gateway}] {operation}: {status}",
            {"gateway": gateway, "operation": operation, "success": success,
             "duration_ms": round(duration_ms, 2), **kwargs}
        )

    def llm_call(self, model: str, duration_ms: float = None, **kwargs) -> None:
        """Log a completed oracle call."""
        self.info(f"LLM call to {model}", model=model, duration_ms=duration_ms, **kwargs)

    def fallback(self, failed_stage: str, next_stage: str, reason: str, **kwargs) -> None:
        """Log a fallback chain step: one stage failed and the next is tried."""
        self.info(
            f"Fallback {failed_stage} -> {next_stage}",
            failed_stage=failed_stage,
            next_stage=next_stage,
            reason=reason,
            **kwargs
        )

    def command_failed(self, kind: str, message: str, status_code: int, **kwargs) -> None:
        """Log a typed command failure; server-side failures at error level."""
        level = logging.ERROR if status_code >= 500 else logging.WARNING
        self._log(level, f"Command failed [{kind}]: {message}", {"kind": kind, "status_code": status_code, **kwargs})


def get_logger(name: str) -> AppLogger:
    """
    Get or create a logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        AppLogger instance
    """
    if name not in AppLogger._instances:
        AppLogger._instances[name] = AppLogger(name)
    return AppLogger._instances[name]
