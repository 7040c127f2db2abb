"""
Audit Logger module for the URL shortener.

Provides structured logging with dual-format output (JSON and human-readable text),
a per-request context (request id and client address), optional audit mode with
HMAC signing, and sensitive data masking.
"""

import contextvars
import hmac
import hashlib
import json
import sys
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator, Optional, TextIO

from tinyurl.enums import LogLevel


_request_context: contextvars.ContextVar[dict] = contextvars.ContextVar(
    "tinyurl_request_context", default={}
)

_LEVEL_ORDER = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}


def parse_level(name: str) -> LogLevel:
    """Map a level name ('info', 'WARNING', ...) to a LogLevel."""
    normalized = (name or "info").strip().lower()
    if normalized == "warning":
        normalized = "warn"
    try:
        return LogLevel(normalized)
    except ValueError:
        return LogLevel.INFO


@contextmanager
def request_context(
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Iterator[dict]:
    """
    Bind a request id and client address to every entry logged in this context.

    Args:
        client_ip: Remote address of the caller
        request_id: Request identifier (a random UUID when omitted)

    Yields:
        The bound context dictionary
    """
    context = {
        "request_id": request_id or str(uuid.uuid4()),
        "client_ip": client_ip,
    }
    token = _request_context.set(context)
    try:
        yield context
    finally:
        _request_context.reset(token)


def current_context() -> dict:
    """Return the request context bound to the running task, if any."""
    return dict(_request_context.get())


@dataclass
class LogEntry:
    """Represents a single log entry with all metadata."""

    timestamp: str
    level: LogLevel
    component: str
    message: str
    data: dict = field(default_factory=dict)
    context: dict = field(default_factory=dict)
    signature: Optional[str] = None


class AuditLogger:
    """
    Audit logger with dual-format output and optional signing.

    Supports:
    - JSON and human-readable text output formats
    - Minimum level filtering
    - Request context (request id, client ip) merged into each entry
    - Audit mode with HMAC-SHA256 signing of log entries
    - Automatic masking of sensitive data (dump keys, tokens, secrets)
    """

    # Keys that should be masked in log output
    SENSITIVE_KEYS = frozenset({
        'token', 'secret', 'password', 'dump_key', 'signing_key',
        'auth', 'authorization', 'credential', 'api_key',
    })

    MASK_VALUE = "***MASKED***"

    # Entries kept in memory for inspection
    MAX_ENTRIES = 1000

    def __init__(
        self,
        output_format: str = "text",
        output_stream: Optional[TextIO] = None,
        level: LogLevel = LogLevel.INFO,
    ):
        """
        Initialize the audit logger.

        Args:
            output_format: Output format - 'json', 'text', or 'both'
            output_stream: Output stream for log entries (defaults to sys.stderr)
            level: Minimum level that is written
        """
        if output_format not in ("json", "text", "both"):
            raise ValueError(f"Invalid output_format: {output_format}")

        self._output_format = output_format
        self._output_stream = output_stream or sys.stderr
        self._level = level
        self._audit_mode = False
        self._signing_key: Optional[bytes] = None
        self._entries: list[LogEntry] = []
        self._lock = threading.Lock()

    @property
    def output_format(self) -> str:
        """Get the current output format."""
        return self._output_format

    @property
    def level(self) -> LogLevel:
        return self._level

    @property
    def audit_mode(self) -> bool:
        """Check if audit mode is enabled."""
        return self._audit_mode

    @property
    def entries(self) -> list[LogEntry]:
        """Get the most recent logged entries."""
        with self._lock:
            return self._entries.copy()

    def enable_audit_mode(self, signing_key: str) -> None:
        """
        Enable audit mode with HMAC signing of log entries.

        Args:
            signing_key: Secret key for HMAC-SHA256 signing
        """
        if not signing_key:
            raise ValueError("Signing key cannot be empty")

        self._audit_mode = True
        self._signing_key = signing_key.encode('utf-8')

    def disable_audit_mode(self) -> None:
        """Disable audit mode."""
        self._audit_mode = False
        self._signing_key = None

    def is_enabled_for(self, level: LogLevel) -> bool:
        return _LEVEL_ORDER[level] >= _LEVEL_ORDER[self._level]

    def log(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Log an entry in the configured format(s).

        Args:
            level: Log severity level
            component: Component name generating the log
            message: Human-readable log message
            data: Optional additional data to include

        Returns:
            The created LogEntry, or None when filtered out by level
        """
        if not self.is_enabled_for(level):
            return None

        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            component=component,
            message=message,
            data=self.mask_sensitive_data(data or {}),
            context={k: v for k, v in current_context().items() if v is not None},
        )

        if self._audit_mode and self._signing_key:
            entry.signature = self._sign_entry(entry)

        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self.MAX_ENTRIES:
                del self._entries[: len(self._entries) - self.MAX_ENTRIES]
            self._output_entry(entry)

        return entry

    def info(self, component: str, message: str, data: Optional[dict] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.INFO, component, message, data)

    def warn(self, component: str, message: str, data: Optional[dict] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.WARN, component, message, data)

    def debug(self, component: str, message: str, data: Optional[dict] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.DEBUG, component, message, data)

    def log_error(
        self,
        component: str,
        message: str,
        error: Optional[Exception] = None,
        request_url: Optional[str] = None,
        additional_data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Log an error with full context.

        Args:
            component: Component name generating the log
            message: Human-readable error message
            error: Optional exception object
            request_url: Optional URL involved in the failure
            additional_data: Optional additional context data

        Returns:
            The created LogEntry object
        """
        data = additional_data.copy() if additional_data else {}

        if error is not None:
            data["error_message"] = str(error)
            data["error_type"] = type(error).__name__
            code = getattr(error, "code", None)
            if code:
                data["error_code"] = code

        if request_url is not None:
            data["request_url"] = request_url

        return self.log(LogLevel.ERROR, component, message, data)

    def mask_sensitive_data(self, data: dict) -> dict:
        """
        Recursively mask sensitive data in a dictionary.

        Args:
            data: Dictionary potentially containing sensitive data

        Returns:
            New dictionary with sensitive values masked
        """
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            key_lower = str(key).lower()

            is_sensitive = any(
                sensitive_key in key_lower
                for sensitive_key in self.SENSITIVE_KEYS
            )

            if is_sensitive:
                masked[key] = self.MASK_VALUE
            elif isinstance(value, dict):
                masked[key] = self.mask_sensitive_data(value)
            elif isinstance(value, list):
                masked[key] = [
                    self.mask_sensitive_data(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                masked[key] = value

        return masked

    def _sign_entry(self, entry: LogEntry) -> str:
        """Sign a log entry with HMAC-SHA256 (hex digest)."""
        if not self._signing_key:
            raise RuntimeError("Signing key not set")

        signable = {
            "timestamp": entry.timestamp,
            "level": entry.level.value,
            "component": entry.component,
            "message": entry.message,
            "data": entry.data,
            "context": entry.context,
        }

        content = json.dumps(signable, sort_keys=True, ensure_ascii=False, default=str)

        return hmac.new(
            self._signing_key,
            content.encode('utf-8'),
            hashlib.sha256
        ).hexdigest()

    def verify_signature(self, entry: LogEntry) -> bool:
        """
        Verify the signature of a log entry.

        Args:
            entry: Log entry to verify

        Returns:
            True if signature is valid, False otherwise
        """
        if not entry.signature or not self._signing_key:
            return False

        expected = self._sign_entry(entry)
        return hmac.compare_digest(entry.signature, expected)

    def _output_entry(self, entry: LogEntry) -> None:
        if self._output_format in ("json", "both"):
            self._output_stream.write(self.format_json(entry) + "\n")

        if self._output_format in ("text", "both"):
            self._output_stream.write(self.format_text(entry) + "\n")

        self._output_stream.flush()

    def format_json(self, entry: LogEntry) -> str:
        """Format a log entry as a single JSON line."""
        obj = {
            "timestamp": entry.timestamp,
            "level": entry.level.value,
            "component": entry.component,
            "message": entry.message,
            "data": entry.data,
        }
        if entry.context:
            obj["context"] = entry.context
        if entry.signature:
            obj["signature"] = entry.signature

        return json.dumps(obj, ensure_ascii=False, default=str)

    def format_text(self, entry: LogEntry) -> str:
        """Format a log entry as human-readable text."""
        # Format: [TIMESTAMP] LEVEL [COMPONENT] (ip id) MESSAGE {data}
        parts = [
            f"[{entry.timestamp}]",
            entry.level.value.upper(),
            f"[{entry.component}]",
        ]

        if entry.context:
            ip = entry.context.get("client_ip", "-")
            request_id = entry.context.get("request_id", "-")
            parts.append(f"({ip} {request_id})")

        parts.append(entry.message)

        if entry.data:
            parts.append(json.dumps(entry.data, ensure_ascii=False, default=str))

        text = " ".join(parts)

        if entry.signature:
            text += f" [sig:{entry.signature[:16]}...]"

        return text

    def clear_entries(self) -> None:
        """Clear all stored log entries."""
        with self._lock:
            self._entries.clear()


class LoggingMixin:
    """Optional-logger helpers shared by the pipeline components."""

    _logger: Optional[AuditLogger] = None
    _component: str = "tinyurl"

    def _log_debug(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(LogLevel.DEBUG, self._component, message, data)

    def _log_info(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(LogLevel.INFO, self._component, message, data)

    def _log_warn(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(LogLevel.WARN, self._component, message, data)

    def _log_error(
        self,
        message: str,
        error: Optional[Exception] = None,
        data: Optional[dict] = None,
    ) -> None:
        if self._logger:
            self._logger.log_error(self._component, message, error=error, additional_data=data)
