"""
Error taxonomy shared by the parser, the applicator and the provider layer.

Every error raised by the core derives from :class:`ReviewerError` so the
CLI can turn it into a process exit code with :func:`exit_code_for`.
"""

from __future__ import annotations

from enum import Enum


class ReviewerError(Exception):
    """Base class for all llm_reviewer errors."""


class ConfigError(ReviewerError):
    """Invalid or missing configuration."""


# ── Edit-script parsing ──


class ParseErrorKind(str, Enum):
    MISSING_SUMMARY = "missing_summary"
    INVALID_FORMAT = "invalid_format"
    MISSING_FIELD = "missing_field"
    INVALID_NUMBER = "invalid_number"
    INVALID_RANGE = "invalid_range"
    UNKNOWN_CHANGE_TYPE = "unknown_change_type"
    UNKNOWN_ACTION_TYPE = "unknown_action_type"
    UNEXPECTED_EOF = "unexpected_eof"
    CONTENT_TOO_LARGE = "content_too_large"


class ParseError(ReviewerError):
    """Malformed edit script.

    ``line`` is the 1-based line of the input where the problem was found,
    ``field`` the field being read (when there is one) and ``lexeme`` the
    offending text.
    """

    def __init__(self, kind: ParseErrorKind, line: int,
                 field: str | None = None, lexeme: str = "",
                 message: str | None = None):
        self.kind = kind
        self.line = line
        self.field = field
        self.lexeme = lexeme
        self.message = message or kind.value.replace("_", " ")
        super().__init__(str(self))

    def __str__(self) -> str:
        where = f"line {self.line}"
        if self.field:
            where += f", field {self.field}"
        text = f"{self.message} ({where})"
        if self.lexeme:
            text += f": {self.lexeme!r}"
        return text


# ── Applicator ──


class ValidationError(ReviewerError):
    """An edit references a nonexistent line or mismatched content."""

    def __init__(self, message: str, path: str | None = None,
                 line: int | None = None, expected: str | None = None,
                 actual: str | None = None):
        self.path = path
        self.line = line
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class FileOperationError(ReviewerError):
    """Disk read/write failure for one file."""

    def __init__(self, path: str, operation: str, reason: str):
        self.path = path
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed for {path}: {reason}")


# ── Providers ──


class ProviderErrorKind(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    API_ERROR = "api_error"
    SERIALIZATION = "serialization"


_RETRYABLE_KINDS = {ProviderErrorKind.NETWORK, ProviderErrorKind.RATE_LIMITED}


class ProviderError(ReviewerError):
    """Failure talking to an LLM provider."""

    def __init__(self, kind: ProviderErrorKind, message: str,
                 status_code: int | None = None):
        self.kind = kind
        self.status_code = status_code
        super().__init__(f"[{kind.value}] {message}")

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE_KINDS


class QueryTimeoutError(ReviewerError):
    """The deadline of a logical query expired."""


# ── Exit codes ──

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_PARSE = 3
EXIT_APPLY = 4
EXIT_PROVIDER = 5
EXIT_TIMEOUT = 124


def exit_code_for(exc: BaseException) -> int:
    """Map an exception to the documented process exit code."""
    if isinstance(exc, ConfigError):
        return EXIT_CONFIG
    if isinstance(exc, ParseError):
        return EXIT_PARSE
    if isinstance(exc, (ValidationError, FileOperationError)):
        return EXIT_APPLY
    if isinstance(exc, ProviderError):
        return EXIT_PROVIDER
    if isinstance(exc, QueryTimeoutError):
        return EXIT_TIMEOUT
    return EXIT_FAILURE
