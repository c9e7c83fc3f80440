"""Service exceptions."""

from typing import Any


class EntvalError(Exception):
    """Base exception for the validation service."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ExternalLookupError(EntvalError):
    """The SML lookup did not return usable data."""

    retryable = False

    def __init__(self, message: str = "External lookup failed", details: dict[str, Any] | None = None):
        super().__init__("EXTERNAL_LOOKUP_ERROR", message, details)


class TransientLookupError(ExternalLookupError):
    """Timeout, transport or auth failure - worth retrying on a later pass."""

    retryable = True


class PermanentLookupError(ExternalLookupError):
    """Unknown tenant or malformed response - retrying will not help."""


class LookupNotConfiguredError(EntvalError):
    """No SML credentials configured."""

    def __init__(self, message: str = "SML lookup not configured"):
        super().__init__("LOOKUP_NOT_CONFIGURED", message)
