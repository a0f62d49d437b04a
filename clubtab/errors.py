"""Exception hierarchy shared by the engine, retry policy and backends."""

from __future__ import annotations


class ClubtabError(Exception):
    """Base class for all engine errors."""


class BackendError(ClubtabError):
    """A backend call failed."""

    def __init__(self, message: str, *, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class TransientBackendError(BackendError):
    """Network failure, timeout or 5xx-equivalent; safe to retry."""


class TerminalBackendError(BackendError):
    """Validation or permission failure; retrying cannot help."""


class InvalidTimeError(ClubtabError, ValueError):
    """A time string is not a valid HH:MM value."""


class InvalidTransitionError(ClubtabError):
    """An order cannot move to the requested status."""


class OrderNotFoundError(ClubtabError, KeyError):
    """No order with the given id in the collection the operation needs."""


class EngineClosedError(ClubtabError):
    """The engine was closed; it accepts no further mutations."""


def error_for_status(status: int, message: str, code: str | None = None) -> BackendError:
    """Classify an HTTP status into a transient or terminal backend error."""
    if status >= 500 or status in (408, 429):
        return TransientBackendError(message, status=status, code=code)
    return TerminalBackendError(message, status=status, code=code)
