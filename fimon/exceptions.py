"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (unreadable files, storage failures). The global handler logs the full
  message at ERROR and returns a generic "Internal server error" (500).
- ``ValueError``: for validation errors that are safe to forward to clients.
  ``PathNotFoundError`` is the one the files API maps to 400.
- ``WatchSubscriptionFailure`` never reaches clients: a path whose OS watch
  cannot be established stays registered and is covered by the periodic sweep.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``fimon/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class PathNotFoundError(ValueError):
    """The path to register does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"File does not exist: {path}")
        self.path = path


class ReadFailure(InternalServerError):
    """A file could not be opened or fully read while computing its fingerprint."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to read {path}: {reason}")
        self.path = path
        self.reason = reason


class StoreFailure(InternalServerError):
    """A record store operation failed."""

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(f"Record store {operation} failed: {detail}")
        self.operation = operation


class WatchSubscriptionFailure(Exception):
    """The OS could not establish a change watch on a path."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot watch {path}: {reason}")
        self.path = path
