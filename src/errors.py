"""Error taxonomy shared by the session and message sync layers.

``AuthError`` and ``SendError`` are raised to callers. ``StorageError`` and
``TransientStreamError`` are absorbed by the caches and the reconciler.
"""

from __future__ import annotations


class ChatlineError(Exception):
    """Base class for every error raised by chatline."""


class AuthError(ChatlineError):
    """Authentication, registration or sign-out failed."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class SendError(ChatlineError):
    """A message could not be appended to the remote log."""


class StorageError(ChatlineError):
    """The local key-value store failed to read or write."""


class TransientStreamError(ChatlineError):
    """The live message subscription hiccupped but is still attached."""
