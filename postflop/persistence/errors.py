"""Errors raised while encoding or decoding a solver stream."""

from __future__ import annotations


class SerializationError(RuntimeError):
    """Base class for solver stream errors."""


class FormatVersionMismatch(SerializationError):
    """Raised when a stream was written by a different format version.

    Nothing after the version tag has been read when this is raised.
    """

    def __init__(self, expected: str, found: str) -> None:
        super().__init__(f"Version mismatch: expected {expected!r}, but got {found!r}")
        self.expected = expected
        self.found = found


class MalformedStream(SerializationError):
    """Raised for truncated or invalid data, or data that cannot be replayed."""
