"""
Exception hierarchy for the envelope event pipeline.

Everything raised on purpose inherits from EnvelopeSyncError so callers can
catch broadly or narrowly. Each exception carries the pipeline step it came
from (``where``) and the run's correlation id for log correlation.

Upload tier failures and audit-note failures are NOT exceptions: they are
returned as ``Outcome`` values (see envelope_sync.models.results) and may be discarded.
"""

from __future__ import annotations


class EnvelopeSyncError(Exception):
    """Base exception for all pipeline errors."""

    where = "execute"

    def __init__(
        self,
        message: str,
        *,
        where: str | None = None,
        correlation_id: str | None = None,
        details: dict | None = None,
    ) -> None:
        if where is not None:
            self.where = where
        self.correlation_id = correlation_id
        self.details = details or {}
        super().__init__(message)


class InputError(EnvelopeSyncError):
    """Malformed or incomplete inbound event. Raised before any store contact."""

    where = "input"


class AuthorizationError(EnvelopeSyncError):
    """The event's validation token does not match the expected value."""

    where = "validate"


class TargetNotFoundError(EnvelopeSyncError):
    """No target record matches the envelope id."""

    where = "locate"


class StoreError(EnvelopeSyncError):
    """A record-store call failed."""


class UnsupportedOperation(StoreError):
    """The record store does not offer the requested capability."""


class RecordNotFound(StoreError):
    """A record addressed by id does not exist in the store."""
