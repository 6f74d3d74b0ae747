"""
Result and state types shared by the pipeline components.

Models:
  EventCategory   — the four ways an event can be handled
  LogState        — lifecycle of a webhook log record in the store
  RunState        — in-process state machine of one processor run
  UploadTier      — the three upload mechanisms, in priority order
  UploadResult    — what the upload engine did (not persisted)
  Outcome         — explicit result of a best-effort operation
  TerminalResult  — the single outcome returned for one event
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class EventCategory(str, Enum):
    COMPLETED = "completed"
    FINISH_LATER = "finish_later"
    DECLINED = "declined"
    UNHANDLED = "unhandled"


class LogState(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"


class RunState(str, Enum):
    RECEIVED = "received"
    VALIDATING = "validating"
    LOCATING = "locating"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"
    PROCESSED = "processed"
    FAILED = "failed"


class UploadTier(str, Enum):
    BLOCK_PROTOCOL = "block_protocol"
    DIRECT_ATTRIBUTE = "direct_attribute"
    NOTE_ATTACHMENT = "note_attachment"


@dataclass(frozen=True)
class UploadResult:
    """
    Which tier stored the document.

    verified is always True for NOTE_ATTACHMENT; for the other tiers it is
    only True after a read-back confirmed the content.
    """
    tier_used: UploadTier
    verified: bool
    bytes_written: int


@dataclass(frozen=True)
class Outcome:
    """Success/failure of a best-effort call. Callers are allowed to ignore it."""
    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(ok=True)

    @classmethod
    def failure(cls, exc: BaseException | str) -> "Outcome":
        return cls(ok=False, error=str(exc))


class TerminalResult(BaseModel):
    """
    The one outcome of WebhookProcessor.process().

    to_output() renders the JSON object written back to the transport layer;
    exit_code maps the outcome to the invoker's process exit status.
    """

    ok: bool
    where: str
    handled: Optional[EventCategory] = None
    envelope_id: Optional[str] = None
    error: Optional[str] = None
    correlation_id: Optional[str] = None
    log_id: Optional[str] = None
    upload: Optional[UploadResult] = None
    trail: list[RunState] = []

    @property
    def exit_code(self) -> int:
        if self.ok:
            return 0
        if self.where in ("input", "parse-stdin"):
            return 1
        return 2

    def to_output(self) -> dict:
        output: dict = {"ok": self.ok, "source": "crm", "where": self.where}
        if self.handled is not None:
            output["handled"] = self.handled.value
        if self.envelope_id:
            output["envelopeId"] = self.envelope_id
        if self.error is not None:
            output["error"] = self.error
        return output
