"""
Webhook processor: turns one InboundEvent into one terminal audit record.

State machine per run:

    received -> validating -> locating -> (uploading) -> finalizing -> processed | failed

Steps:
0. Pre-flight: event name and envelope id must be present (no store access otherwise).
1. Create the webhook log record (received). If that fails, nothing else runs.
2. Validate the event's token.                       -> failed("invalid token")
3. Locate the target record by envelope id.          -> failed("target not found")
4. Append an audit note to the target (best-effort).
5. Classify the event and apply it:
     completed      upload the first document, then set the "signed" state pair
     finish_later   set the finish-later pair, if configured
     declined       set the declined pair, if configured
     unhandled      nothing to change
6. Finalize the log record as processed.

Any other exception aborts the run; the log record, if it exists, is marked
failed with the exception message (best-effort). The log record is finalized
at most once per run.

Redelivered events are not deduplicated: every call is an independent run
that creates its own log record and repeats the note and upload steps.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from envelope_sync.config import PipelineConfig, StateStatus
from envelope_sync.errors import AuthorizationError, EnvelopeSyncError, TargetNotFoundError
from envelope_sync.models.inbound_event import InboundEvent
from envelope_sync.models.results import (
    EventCategory,
    LogState,
    Outcome,
    RunState,
    TerminalResult,
    UploadResult,
)
from envelope_sync.services.audit_writer import AuditWriter
from envelope_sync.services.chunked_upload import ChunkedUploadEngine, decode_document
from envelope_sync.services.record_locator import RecordLocator
from envelope_sync.services.record_store import CreateRecord, RecordRef, RecordStore, UpdateRecord
from envelope_sync.services.token_validator import TokenValidator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Event classification
# ---------------------------------------------------------------------------

_EVENT_CATEGORIES: dict[str, EventCategory] = {
    "envelope-completed": EventCategory.COMPLETED,
    "recipient-finish-later": EventCategory.FINISH_LATER,
    "envelope-finish-later": EventCategory.FINISH_LATER,
    "envelope-declined": EventCategory.DECLINED,
    "recipient-declined": EventCategory.DECLINED,
}


def classify_event(event_name: Optional[str]) -> EventCategory:
    """Map a Connect event name to its category. Unknown names are UNHANDLED, never an error."""
    return _EVENT_CATEGORIES.get((event_name or "").strip().lower(), EventCategory.UNHANDLED)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Per-run state
# ---------------------------------------------------------------------------

class _Run:
    """Mutable bookkeeping for a single process() call. Never shared across runs."""

    def __init__(self, event: InboundEvent) -> None:
        self.event = event
        self.correlation_id = uuid.uuid4().hex
        self.state = RunState.RECEIVED
        self.trail: list[RunState] = [RunState.RECEIVED]
        self.log_ref: Optional[RecordRef] = None
        self.target: Optional[RecordRef] = None
        self.upload: Optional[UploadResult] = None
        self.finalized = False

    def advance(self, state: RunState) -> None:
        logger.debug(f"[{self.correlation_id}] {self.state.value} -> {state.value}")
        self.state = state
        self.trail.append(state)

    def result(self, ok: bool, where: str, handled=None, error: Optional[str] = None) -> TerminalResult:
        return TerminalResult(
            ok=ok,
            where=where,
            handled=handled,
            envelope_id=self.event.envelope_id or None,
            error=error,
            correlation_id=self.correlation_id,
            log_id=self.log_ref.id if self.log_ref else None,
            upload=self.upload,
            trail=list(self.trail),
        )


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------

class WebhookProcessor:
    """
    Orchestrates validator, locator, upload engine and audit writer for one event.

    Usage::

        processor = WebhookProcessor(store, load_config())
        result = processor.process(event)
        print(json.dumps(result.to_output()))
    """

    def __init__(
        self,
        store: RecordStore,
        config: PipelineConfig,
        validator: Optional[TokenValidator] = None,
        locator: Optional[RecordLocator] = None,
        uploader: Optional[ChunkedUploadEngine] = None,
        audit: Optional[AuditWriter] = None,
    ) -> None:
        self.store = store
        self.config = config
        self.validator = validator or TokenValidator(store, config.variable_entity)
        self.locator = locator or RecordLocator(
            store,
            entity=config.target_entity,
            key_field=config.target_key_field,
            columns=(config.target_key_field, config.state_field, config.status_field),
        )
        self.uploader = uploader or ChunkedUploadEngine(
            store,
            block_size=config.block_size,
            note_entity=config.note_entity,
            shadow_suffix=config.shadow_suffix,
            probe_length=config.verify_probe_length,
            default_filename=config.default_filename,
            default_mime_type=config.default_mime_type,
        )
        self.audit = audit or AuditWriter(store, config.note_entity)

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def process(self, event: InboundEvent) -> TerminalResult:
        run = _Run(event)

        missing = [
            name for name, value in (("event", event.event_name), ("envelopeId", event.envelope_id))
            if not value or not value.strip()
        ]
        if missing:
            error = f"missing required field(s): {', '.join(missing)}"
            logger.warning(f"[{run.correlation_id}] Rejected event before store access: {error}")
            return run.result(ok=False, where="input", error=error)

        logger.info(
            f"[{run.correlation_id}] Processing {event.event_name!r} for envelope {event.envelope_id}"
        )

        # 1. Log record first; nothing else runs if it cannot be written
        try:
            run.log_ref = self._create_log(run)
        except Exception as e:
            logger.error(f"[{run.correlation_id}] Could not create webhook log record: {e}")
            return run.result(ok=False, where="log-create", error=str(e))

        try:
            category = self._run_steps(run)
        except EnvelopeSyncError as e:
            self._finalize(run, LogState.FAILED, reason=str(e))
            logger.warning(f"[{run.correlation_id}] Event failed at {e.where}: {e}")
            return run.result(ok=False, where=e.where, error=str(e))
        except Exception as e:
            logger.exception(f"[{run.correlation_id}] Unexpected error while processing event")
            self._finalize(run, LogState.FAILED, reason=str(e) or type(e).__name__)
            return run.result(ok=False, where="execute", error=str(e) or type(e).__name__)

        logger.info(f"[{run.correlation_id}] Envelope {event.envelope_id} handled as {category.value}")
        return run.result(ok=True, where="execute", handled=category)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _run_steps(self, run: _Run) -> EventCategory:
        event = run.event

        # 2. Validate
        run.advance(RunState.VALIDATING)
        if not self.validator.is_valid(self.config.validation_schema_name, event.validation_token):
            raise AuthorizationError("invalid token", correlation_id=run.correlation_id)

        # 3. Locate
        run.advance(RunState.LOCATING)
        record = self.locator.find_by_envelope_id(event.envelope_id)
        if record is None:
            raise TargetNotFoundError("target not found", correlation_id=run.correlation_id)
        run.target = record.ref

        # 4. Audit note (outcome discarded)
        self.audit.append_note(run.target, *self._describe(run))

        # 5. Apply
        category = classify_event(event.event_name)
        if category is EventCategory.COMPLETED:
            data, filename = self._first_document(run)
            if data:
                run.advance(RunState.UPLOADING)
                run.upload = self.uploader.upload(
                    run.target,
                    self.config.target_file_attribute,
                    filename,
                    self.config.default_mime_type,
                    data,
                )
            self._set_target_state(run.target, self.config.completed)
        elif category is EventCategory.FINISH_LATER:
            self._set_target_state(run.target, self.config.finish_later)
        elif category is EventCategory.DECLINED:
            self._set_target_state(run.target, self.config.declined)

        # 6. Finalize
        self._finalize(run, LogState.PROCESSED)
        return category

    def _first_document(self, run: _Run) -> tuple[bytes, str]:
        """Return the first document with decodable, non-empty content."""
        for document in run.event.documents:
            try:
                data = decode_document(document.content_base64)
            except ValueError as e:
                logger.warning(
                    f"[{run.correlation_id}] Document {document.name!r} is not valid base64: {e}"
                )
                continue
            if data:
                return data, document.name
        return b"", ""

    def _describe(self, run: _Run) -> tuple[str, str]:
        event = run.event
        subject = f"DocuSign: {event.event_name}"
        lines = [
            f"Event: {event.event_name}",
            f"Envelope: {event.envelope_id}",
            f"Status: {event.summary_status or '-'}",
            f"Subject: {event.email_subject or '-'}",
            f"Sender: {event.sender_name or '-'} <{event.sender_email or '-'}>",
            f"Documents: {len(event.documents)}",
            f"Correlation: {run.correlation_id}",
        ]
        return subject, "\n".join(lines)

    def _set_target_state(self, target: RecordRef, pair: Optional[StateStatus]) -> None:
        if pair is None:
            return
        self.store.execute(
            UpdateRecord(
                target,
                {self.config.state_field: pair.state, self.config.status_field: pair.status},
            )
        )

    # ------------------------------------------------------------------
    # Webhook log record
    # ------------------------------------------------------------------

    def _state_fields(self, pair: Optional[StateStatus]) -> dict:
        if pair is None:
            return {}
        return {self.config.state_field: pair.state, self.config.status_field: pair.status}

    def _create_log(self, run: _Run) -> RecordRef:
        event = run.event
        fields = {
            "correlation_id": run.correlation_id,
            "log_state": LogState.RECEIVED.value,
            "event_name": event.event_name,
            "envelope_id": event.envelope_id,
            "payload_summary": json.dumps(event.summary()),
            "raw_body": event.raw_body,
            "received_at": _now_iso(),
            **self._state_fields(self.config.received),
        }
        log_id = self.store.execute(CreateRecord(self.config.log_entity, fields))
        return RecordRef(self.config.log_entity, str(log_id))

    def _finalize(self, run: _Run, state: LogState, reason: Optional[str] = None) -> Outcome:
        """
        Move the log record to its terminal state.

        Runs at most once. A failure while marking a run failed is logged and
        swallowed; a failure while marking it processed propagates so the run
        is reported (and marked) as failed instead.
        """
        if run.finalized or run.log_ref is None:
            return Outcome.failure("log record already finalized or missing")

        run.advance(RunState.FINALIZING)
        pair = self.config.processed if state is LogState.PROCESSED else self.config.failed
        fields = {
            "log_state": state.value,
            "completed_at": _now_iso(),
            **self._state_fields(pair),
        }
        if reason is not None:
            fields["failure_reason"] = reason
        if run.target is not None:
            fields["target_id"] = run.target.id

        try:
            self.store.execute(UpdateRecord(run.log_ref, fields))
        except Exception as e:
            if state is LogState.PROCESSED:
                raise
            run.finalized = True
            run.advance(RunState.FAILED)
            logger.error(f"[{run.correlation_id}] Could not mark log record failed: {e}")
            return Outcome.failure(e)

        run.finalized = True
        run.advance(RunState.PROCESSED if state is LogState.PROCESSED else RunState.FAILED)
        return Outcome.success()
