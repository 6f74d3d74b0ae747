"""
Best-effort audit notes.

Notes are a human-readable trace attached to a record. Writing one must never
affect the outcome of a run: failures are logged and returned as an Outcome
the caller is free to ignore. Nothing is retried.
"""

import logging

from envelope_sync.models.results import Outcome
from envelope_sync.services.record_store import CreateRecord, RecordRef, RecordStore

logger = logging.getLogger(__name__)


class AuditWriter:
    def __init__(self, store: RecordStore, note_entity: str = "notes") -> None:
        self.store = store
        self.note_entity = note_entity

    def append_note(self, target: RecordRef, subject: str, body: str) -> Outcome:
        try:
            self.store.execute(
                CreateRecord(
                    entity=self.note_entity,
                    fields={
                        "subject": subject,
                        "note_text": body,
                        "object_type": target.entity,
                        "object_id": target.id,
                    },
                )
            )
        except Exception as e:
            logger.warning(f"Failed to append audit note to {target.entity}({target.id}): {e}")
            return Outcome.failure(e)
        return Outcome.success()
