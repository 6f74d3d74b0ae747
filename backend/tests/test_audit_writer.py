"""
Audit writer tests: notes are best-effort and never raise.
"""

from unittest.mock import MagicMock

from envelope_sync.errors import StoreError
from envelope_sync.services.audit_writer import AuditWriter
from envelope_sync.services.memory_store import InMemoryRecordStore
from envelope_sync.services.record_store import RecordRef


class TestAppendNote:

    def test_creates_note_linked_to_target(self):
        store = InMemoryRecordStore()
        target = RecordRef("signature_requests", "rec-1")

        outcome = AuditWriter(store, "notes").append_note(target, "DocuSign: envelope-sent", "body")

        assert outcome.ok is True
        notes = store.records("notes")
        assert notes == [
            {
                "subject": "DocuSign: envelope-sent",
                "note_text": "body",
                "object_type": "signature_requests",
                "object_id": "rec-1",
            }
        ]

    def test_store_failure_is_returned_not_raised(self):
        store = MagicMock()
        store.execute.side_effect = StoreError("notes table is read-only")

        outcome = AuditWriter(store).append_note(RecordRef("t", "1"), "s", "b")

        assert outcome.ok is False
        assert "read-only" in outcome.error

    def test_unexpected_exception_is_also_swallowed(self):
        store = MagicMock()
        store.execute.side_effect = RuntimeError("connection reset")

        outcome = AuditWriter(store).append_note(RecordRef("t", "1"), "s", "b")

        assert outcome.ok is False
        assert store.execute.call_count == 1
