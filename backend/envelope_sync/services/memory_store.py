"""
In-memory record store.

Used for local dry runs (RECORD_STORE_BACKEND=memory) and by the test suite.
Capability switches mimic record stores that lack the block-upload or
download-session mechanisms, and every executed operation is appended to
``operations`` so callers can inspect exactly what was sent.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any

from envelope_sync.errors import RecordNotFound, StoreError, UnsupportedOperation
from envelope_sync.services.record_store import Record, RecordRef, RecordStore


@dataclass
class _UploadSession:
    target: RecordRef
    attribute: str
    filename: str
    blocks: dict[str, bytes] = field(default_factory=dict)


@dataclass
class StoredFile:
    """A file committed through the block protocol."""
    filename: str
    mime_type: str
    data: bytes
    block_ids: tuple[str, ...] = ()


class InMemoryRecordStore(RecordStore):
    """Dict-backed RecordStore with switchable file capabilities."""

    def __init__(
        self,
        supports_file_blocks: bool = True,
        supports_download: bool = True,
    ) -> None:
        self.supports_file_blocks = supports_file_blocks
        self.supports_download = supports_download
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}
        self.files: dict[tuple[str, str, str], StoredFile] = {}
        self.operations: list = []
        self._uploads: dict[str, _UploadSession] = {}
        self._downloads: dict[str, tuple[str, str, str]] = {}

    def execute(self, operation):
        self.operations.append(operation)
        return super().execute(operation)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def seed(self, entity: str, fields: dict[str, Any], record_id: str | None = None) -> str:
        """Insert a record directly, bypassing the operation log."""
        record_id = record_id or str(uuid.uuid4())
        self.tables.setdefault(entity, {})[record_id] = dict(fields)
        return record_id

    def get(self, entity: str, record_id: str) -> dict[str, Any]:
        """Return the stored fields of a record (KeyError if absent)."""
        return self.tables[entity][record_id]

    def records(self, entity: str) -> list[dict[str, Any]]:
        return list(self.tables.get(entity, {}).values())

    def _row(self, target: RecordRef) -> dict[str, Any]:
        try:
            return self.tables[target.entity][target.id]
        except KeyError:
            raise RecordNotFound(f"{target.entity}({target.id}) does not exist")

    # ------------------------------------------------------------------
    # Record capabilities
    # ------------------------------------------------------------------

    def create(self, entity: str, fields: dict[str, Any]) -> str:
        return self.seed(entity, fields)

    def update(self, target: RecordRef, fields: dict[str, Any]) -> None:
        self._row(target).update(fields)

    def retrieve(self, target: RecordRef, columns: tuple[str, ...]) -> dict:
        row = self._row(target)
        if not columns:
            return dict(row)
        return {c: row[c] for c in columns if c in row}

    def query(self, entity: str, field: str, value: Any, columns: tuple[str, ...] = ()) -> list[Record]:
        matches = []
        for record_id, row in self.tables.get(entity, {}).items():
            if row.get(field) == value:
                selected = dict(row) if not columns else {c: row.get(c) for c in columns}
                matches.append(Record(entity=entity, id=record_id, fields=selected))
        return matches

    # ------------------------------------------------------------------
    # File capabilities
    # ------------------------------------------------------------------

    def init_upload(self, target: RecordRef, attribute: str, filename: str) -> str:
        if not self.supports_file_blocks:
            raise UnsupportedOperation("InitializeFileBlocksUpload is not supported")
        self._row(target)
        token = uuid.uuid4().hex
        self._uploads[token] = _UploadSession(target, attribute, filename)
        return token

    def upload_block(self, token: str, block_id: str, data: bytes) -> None:
        session = self._uploads.get(token)
        if session is None:
            raise StoreError(f"Unknown upload token {token!r}")
        session.blocks[block_id] = bytes(data)

    def commit_upload(self, token: str, block_ids: tuple[str, ...], filename: str, mime_type: str) -> None:
        session = self._uploads.pop(token, None)
        if session is None:
            raise StoreError(f"Unknown upload token {token!r}")
        missing = [b for b in block_ids if b not in session.blocks]
        if missing:
            raise StoreError(f"Commit references unknown blocks: {missing}")
        data = b"".join(session.blocks[b] for b in block_ids)
        key = (session.target.entity, session.target.id, session.attribute)
        self.files[key] = StoredFile(filename, mime_type, data, tuple(block_ids))

    def init_download(self, target: RecordRef, attribute: str) -> str:
        if not self.supports_download:
            raise UnsupportedOperation("InitializeFileBlocksDownload is not supported")
        key = (target.entity, target.id, attribute)
        if key not in self.files:
            raise StoreError(f"No file stored in {target.entity}.{attribute} for {target.id}")
        token = uuid.uuid4().hex
        self._downloads[token] = key
        return token

    def download_range(self, token: str, offset: int, length: int) -> bytes:
        key = self._downloads.get(token)
        if key is None:
            raise StoreError(f"Unknown download token {token!r}")
        return self.files[key].data[offset:offset + length]
