"""
Record store capability contract.

The pipeline talks to the remote business-record store through a closed set
of typed operations. Each operation is a frozen dataclass; RecordStore.execute()
dispatches on the operation's type to the matching capability method, which
concrete stores implement.

Operations:
  CreateRecord    -> new record id (str)
  UpdateRecord    -> None
  RetrieveRecord  -> dict of the requested columns
  QueryRecords    -> list[Record] matching one equality filter
  InitUpload      -> continuation token for a block upload session
  UploadBlock     -> None
  CommitUpload    -> None
  InitDownload    -> continuation token for a download session
  DownloadRange   -> bytes

Stores raise StoreError (or a subclass) for any failure. A store that lacks a
capability raises UnsupportedOperation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import singledispatchmethod
from typing import Any


@dataclass(frozen=True)
class RecordRef:
    """Address of one record: entity name plus store-assigned id."""
    entity: str
    id: str


@dataclass(frozen=True)
class Record:
    """A record returned by a query."""
    entity: str
    id: str
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def ref(self) -> RecordRef:
        return RecordRef(self.entity, self.id)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CreateRecord:
    entity: str
    fields: dict[str, Any]


@dataclass(frozen=True)
class UpdateRecord:
    target: RecordRef
    fields: dict[str, Any]


@dataclass(frozen=True)
class RetrieveRecord:
    target: RecordRef
    columns: tuple[str, ...]


@dataclass(frozen=True)
class QueryRecords:
    entity: str
    field: str
    value: Any
    columns: tuple[str, ...] = ()


@dataclass(frozen=True)
class InitUpload:
    target: RecordRef
    attribute: str
    filename: str


@dataclass(frozen=True)
class UploadBlock:
    token: str
    block_id: str
    data: bytes


@dataclass(frozen=True)
class CommitUpload:
    token: str
    block_ids: tuple[str, ...]
    filename: str
    mime_type: str


@dataclass(frozen=True)
class InitDownload:
    target: RecordRef
    attribute: str


@dataclass(frozen=True)
class DownloadRange:
    token: str
    offset: int
    length: int


MUTATING_OPERATIONS = (CreateRecord, UpdateRecord, InitUpload, UploadBlock, CommitUpload)


# ---------------------------------------------------------------------------
# Store contract
# ---------------------------------------------------------------------------

class RecordStore(ABC):
    """Narrow interface implemented by every record-store backend."""

    @singledispatchmethod
    def execute(self, operation):
        raise TypeError(f"Unknown record store operation: {type(operation).__name__}")

    @execute.register
    def _(self, operation: CreateRecord) -> str:
        return self.create(operation.entity, operation.fields)

    @execute.register
    def _(self, operation: UpdateRecord) -> None:
        return self.update(operation.target, operation.fields)

    @execute.register
    def _(self, operation: RetrieveRecord) -> dict:
        return self.retrieve(operation.target, operation.columns)

    @execute.register
    def _(self, operation: QueryRecords) -> list:
        return self.query(operation.entity, operation.field, operation.value, operation.columns)

    @execute.register
    def _(self, operation: InitUpload) -> str:
        return self.init_upload(operation.target, operation.attribute, operation.filename)

    @execute.register
    def _(self, operation: UploadBlock) -> None:
        return self.upload_block(operation.token, operation.block_id, operation.data)

    @execute.register
    def _(self, operation: CommitUpload) -> None:
        return self.commit_upload(
            operation.token, operation.block_ids, operation.filename, operation.mime_type
        )

    @execute.register
    def _(self, operation: InitDownload) -> str:
        return self.init_download(operation.target, operation.attribute)

    @execute.register
    def _(self, operation: DownloadRange) -> bytes:
        return self.download_range(operation.token, operation.offset, operation.length)

    # Capability methods -----------------------------------------------------

    @abstractmethod
    def create(self, entity: str, fields: dict[str, Any]) -> str: ...

    @abstractmethod
    def update(self, target: RecordRef, fields: dict[str, Any]) -> None: ...

    @abstractmethod
    def retrieve(self, target: RecordRef, columns: tuple[str, ...]) -> dict: ...

    @abstractmethod
    def query(
        self, entity: str, field: str, value: Any, columns: tuple[str, ...] = ()
    ) -> list[Record]: ...

    @abstractmethod
    def init_upload(self, target: RecordRef, attribute: str, filename: str) -> str: ...

    @abstractmethod
    def upload_block(self, token: str, block_id: str, data: bytes) -> None: ...

    @abstractmethod
    def commit_upload(
        self, token: str, block_ids: tuple[str, ...], filename: str, mime_type: str
    ) -> None: ...

    @abstractmethod
    def init_download(self, target: RecordRef, attribute: str) -> str: ...

    @abstractmethod
    def download_range(self, token: str, offset: int, length: int) -> bytes: ...
