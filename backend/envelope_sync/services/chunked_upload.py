"""
Tiered document upload into the record store.

A signed document is stored using the best mechanism the store actually
supports. Return codes are not trusted: the first two tiers only count as
successful once the content has been read back.

Tiers, always attempted in this order:
  1. block_protocol    InitUpload -> UploadBlock x N -> CommitUpload
  2. direct_attribute  the whole byte string written as the column value
                       (plus the "<attr>_name" shadow column, best-effort)
  3. note_attachment   a note linked to the record carrying the file as
                       base64. Treated as durable once created; it also
                       clears any shadow name left by a failed tier 2.

Verification (tiers 1 and 2): open a download session and read the first
bytes; when that yields nothing, read the column directly. Either must
return non-empty content.
"""

import base64
import logging
import re
from abc import ABC, abstractmethod
from typing import Iterator, Optional

from envelope_sync.config import DEFAULT_BLOCK_SIZE
from envelope_sync.errors import StoreError
from envelope_sync.models.results import Outcome, UploadResult, UploadTier
from envelope_sync.services.record_store import (
    CommitUpload,
    CreateRecord,
    DownloadRange,
    InitDownload,
    InitUpload,
    RecordRef,
    RecordStore,
    RetrieveRecord,
    UpdateRecord,
    UploadBlock,
)

logger = logging.getLogger(__name__)

_DATA_PREFIX = re.compile(r"^.*?base64,", re.IGNORECASE | re.DOTALL)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def strip_data_prefix(content_base64: str) -> str:
    """Drop a data-URI header such as 'data:application/pdf;base64,'."""
    return _DATA_PREFIX.sub("", (content_base64 or "").strip(), count=1)


def decode_document(content_base64: str) -> bytes:
    """
    Decode a document's base64 payload.

    Raises ValueError (binascii.Error) when the payload is not valid base64.
    """
    cleaned = re.sub(r"\s+", "", strip_data_prefix(content_base64))
    return base64.b64decode(cleaned, validate=True)


def block_id(index: int) -> str:
    """Block identifiers are base64("block-00000000"), zero-padded so they sort in order."""
    return base64.b64encode(f"block-{index:08d}".encode("utf-8")).decode("ascii")


def split_blocks(data: bytes, block_size: int) -> Iterator[bytes]:
    """Yield consecutive chunks of block_size bytes; the last may be shorter."""
    if block_size <= 0:
        raise ValueError("block_size must be positive")
    for offset in range(0, len(data), block_size):
        yield data[offset:offset + block_size]


def shadow_field(attribute: str, suffix: str = "_name") -> str:
    return f"{attribute}{suffix}"


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class UploadStrategy(ABC):
    """One interchangeable upload mechanism."""

    tier: UploadTier
    requires_verification = True

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    @abstractmethod
    def attempt(
        self,
        target: RecordRef,
        attribute: str,
        filename: str,
        mime_type: str,
        data: bytes,
    ) -> Outcome:
        """Try to store data. Expected store limitations come back as a failed Outcome."""


class BlockProtocolUpload(UploadStrategy):
    tier = UploadTier.BLOCK_PROTOCOL

    def __init__(self, store: RecordStore, block_size: int = DEFAULT_BLOCK_SIZE) -> None:
        super().__init__(store)
        self.block_size = block_size

    def attempt(self, target, attribute, filename, mime_type, data) -> Outcome:
        try:
            token = self.store.execute(InitUpload(target, attribute, filename))
            if not token or not str(token).strip():
                return Outcome.failure("upload session returned no continuation token")

            block_ids: list[str] = []
            for index, chunk in enumerate(split_blocks(data, self.block_size)):
                bid = block_id(index)
                self.store.execute(UploadBlock(token=token, block_id=bid, data=chunk))
                block_ids.append(bid)

            self.store.execute(
                CommitUpload(
                    token=token,
                    block_ids=tuple(block_ids),
                    filename=filename,
                    mime_type=mime_type,
                )
            )
            logger.debug(f"Committed {len(block_ids)} blocks to {target.entity}.{attribute}")
        except Exception as e:
            return Outcome.failure(e)
        return Outcome.success()


class DirectAttributeUpload(UploadStrategy):
    tier = UploadTier.DIRECT_ATTRIBUTE

    def __init__(self, store: RecordStore, shadow_suffix: str = "_name") -> None:
        super().__init__(store)
        self.shadow_suffix = shadow_suffix

    def set_shadow_name(self, target: RecordRef, attribute: str, filename: str) -> Outcome:
        """Best-effort: not every column has a shadow name column."""
        try:
            self.store.execute(
                UpdateRecord(target, {shadow_field(attribute, self.shadow_suffix): filename})
            )
        except Exception as e:
            logger.info(f"Shadow name for {target.entity}.{attribute} not set: {e}")
            return Outcome.failure(e)
        return Outcome.success()

    def attempt(self, target, attribute, filename, mime_type, data) -> Outcome:
        try:
            self.store.execute(UpdateRecord(target, {attribute: bytes(data)}))
        except Exception as e:
            return Outcome.failure(e)
        self.set_shadow_name(target, attribute, filename)
        return Outcome.success()


class NoteAttachmentUpload(UploadStrategy):
    """
    Terminal fallback. Note creation is treated as durable, so no read-back.

    A failure to create the note is not an expected store limitation and is
    left to propagate to the caller.
    """

    tier = UploadTier.NOTE_ATTACHMENT
    requires_verification = False

    def __init__(
        self,
        store: RecordStore,
        note_entity: str = "notes",
        shadow_suffix: str = "_name",
        subject: str = "Signed PDF",
    ) -> None:
        super().__init__(store)
        self.note_entity = note_entity
        self.shadow_suffix = shadow_suffix
        self.subject = subject

    def clear_shadow_name(self, target: RecordRef, attribute: str) -> Outcome:
        try:
            self.store.execute(
                UpdateRecord(target, {shadow_field(attribute, self.shadow_suffix): None})
            )
        except Exception as e:
            logger.info(f"Shadow name for {target.entity}.{attribute} not cleared: {e}")
            return Outcome.failure(e)
        return Outcome.success()

    def attempt(self, target, attribute, filename, mime_type, data) -> Outcome:
        self.store.execute(
            CreateRecord(
                entity=self.note_entity,
                fields={
                    "subject": self.subject,
                    "filename": filename,
                    "mime_type": mime_type,
                    "is_document": True,
                    "document_body": base64.b64encode(data).decode("ascii"),
                    "object_type": target.entity,
                    "object_id": target.id,
                },
            )
        )
        # No dangling filename without matching content
        self.clear_shadow_name(target, attribute)
        return Outcome.success()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ChunkedUploadEngine:
    """
    Runs the upload strategies in priority order until one is confirmed.

    Usage::

        engine = ChunkedUploadEngine(store, block_size=config.block_size)
        result = engine.upload(target, "signed_document", "contract.pdf",
                               "application/pdf", pdf_bytes)
    """

    def __init__(
        self,
        store: RecordStore,
        block_size: int = DEFAULT_BLOCK_SIZE,
        note_entity: str = "notes",
        shadow_suffix: str = "_name",
        probe_length: int = 1024,
        default_filename: str = "SignedDocument.pdf",
        default_mime_type: str = "application/pdf",
        strategies: Optional[list[UploadStrategy]] = None,
    ) -> None:
        self.store = store
        self.probe_length = probe_length
        self.default_filename = default_filename
        self.default_mime_type = default_mime_type
        self.strategies = strategies or [
            BlockProtocolUpload(store, block_size),
            DirectAttributeUpload(store, shadow_suffix),
            NoteAttachmentUpload(store, note_entity, shadow_suffix),
        ]

    def verify_readable(self, target: RecordRef, attribute: str) -> bool:
        """Confirm the column holds content, via a download session or a direct read."""
        try:
            token = self.store.execute(InitDownload(target, attribute))
            if token:
                data = self.store.execute(DownloadRange(token, 0, self.probe_length))
                if data:
                    return True
        except Exception as e:
            logger.debug(f"Download probe on {target.entity}.{attribute} failed: {e}")

        try:
            fields = self.store.execute(RetrieveRecord(target, (attribute,)))
            value = (fields or {}).get(attribute)
            if isinstance(value, (bytes, bytearray)) and len(value) > 0:
                return True
        except Exception as e:
            logger.debug(f"Direct read of {target.entity}.{attribute} failed: {e}")

        return False

    def upload(
        self,
        target: RecordRef,
        attribute: str,
        filename: str,
        mime_type: str,
        data: bytes,
    ) -> UploadResult:
        filename = filename.strip() if filename and filename.strip() else self.default_filename
        mime_type = mime_type.strip() if mime_type and mime_type.strip() else self.default_mime_type

        for strategy in self.strategies:
            outcome = strategy.attempt(target, attribute, filename, mime_type, data)
            if not outcome.ok:
                logger.warning(
                    f"Upload tier {strategy.tier.value} failed for "
                    f"{target.entity}({target.id}): {outcome.error}"
                )
                continue

            if not strategy.requires_verification:
                verified = True
            else:
                verified = self.verify_readable(target, attribute)
            if verified:
                logger.info(
                    f"Stored {filename!r} ({len(data)} bytes) on {target.entity}({target.id}) "
                    f"via {strategy.tier.value}"
                )
                return UploadResult(tier_used=strategy.tier, verified=True, bytes_written=len(data))

            logger.warning(
                f"Upload tier {strategy.tier.value} reported success but "
                f"{target.entity}.{attribute} could not be read back"
            )

        raise StoreError(f"Every upload tier failed for {target.entity}({target.id})")
