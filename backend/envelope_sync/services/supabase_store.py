"""
Supabase-backed record store.

Records live in PostgREST tables (one table per entity, primary key "id").
File columns are emulated with Supabase Storage:

  - committed files:  {entity}/{record_id}/{attribute}
  - staged blocks:    _staging/{entity}/{record_id}/{attribute}/{nonce}/{hex(block_id)}

The continuation token of an upload session is the staging prefix, so no
session state is held in process. CommitUpload downloads the staged blocks in
the committed order, writes the concatenation as the final object and removes
the staging objects.

bytes values written through UpdateRecord/CreateRecord are sent as PostgREST
bytea literals ("\\x<hex>") and decoded back to bytes on read.
"""

import logging
import re
import uuid
from typing import Any

from supabase import Client

from envelope_sync.errors import RecordNotFound, StoreError
from envelope_sync.services.record_store import Record, RecordRef, RecordStore

logger = logging.getLogger(__name__)

_STAGING_PREFIX = "_staging"
_BYTEA_HEX = re.compile(r"^\\x([0-9a-fA-F]*)$")


def _encode_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "\\x" + bytes(value).hex()
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, str):
        m = _BYTEA_HEX.match(value)
        if m:
            return bytes.fromhex(m.group(1))
    return value


def _encode(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: _encode_value(v) for k, v in fields.items()}


def _decode(row: dict[str, Any]) -> dict[str, Any]:
    return {k: _decode_value(v) for k, v in row.items()}


def file_path(target: RecordRef, attribute: str) -> str:
    return f"{target.entity}/{target.id}/{attribute}"


class SupabaseRecordStore(RecordStore):
    """
    RecordStore over a service-level Supabase client.

    Storage downloads have no byte-range option in supabase-py, so
    download_range fetches the whole object on every call and slices it
    client-side. Chunked readers therefore cost one full download per chunk.
    """

    def __init__(self, client: Client, bucket: str = "signed-documents") -> None:
        self.client = client
        self.bucket = bucket

    def _storage(self):
        return self.client.storage.from_(self.bucket)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def create(self, entity: str, fields: dict[str, Any]) -> str:
        try:
            result = self.client.table(entity).insert(_encode(fields)).execute()
        except Exception as e:
            raise StoreError(f"Failed to create {entity} record: {str(e)}")
        if not result.data:
            raise StoreError(f"{entity} insert returned no data")
        return str(result.data[0]["id"])

    def update(self, target: RecordRef, fields: dict[str, Any]) -> None:
        try:
            result = (
                self.client.table(target.entity)
                .update(_encode(fields))
                .eq("id", target.id)
                .execute()
            )
        except Exception as e:
            raise StoreError(f"Failed to update {target.entity}({target.id}): {str(e)}")
        if not result.data:
            raise RecordNotFound(f"{target.entity}({target.id}) does not exist")

    def retrieve(self, target: RecordRef, columns: tuple[str, ...]) -> dict:
        try:
            result = (
                self.client.table(target.entity)
                .select(", ".join(columns) if columns else "*")
                .eq("id", target.id)
                .execute()
            )
        except Exception as e:
            raise StoreError(f"Failed to retrieve {target.entity}({target.id}): {str(e)}")
        if not result.data:
            raise RecordNotFound(f"{target.entity}({target.id}) does not exist")
        return _decode(result.data[0])

    def query(self, entity: str, field: str, value: Any, columns: tuple[str, ...] = ()) -> list[Record]:
        select = "*"
        if columns:
            select = ", ".join(["id"] + [c for c in columns if c != "id"])
        try:
            result = self.client.table(entity).select(select).eq(field, value).execute()
        except Exception as e:
            raise StoreError(f"Failed to query {entity} by {field}: {str(e)}")
        return [
            Record(entity=entity, id=str(row["id"]), fields=_decode(row))
            for row in (result.data or [])
        ]

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def init_upload(self, target: RecordRef, attribute: str, filename: str) -> str:
        return f"{_STAGING_PREFIX}/{file_path(target, attribute)}/{uuid.uuid4().hex}"

    def upload_block(self, token: str, block_id: str, data: bytes) -> None:
        path = f"{token}/{block_id.encode('utf-8').hex()}"
        try:
            self._storage().upload(
                path,
                bytes(data),
                {"content-type": "application/octet-stream", "upsert": "true"},
            )
        except Exception as e:
            raise StoreError(f"Failed to upload block {block_id}: {str(e)}")

    def commit_upload(self, token: str, block_ids: tuple[str, ...], filename: str, mime_type: str) -> None:
        if not token.startswith(f"{_STAGING_PREFIX}/"):
            raise StoreError(f"Invalid upload token {token!r}")
        final_path = token[len(_STAGING_PREFIX) + 1:].rsplit("/", 1)[0]
        staged = [f"{token}/{bid.encode('utf-8').hex()}" for bid in block_ids]

        try:
            content = b"".join(self._storage().download(path) for path in staged)
            self._storage().upload(
                final_path,
                content,
                {"content-type": mime_type, "upsert": "true"},
            )
        except Exception as e:
            raise StoreError(f"Failed to commit upload to {final_path}: {str(e)}")

        try:
            self._storage().remove(staged)
        except Exception as e:
            logger.warning(f"Failed to remove staged blocks under {token}: {e}")

    def init_download(self, target: RecordRef, attribute: str) -> str:
        return file_path(target, attribute)

    def download_range(self, token: str, offset: int, length: int) -> bytes:
        try:
            content = self._storage().download(token)
        except Exception as e:
            raise StoreError(f"Failed to download {token}: {str(e)}")
        return bytes(content[offset:offset + length])
