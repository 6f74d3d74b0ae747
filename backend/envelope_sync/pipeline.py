"""
Wiring: builds the record store and the WebhookProcessor from configuration.

Entry points (the HTTP listener and the stdin invoker) call build_processor()
once at startup; nothing below the processor reads the environment.
"""

import logging
import os
from typing import Optional

from envelope_sync.config import PipelineConfig, load_config
from envelope_sync.services.memory_store import InMemoryRecordStore
from envelope_sync.services.record_store import RecordStore
from envelope_sync.services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)


def build_record_store(backend: Optional[str] = None) -> RecordStore:
    """
    Create the record store selected by RECORD_STORE_BACKEND.

    "supabase" (default) needs SUPABASE_URL and SUPABASE_SERVICE_KEY.
    "memory" starts with an empty store and is meant for local dry runs.

    Raises ValueError for unknown backends or missing Supabase settings.
    """
    resolved = (backend or os.getenv("RECORD_STORE_BACKEND", "supabase")).lower().strip()

    if resolved == "memory":
        logger.warning("Using the in-memory record store; nothing will be persisted")
        return InMemoryRecordStore()

    if resolved == "supabase":
        from envelope_sync.db import create_admin_client, storage_bucket
        from envelope_sync.services.supabase_store import SupabaseRecordStore

        return SupabaseRecordStore(create_admin_client(), bucket=storage_bucket())

    raise ValueError(
        f"Unknown record store backend {resolved!r}. Supported backends: ['memory', 'supabase']"
    )


def build_processor(
    config: Optional[PipelineConfig] = None,
    store: Optional[RecordStore] = None,
) -> WebhookProcessor:
    config = config or load_config()
    store = store or build_record_store()
    return WebhookProcessor(store, config)
