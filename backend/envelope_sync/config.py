"""
Pipeline configuration.

All settings are read from environment variables once at startup (a local
``.env`` file is honoured via python-dotenv) and frozen into a single
PipelineConfig value that is passed explicitly into the processor. Component
code never reads the environment itself.

Environment variables
---------------------
UPLOAD_BLOCK_SIZE         Block size in bytes for chunked uploads (default 4 MiB).
STATE_RECEIVED            "state:status" codes written on log creation.
STATE_PROCESSED           "state:status" codes written when a log is processed.
STATE_FAILED              "state:status" codes written when a log fails.
STATE_COMPLETED           "state:status" codes for a target whose envelope completed.
STATE_FINISH_LATER        "state:status" codes for a target on finish-later.
STATE_DECLINED            "state:status" codes for a target on decline.
VALIDATION_TOKEN_SCHEMA   Schema name of the expected validation token. Unset
                          disables token validation entirely.
TARGET_ENTITY             Entity holding the envelope records (signature_requests).
TARGET_KEY_FIELD          Business-key column matched against envelopeId (envelope_id).
TARGET_FILE_ATTRIBUTE     File column receiving the signed document (signed_document).
LOG_ENTITY                Entity for webhook log records (webhook_logs).
NOTE_ENTITY               Entity for notes and attachments (notes).
VARIABLE_ENTITY           Entity holding expected token values (environment_variables).
RECORD_STORE_BACKEND      "supabase" (default) or "memory".
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DEFAULT_BLOCK_SIZE = 4 * 1024 * 1024


class StateStatus(BaseModel):
    """A (state, status) code pair written to a record's lifecycle columns."""

    model_config = {"frozen": True}

    state: int
    status: int

    @classmethod
    def parse(cls, raw: str) -> "StateStatus":
        """
        Parse a "state:status" string, e.g. "1:2".

        Raises ValueError when the value is not two integers separated by ':'.
        """
        state, sep, status = raw.strip().partition(":")
        if not sep:
            raise ValueError(f"Expected 'state:status', got {raw!r}")
        try:
            return cls(state=int(state), status=int(status))
        except ValueError:
            raise ValueError(f"State/status codes must be integers, got {raw!r}")


class PipelineConfig(BaseModel):
    """Immutable settings for one WebhookProcessor."""

    model_config = {"frozen": True}

    block_size: int = Field(default=DEFAULT_BLOCK_SIZE, gt=0)

    # Lifecycle codes for the webhook log record
    received: Optional[StateStatus] = None
    processed: Optional[StateStatus] = None
    failed: Optional[StateStatus] = None

    # Lifecycle codes for the target record, one pair per event category
    completed: Optional[StateStatus] = None
    finish_later: Optional[StateStatus] = None
    declined: Optional[StateStatus] = None

    validation_schema_name: Optional[str] = None

    target_entity: str = "signature_requests"
    target_key_field: str = "envelope_id"
    target_file_attribute: str = "signed_document"
    log_entity: str = "webhook_logs"
    note_entity: str = "notes"
    variable_entity: str = "environment_variables"

    state_field: str = "state_code"
    status_field: str = "status_code"
    shadow_suffix: str = "_name"

    default_filename: str = "SignedDocument.pdf"
    default_mime_type: str = "application/pdf"
    verify_probe_length: int = 1024


def _env_pair(name: str) -> Optional[StateStatus]:
    raw = os.getenv(name, "").strip()
    return StateStatus.parse(raw) if raw else None


def _env_str(name: str, default: str) -> str:
    return os.getenv(name, "").strip() or default


def load_config() -> PipelineConfig:
    """
    Build a PipelineConfig from the environment.

    Raises ValueError for a non-integer block size or a malformed state pair.
    """
    raw_block_size = os.getenv("UPLOAD_BLOCK_SIZE", "").strip()
    try:
        block_size = int(raw_block_size) if raw_block_size else DEFAULT_BLOCK_SIZE
    except ValueError:
        raise ValueError(f"UPLOAD_BLOCK_SIZE must be an integer, got {raw_block_size!r}")

    return PipelineConfig(
        block_size=block_size,
        received=_env_pair("STATE_RECEIVED"),
        processed=_env_pair("STATE_PROCESSED"),
        failed=_env_pair("STATE_FAILED"),
        completed=_env_pair("STATE_COMPLETED"),
        finish_later=_env_pair("STATE_FINISH_LATER"),
        declined=_env_pair("STATE_DECLINED"),
        validation_schema_name=os.getenv("VALIDATION_TOKEN_SCHEMA", "").strip() or None,
        target_entity=_env_str("TARGET_ENTITY", "signature_requests"),
        target_key_field=_env_str("TARGET_KEY_FIELD", "envelope_id"),
        target_file_attribute=_env_str("TARGET_FILE_ATTRIBUTE", "signed_document"),
        log_entity=_env_str("LOG_ENTITY", "webhook_logs"),
        note_entity=_env_str("NOTE_ENTITY", "notes"),
        variable_entity=_env_str("VARIABLE_ENTITY", "environment_variables"),
    )
