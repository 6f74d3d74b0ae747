"""
Validation-token check for inbound events.

The policy is permissive by default:

  1. No schema name configured          -> valid (validation disabled).
  2. Schema configured, no stored value -> valid.
  3. Otherwise valid iff the incoming token is non-empty and equals the
     stored value after trimming both sides (case-sensitive).
"""

import logging
from typing import Optional

from envelope_sync.services.record_store import QueryRecords, RecordStore

logger = logging.getLogger(__name__)


class TokenValidator:
    """Looks up the expected token in the store and compares it."""

    def __init__(self, store: RecordStore, variable_entity: str = "environment_variables") -> None:
        self.store = store
        self.variable_entity = variable_entity

    def expected_value(self, schema_name: str) -> Optional[str]:
        """Return the stored token for schema_name, or None when nothing is stored."""
        records = self.store.execute(
            QueryRecords(
                entity=self.variable_entity,
                field="schema_name",
                value=schema_name,
                columns=("value",),
            )
        )
        for record in records:
            value = record.fields.get("value")
            if value is not None and str(value).strip():
                return str(value)
        return None

    def is_valid(self, configured_schema_name: Optional[str], incoming_token: Optional[str]) -> bool:
        if not configured_schema_name:
            return True

        expected = self.expected_value(configured_schema_name)
        if expected is None:
            logger.info(
                f"No expected token stored for schema {configured_schema_name!r}; "
                "accepting event"
            )
            return True

        if not incoming_token or not incoming_token.strip():
            return False
        return incoming_token.strip() == expected.strip()
