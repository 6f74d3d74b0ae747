"""
Maps an envelope id to the target business record.
"""

import logging
from typing import Optional

from envelope_sync.services.record_store import QueryRecords, Record, RecordStore

logger = logging.getLogger(__name__)


class RecordLocator:
    """
    Finds the target record by equality on a single business-key column.

    When several records share the envelope id the first one returned by the
    store is used. There is no tie-break beyond the store's own ordering.
    """

    def __init__(
        self,
        store: RecordStore,
        entity: str,
        key_field: str,
        columns: tuple[str, ...] = (),
    ) -> None:
        self.store = store
        self.entity = entity
        self.key_field = key_field
        self.columns = columns

    def find_by_envelope_id(self, envelope_id: str) -> Optional[Record]:
        records = self.store.execute(
            QueryRecords(
                entity=self.entity,
                field=self.key_field,
                value=envelope_id,
                columns=self.columns,
            )
        )
        if not records:
            return None
        if len(records) > 1:
            logger.warning(
                f"{len(records)} {self.entity} records share envelope id {envelope_id!r}; "
                f"using the first ({records[0].id})"
            )
        return records[0]
