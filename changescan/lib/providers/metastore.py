"""Update times from metastore metadata."""

from __future__ import annotations

from changescan.lib.entities import PartitionHandle, TableHandle
from changescan.lib.errors import UpdateTimeNotFound
from changescan.lib.providers.base import UpdateTimeProvider, describe

__all__ = ["MetastoreUpdateTimeProvider"]

MILLIS_PER_SECOND = 1000


class MetastoreUpdateTimeProvider(UpdateTimeProvider):
    """Reads the creation time the metastore records for each entity.

    The metastore stores whole seconds, so results are always multiples
    of 1000 ms. A zero or negative creation time is a sentinel for
    "not recorded".
    """

    @property
    def kind(self) -> str:
        return "metastore"

    def get_table_update_time(self, table: TableHandle) -> int:
        return self._to_millis(table.create_time, describe(table))

    def get_partition_update_time(self, partition: PartitionHandle) -> int:
        return self._to_millis(partition.create_time, describe(partition))

    @staticmethod
    def _to_millis(create_time: int, entity: str) -> int:
        if not create_time or create_time <= 0:
            raise UpdateTimeNotFound(
                "Catalog entry has no creation time",
                entity=entity,
                details={"create_time": create_time},
            )
        return int(create_time) * MILLIS_PER_SECOND
