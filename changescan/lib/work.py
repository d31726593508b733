"""Work descriptors emitted by a scan.

A work descriptor addresses one changed table, or one changed partition
of a table, for downstream processing. Consumers receive it as a flat
string property bag (see ``to_properties``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from changescan.lib.entities import (
    DatasetIdentifier,
    PartitionHandle,
    SerDeInfo,
    TableHandle,
    parse_partition_name,
)

__all__ = ["WorkDescriptor", "PropertyKeys"]


class PropertyKeys:
    """Keys of the serialized work descriptor property bag."""

    DATASET_URN = "dataset.urn"
    DATABASE = "table.database"
    TABLE = "table.name"
    TABLE_LOCATION = "table.location"
    SERDE_FORMAT = "table.serde.format"
    SCHEMA_URL = "table.serde.schema_url"
    PARTITION_KEYS = "table.partition_keys"
    PARTITION_NAME = "partition.name"
    PARTITION_LOCATION = "partition.location"
    UPDATE_TIME = "update_time"


@dataclass(frozen=True)
class WorkDescriptor:
    """One unit of emitted work.

    ``partition`` is ``None`` for table-granularity work. ``update_time``
    is the millisecond timestamp the admission test was applied to.
    """

    dataset: DatasetIdentifier
    table: TableHandle
    update_time: int
    partition: Optional[PartitionHandle] = None

    @property
    def is_partition(self) -> bool:
        return self.partition is not None

    @property
    def partition_name(self) -> Optional[str]:
        if self.partition is None:
            return None
        return self.partition.name_for(self.table.partition_keys)

    def to_properties(self) -> Dict[str, str]:
        """Serialize to the property bag consumed by downstream jobs.

        Absent optional values are left out rather than written as empty
        strings.

        Example:
            >>> descriptor.to_properties()
            {'dataset.urn': 'sales@orders', 'table.database': 'sales',
             'table.name': 'orders', ..., 'partition.name': 'ds=2025-01-15'}
        """
        props: Dict[str, str] = {
            PropertyKeys.DATASET_URN: self.dataset.urn,
            PropertyKeys.DATABASE: self.table.database,
            PropertyKeys.TABLE: self.table.name,
            PropertyKeys.UPDATE_TIME: str(self.update_time),
        }
        if self.table.location:
            props[PropertyKeys.TABLE_LOCATION] = self.table.location
        if self.table.serde.format_name:
            props[PropertyKeys.SERDE_FORMAT] = self.table.serde.format_name
        if self.table.serde.schema_url:
            props[PropertyKeys.SCHEMA_URL] = self.table.serde.schema_url
        if self.table.partition_keys:
            props[PropertyKeys.PARTITION_KEYS] = ",".join(self.table.partition_keys)

        if self.partition is not None:
            props[PropertyKeys.PARTITION_NAME] = self.partition.name_for(
                self.table.partition_keys
            )
            if self.partition.location:
                props[PropertyKeys.PARTITION_LOCATION] = self.partition.location

        return props

    @classmethod
    def from_properties(cls, props: Mapping[str, str]) -> "WorkDescriptor":
        """Rebuild a descriptor from its property bag.

        Table creation time and free-form parameters are not part of the
        bag, so the restored handles carry defaults for them.

        Raises:
            KeyError: If a required key is missing.
            ValueError: If the partition name does not match the table's
                partition keys.
        """
        dataset = DatasetIdentifier.from_urn(props[PropertyKeys.DATASET_URN])
        keys_value = props.get(PropertyKeys.PARTITION_KEYS, "")
        partition_keys = tuple(k for k in keys_value.split(",") if k)

        table = TableHandle(
            identifier=DatasetIdentifier(
                props[PropertyKeys.DATABASE], props[PropertyKeys.TABLE]
            ),
            location=props.get(PropertyKeys.TABLE_LOCATION),
            partition_keys=partition_keys,
            serde=SerDeInfo(
                format_name=props.get(PropertyKeys.SERDE_FORMAT),
                schema_url=props.get(PropertyKeys.SCHEMA_URL),
            ),
        )

        partition = None
        partition_name = props.get(PropertyKeys.PARTITION_NAME)
        if partition_name:
            keys, values = parse_partition_name(partition_name)
            if keys != partition_keys:
                raise ValueError(
                    f"Partition name {partition_name!r} does not match "
                    f"partition keys {list(partition_keys)}"
                )
            partition = PartitionHandle(
                table=table.identifier,
                values=values,
                location=props.get(PropertyKeys.PARTITION_LOCATION),
            )

        return cls(
            dataset=dataset,
            table=table,
            update_time=int(props[PropertyKeys.UPDATE_TIME]),
            partition=partition,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Nested JSON-ready form, carrying the full handle snapshots."""
        return {
            "dataset": self.dataset.urn,
            "update_time": self.update_time,
            "table": self.table.to_dict(),
            "partition": (
                self.partition.to_dict(self.table.partition_keys)
                if self.partition is not None
                else None
            ),
        }
