"""Catalog entity snapshots used during a scan.

Handles are read-only copies of catalog metadata, fetched fresh at the
start of each scan and discarded at the end.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

__all__ = [
    "DatasetIdentifier",
    "PartitionHandle",
    "SerDeInfo",
    "TableHandle",
    "parse_partition_name",
]

URN_SEPARATOR = "@"


@dataclass(frozen=True, order=True)
class DatasetIdentifier:
    """A logical table in the catalog, keyed by database and table name."""

    database: str
    table: str

    @property
    def urn(self) -> str:
        """Watermark key in ``database@table`` form."""
        return f"{self.database}{URN_SEPARATOR}{self.table}"

    @classmethod
    def from_urn(cls, urn: str) -> "DatasetIdentifier":
        """Parse a ``database@table`` urn.

        Raises:
            ValueError: If the urn does not have exactly one non-empty
                database and table part.
        """
        database, sep, table = urn.partition(URN_SEPARATOR)
        if not sep or not database or not table or URN_SEPARATOR in table:
            raise ValueError(f"Invalid dataset urn: {urn!r} (expected 'database@table')")
        return cls(database, table)

    def __str__(self) -> str:
        return self.urn


@dataclass(frozen=True)
class SerDeInfo:
    """Serialization-format descriptor of a table."""

    format_name: Optional[str] = None
    schema_url: Optional[str] = None
    parameters: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format_name": self.format_name,
            "schema_url": self.schema_url,
            "parameters": dict(self.parameters),
        }


@dataclass(frozen=True)
class TableHandle:
    """Catalog-level table metadata.

    ``create_time`` is in whole seconds since the epoch, as the metastore
    stores it; ``0`` means the catalog did not record one.
    """

    identifier: DatasetIdentifier
    location: Optional[str] = None
    partition_keys: Tuple[str, ...] = ()
    serde: SerDeInfo = field(default_factory=SerDeInfo)
    create_time: int = 0
    parameters: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "partition_keys", tuple(self.partition_keys))

    @property
    def database(self) -> str:
        return self.identifier.database

    @property
    def name(self) -> str:
        return self.identifier.table

    @property
    def is_partitioned(self) -> bool:
        """A table with no partition keys is scanned at table granularity."""
        return len(self.partition_keys) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "database": self.database,
            "table": self.name,
            "location": self.location,
            "partition_keys": list(self.partition_keys),
            "serde": self.serde.to_dict(),
            "create_time": self.create_time,
            "parameters": dict(self.parameters),
        }


@dataclass(frozen=True)
class PartitionHandle:
    """One partition of a table.

    ``values`` are ordered to match the owning table's partition keys.
    """

    table: DatasetIdentifier
    values: Tuple[str, ...]
    location: Optional[str] = None
    create_time: int = 0
    parameters: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(str(v) for v in self.values))

    def spec(self, keys: Sequence[str]) -> Dict[str, str]:
        """Return the ordered ``key -> value`` mapping for this partition."""
        if len(keys) != len(self.values):
            raise ValueError(
                f"Partition {list(self.values)} of {self.table} does not match "
                f"partition keys {list(keys)}"
            )
        return dict(zip(keys, self.values))

    def name_for(self, keys: Sequence[str]) -> str:
        """Render the natural path-segment form ``key1=value1/key2=value2``."""
        return "/".join(f"{k}={v}" for k, v in self.spec(keys).items())

    def to_dict(self, keys: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "table": self.table.urn,
            "values": list(self.values),
            "location": self.location,
            "create_time": self.create_time,
            "parameters": dict(self.parameters),
        }
        if keys is not None:
            result["name"] = self.name_for(keys)
        return result


def parse_partition_name(name: str) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
    """Split ``key1=value1/key2=value2`` into (keys, values).

    Example:
        >>> parse_partition_name("ds=2025-01-15/hr=03")
        (('ds', 'hr'), ('2025-01-15', '03'))
    """
    keys = []
    values = []
    for segment in name.split("/"):
        key, sep, value = segment.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid partition name segment: {segment!r}")
        keys.append(key)
        values.append(value)
    return tuple(keys), tuple(values)
