"""Catalog client contract and connection leasing.

The real metastore client is an external collaborator; this module defines
the interface the scheduler needs from it, a bounded pool that scopes
client use to leases, and an in-memory client backed by a catalog
snapshot (for tests and dry runs).

Example snapshot (catalog.yaml):
    databases:
      sales:
        tables:
          orders:
            location: /warehouse/sales/orders
            partition_keys: [ds]
            serde: {format: avro, schema_url: /schemas/orders.avsc}
            create_time: 1736937000
            partitions:
              - name: ds=2025-01-15
                location: /warehouse/sales/orders/ds=2025-01-15
                create_time: "2025-01-15T10:30:00Z"
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    Type,
    Union,
)

import yaml

from changescan.lib.entities import (
    DatasetIdentifier,
    PartitionHandle,
    SerDeInfo,
    TableHandle,
    parse_partition_name,
)
from changescan.lib.errors import CatalogConnectionFailure, ConfigurationError
from changescan.lib.resilience import RetryConfig, with_retry

logger = logging.getLogger(__name__)

__all__ = [
    "CatalogClient",
    "CatalogClientPool",
    "InMemoryCatalogClient",
    "RetryingCatalogClient",
    "load_catalog_snapshot",
]


class CatalogClient(ABC):
    """What the scheduler needs from a metastore client.

    Implementations carry their own timeouts; errors propagate to the
    caller, which decides what a failure means for the scan.
    """

    @abstractmethod
    def list_databases(self) -> List[str]:
        """List database names in catalog order."""
        pass

    @abstractmethod
    def list_tables(self, database: str) -> List[TableHandle]:
        """List the tables of one database in catalog order."""
        pass

    @abstractmethod
    def list_partitions(self, table: TableHandle) -> List[PartitionHandle]:
        """List the partitions of a table in catalog order."""
        pass

    def close(self) -> None:
        """Release client resources."""
        pass

    def __enter__(self) -> "CatalogClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class InMemoryCatalogClient(CatalogClient):
    """Catalog client over an in-memory snapshot.

    Databases, tables and partitions are returned in insertion order.

    Example:
        >>> client = InMemoryCatalogClient()
        >>> client.add_table(TableHandle(DatasetIdentifier("db", "t1"), create_time=1700000000))
        >>> [t.name for t in client.list_tables("db")]
        ['t1']
    """

    def __init__(self) -> None:
        self._databases: Dict[str, Dict[str, TableHandle]] = {}
        self._partitions: Dict[DatasetIdentifier, List[PartitionHandle]] = {}

    def add_database(self, database: str) -> None:
        self._databases.setdefault(database, {})

    def add_table(self, table: TableHandle) -> TableHandle:
        self.add_database(table.database)
        self._databases[table.database][table.name] = table
        self._partitions.setdefault(table.identifier, [])
        return table

    def add_partition(self, partition: PartitionHandle) -> PartitionHandle:
        if partition.table not in self._partitions:
            raise KeyError(f"Unknown table: {partition.table.urn}")
        self._partitions[partition.table].append(partition)
        return partition

    def drop_database(self, database: str) -> None:
        for name in self._databases.pop(database, {}):
            self._partitions.pop(DatasetIdentifier(database, name), None)

    def list_databases(self) -> List[str]:
        return list(self._databases)

    def list_tables(self, database: str) -> List[TableHandle]:
        if database not in self._databases:
            raise KeyError(f"Unknown database: {database}")
        return list(self._databases[database].values())

    def list_partitions(self, table: TableHandle) -> List[PartitionHandle]:
        if table.identifier not in self._partitions:
            raise KeyError(f"Unknown table: {table.identifier.urn}")
        return list(self._partitions[table.identifier])


class RetryingCatalogClient(CatalogClient):
    """Wraps a client so each catalog call retries transient failures.

    Example:
        >>> client = RetryingCatalogClient(
        ...     thrift_client,
        ...     RetryConfig(max_attempts=3, backoff_seconds=0.5),
        ...     retry_exceptions=(OSError, TimeoutError),
        ... )
    """

    def __init__(
        self,
        client: CatalogClient,
        config: Optional[RetryConfig] = None,
        retry_exceptions: Tuple[Type[BaseException], ...] = (OSError, TimeoutError),
    ) -> None:
        self.client = client
        self.config = config or RetryConfig()
        retry = with_retry(self.config, retry_exceptions=retry_exceptions)
        self._list_databases = retry(client.list_databases)
        self._list_tables = retry(client.list_tables)
        self._list_partitions = retry(client.list_partitions)

    def list_databases(self) -> List[str]:
        return self._list_databases()

    def list_tables(self, database: str) -> List[TableHandle]:
        return self._list_tables(database)

    def list_partitions(self, table: TableHandle) -> List[PartitionHandle]:
        return self._list_partitions(table)

    def close(self) -> None:
        self.client.close()


class CatalogClientPool:
    """Bounded pool of catalog clients handed out as scoped leases.

    A lease checks a client out before a batch of catalog calls and
    returns it on every exit path. Acquisition fails with
    ``CatalogConnectionFailure`` when no client frees up within
    ``acquire_timeout`` seconds or the factory cannot create one.

    Example:
        >>> pool = CatalogClientPool(make_client, max_size=4)
        >>> with pool.lease() as client:
        ...     tables = client.list_tables("sales")
        >>> pool.close()
    """

    def __init__(
        self,
        factory: Callable[[], CatalogClient],
        max_size: int = 4,
        acquire_timeout: Optional[float] = 30.0,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._factory = factory
        self.max_size = max_size
        self.acquire_timeout = acquire_timeout
        self._slots = threading.BoundedSemaphore(max_size)
        self._lock = threading.Lock()
        self._idle: List[CatalogClient] = []
        self._created: List[CatalogClient] = []
        self._in_use = 0
        self._closed = False

    @classmethod
    def for_client(cls, client: CatalogClient, max_size: int = 4, **kwargs: Any) -> "CatalogClientPool":
        """Pool that leases out one shared, thread-safe client."""
        return cls(lambda: client, max_size=max_size, **kwargs)

    @property
    def in_use(self) -> int:
        """Number of leases currently checked out."""
        with self._lock:
            return self._in_use

    @contextmanager
    def lease(self) -> Iterator[CatalogClient]:
        """Check out a client for the duration of a ``with`` block.

        Raises:
            CatalogConnectionFailure: If no client can be acquired
        """
        if self._closed:
            raise CatalogConnectionFailure("Catalog client pool is closed")

        if not self._slots.acquire(timeout=self.acquire_timeout):
            raise CatalogConnectionFailure(
                "Timed out waiting for a catalog client",
                details={
                    "max_size": self.max_size,
                    "acquire_timeout": self.acquire_timeout,
                },
            )

        try:
            client = self._checkout()
        except Exception as e:
            self._slots.release()
            raise CatalogConnectionFailure(
                "Could not create a catalog client", cause=e
            ) from e

        try:
            yield client
        finally:
            orphaned = False
            with self._lock:
                self._in_use -= 1
                if not self._closed:
                    self._idle.append(client)
                elif any(c is client for c in self._created):
                    # created after close() took its snapshot
                    self._created = [c for c in self._created if c is not client]
                    orphaned = True
            self._slots.release()
            if orphaned:
                self._close_client(client)

    def _checkout(self) -> CatalogClient:
        with self._lock:
            if self._idle:
                client = self._idle.pop()
                self._in_use += 1
                return client

        client = self._factory()
        logger.debug("Created catalog client %s", type(client).__name__)
        with self._lock:
            if not any(c is client for c in self._created):
                self._created.append(client)
            self._in_use += 1
        return client

    def close(self) -> None:
        """Close every client the pool created."""
        with self._lock:
            self._closed = True
            clients, self._created, self._idle = self._created, [], []

        for client in clients:
            self._close_client(client)
        logger.debug("Closed %d catalog client(s)", len(clients))

    @staticmethod
    def _close_client(client: CatalogClient) -> None:
        try:
            client.close()
        except Exception as e:
            logger.warning("Error closing catalog client: %s", e)

    def __enter__(self) -> "CatalogClientPool":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def _to_seconds(value: Any, where: str) -> int:
    """Creation times may be written as epoch seconds or ISO-8601 strings."""
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid create_time at {where}", field="create_time", value=value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid create_time at {where}", field="create_time", value=value
            ) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def _build_table(database: str, name: str, spec: Mapping[str, Any]) -> TableHandle:
    serde_spec = spec.get("serde") or {}
    return TableHandle(
        identifier=DatasetIdentifier(database, name),
        location=spec.get("location"),
        partition_keys=tuple(spec.get("partition_keys") or ()),
        serde=SerDeInfo(
            format_name=serde_spec.get("format"),
            schema_url=serde_spec.get("schema_url"),
            parameters=dict(serde_spec.get("parameters") or {}),
        ),
        create_time=_to_seconds(spec.get("create_time"), f"{database}@{name}"),
        parameters=dict(spec.get("parameters") or {}),
    )


def _build_partition(table: TableHandle, spec: Mapping[str, Any]) -> PartitionHandle:
    where = f"{table.identifier.urn} partition"
    if "name" in spec:
        try:
            keys, values = parse_partition_name(str(spec["name"]))
        except ValueError as e:
            raise ConfigurationError(str(e), field="name", value=spec["name"]) from e
        if keys != table.partition_keys:
            raise ConfigurationError(
                f"Partition keys of {spec['name']!r} do not match {where}",
                field="name",
                value=spec["name"],
            )
    else:
        values = tuple(str(v) for v in spec.get("values") or ())

    if len(values) != len(table.partition_keys):
        raise ConfigurationError(
            f"Partition value count does not match keys for {where}",
            field="values",
            value=list(values),
        )

    return PartitionHandle(
        table=table.identifier,
        values=values,
        location=spec.get("location"),
        create_time=_to_seconds(spec.get("create_time"), where),
        parameters=dict(spec.get("parameters") or {}),
    )


def load_catalog_snapshot(
    source: Union[str, Path, Mapping[str, Any]],
) -> InMemoryCatalogClient:
    """Build an in-memory catalog from a YAML file or parsed mapping.

    Raises:
        ConfigurationError: If the snapshot is malformed
    """
    if isinstance(source, Mapping):
        data: Any = source
    else:
        path = Path(source)
        if not path.exists():
            raise ConfigurationError(f"Catalog snapshot not found: {path}", field="catalog")
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in catalog snapshot {path}: {e}") from e

    databases = data.get("databases") if isinstance(data, Mapping) else None
    if not isinstance(databases, Mapping):
        raise ConfigurationError("Catalog snapshot needs a 'databases' mapping", field="databases")

    client = InMemoryCatalogClient()
    for database, db_spec in databases.items():
        client.add_database(str(database))
        tables = (db_spec or {}).get("tables") or {}
        for name, table_spec in tables.items():
            table = client.add_table(_build_table(str(database), str(name), table_spec or {}))
            for partition_spec in (table_spec or {}).get("partitions") or []:
                client.add_partition(_build_partition(table, partition_spec))

    logger.debug("Loaded catalog snapshot with %d database(s)", len(databases))
    return client

