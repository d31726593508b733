"""Abstract base class for update-time providers.

Defines the single capability the scheduler needs from a catalog backend:
the last-modified time of a table or partition.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Sequence, Union

from changescan.lib.entities import PartitionHandle, TableHandle
from changescan.lib.errors import UpdateTimeNotFound

logger = logging.getLogger(__name__)

__all__ = ["CatalogEntity", "FallbackUpdateTimeProvider", "UpdateTimeProvider", "describe"]

CatalogEntity = Union[TableHandle, PartitionHandle]


def describe(entity: CatalogEntity) -> str:
    """Human-readable address of a table or partition for logs and errors."""
    if isinstance(entity, PartitionHandle):
        return f"{entity.table.urn}/{'/'.join(entity.values)}"
    return entity.identifier.urn


class UpdateTimeProvider(ABC):
    """Returns the last update time of catalog entities.

    Subclasses implement one source of truth (metastore metadata,
    filesystem modification times, ...). Results are milliseconds since
    the epoch.
    """

    def __init__(self, **options: Any) -> None:
        self.options = options

    @property
    @abstractmethod
    def kind(self) -> str:
        """Configuration name of this provider (e.g. 'metastore')."""
        pass

    @abstractmethod
    def get_table_update_time(self, table: TableHandle) -> int:
        """Update time of a table in ms.

        Raises:
            UpdateTimeNotFound: If no usable timestamp exists
        """
        pass

    @abstractmethod
    def get_partition_update_time(self, partition: PartitionHandle) -> int:
        """Update time of a partition in ms.

        Raises:
            UpdateTimeNotFound: If no usable timestamp exists
        """
        pass

    def get_update_time(self, entity: CatalogEntity) -> int:
        """Dispatch on entity type.

        Raises:
            UpdateTimeNotFound: If no usable timestamp exists
            TypeError: If the entity is neither a table nor a partition
        """
        if isinstance(entity, PartitionHandle):
            return self.get_partition_update_time(entity)
        if isinstance(entity, TableHandle):
            return self.get_table_update_time(entity)
        raise TypeError(f"Unsupported catalog entity: {type(entity).__name__}")


class FallbackUpdateTimeProvider(UpdateTimeProvider):
    """Tries several providers in order and returns the first answer.

    Example:
        >>> provider = FallbackUpdateTimeProvider(
        ...     [MetastoreUpdateTimeProvider(), FilesystemUpdateTimeProvider()]
        ... )
    """

    def __init__(self, providers: Sequence[UpdateTimeProvider], **options: Any) -> None:
        super().__init__(**options)
        if not providers:
            raise ValueError("FallbackUpdateTimeProvider needs at least one provider")
        self.providers = list(providers)

    @property
    def kind(self) -> str:
        return "_then_".join(p.kind for p in self.providers)

    def get_table_update_time(self, table: TableHandle) -> int:
        return self._first(table)

    def get_partition_update_time(self, partition: PartitionHandle) -> int:
        return self._first(partition)

    def _first(self, entity: CatalogEntity) -> int:
        reasons = []
        for provider in self.providers:
            try:
                return provider.get_update_time(entity)
            except UpdateTimeNotFound as e:
                logger.debug(
                    "%s provider has no update time for %s: %s",
                    provider.kind,
                    describe(entity),
                    e.message,
                )
                reasons.append(f"{provider.kind}: {e.message}")

        raise UpdateTimeNotFound(
            "No provider returned an update time",
            entity=describe(entity),
            details={"attempts": "; ".join(reasons)},
        )
