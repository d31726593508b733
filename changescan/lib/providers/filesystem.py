"""Update times from storage modification times.

Uses fsspec, so any fsspec-compatible location works: local paths,
file://, hdfs://, s3://, gs://, abfs://, and so on.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

import fsspec
from fsspec.spec import AbstractFileSystem

from changescan.lib.entities import PartitionHandle, TableHandle
from changescan.lib.errors import UpdateTimeNotFound
from changescan.lib.providers.base import CatalogEntity, UpdateTimeProvider, describe

logger = logging.getLogger(__name__)

__all__ = ["FilesystemUpdateTimeProvider", "detect_protocol"]


def detect_protocol(path: str) -> str:
    """Return the fsspec protocol of a path ('file' when there is none)."""
    if "://" in path:
        return path.split("://")[0]
    return "file"


def _mtime_to_millis(value: Any) -> Optional[int]:
    """Normalize an fsspec mtime (epoch seconds or datetime) to ms."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    if isinstance(value, (int, float)):
        return int(float(value) * 1000)
    return None


def _info_mtime(info: Dict[str, Any]) -> Optional[int]:
    for key in ("mtime", "LastModified", "last_modified", "modification_time"):
        if key in info:
            millis = _mtime_to_millis(info[key])
            if millis is not None:
                return millis
    return None


class FilesystemUpdateTimeProvider(UpdateTimeProvider):
    """Uses the newest modification time under an entity's storage location.

    For a directory the newest mtime among its direct children is used,
    falling back to the directory's own mtime when it is empty. Options
    are passed to ``fsspec.filesystem`` (credentials, endpoints, ...).

    Example:
        >>> provider = FilesystemUpdateTimeProvider()
        >>> provider.get_update_time(table)  # newest file under table.location
        1736937000000
    """

    def __init__(self, **options: Any) -> None:
        super().__init__(**options)
        self._filesystems: Dict[str, AbstractFileSystem] = {}

    @property
    def kind(self) -> str:
        return "filesystem"

    def filesystem_for(self, path: str) -> AbstractFileSystem:
        """Get the fsspec filesystem serving a path."""
        protocol = detect_protocol(path)
        fs = self._filesystems.get(protocol)
        if fs is None:
            fs = fsspec.filesystem(protocol, **self.options)
            self._filesystems[protocol] = fs
        return fs

    def get_table_update_time(self, table: TableHandle) -> int:
        return self._location_update_time(table, table.location)

    def get_partition_update_time(self, partition: PartitionHandle) -> int:
        return self._location_update_time(partition, partition.location)

    def _location_update_time(self, entity: CatalogEntity, location: Optional[str]) -> int:
        if not location:
            raise UpdateTimeNotFound(
                "Catalog entry has no storage location", entity=describe(entity)
            )

        try:
            fs = self.filesystem_for(location)
            if not fs.exists(location):
                raise UpdateTimeNotFound(
                    "Storage location does not exist",
                    entity=describe(entity),
                    details={"location": location},
                )
            info = fs.info(location)
            if info.get("type") == "directory":
                newest = self._newest(fs.ls(location, detail=True))
                millis = newest if newest is not None else _info_mtime(info)
            else:
                millis = _info_mtime(info)
        except UpdateTimeNotFound:
            raise
        # ImportError: no fsspec driver installed for the protocol (s3fs, pyarrow, ...)
        except (OSError, ValueError, ImportError) as e:
            raise UpdateTimeNotFound(
                "Could not read storage modification time",
                entity=describe(entity),
                cause=e,
                details={"location": location},
            ) from e

        if millis is None:
            raise UpdateTimeNotFound(
                "Storage location reports no modification time",
                entity=describe(entity),
                details={"location": location},
            )

        logger.debug("Modification time of %s is %d", location, millis)
        return millis

    @staticmethod
    def _newest(entries: Iterable[Any]) -> Optional[int]:
        newest: Optional[int] = None
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            millis = _info_mtime(entry)
            if millis is not None and (newest is None or millis > newest):
                newest = millis
        return newest
