"""Pytest configuration and fixtures."""

import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from changescan.lib.catalog import CatalogClientPool, InMemoryCatalogClient  # noqa: E402
from changescan.lib.entities import (  # noqa: E402
    DatasetIdentifier,
    PartitionHandle,
    SerDeInfo,
    TableHandle,
)

# 2025-01-15T10:30:00Z
NOW_SECONDS = 1736937000
NOW_MS = NOW_SECONDS * 1000
DAY_SECONDS = 24 * 60 * 60
DAY_MS = DAY_SECONDS * 1000


def make_table(
    database: str,
    name: str,
    create_time: int = NOW_SECONDS - DAY_SECONDS,
    partition_keys: Sequence[str] = (),
    location: Optional[str] = None,
) -> TableHandle:
    """Table handle with a dummy schema url, like a freshly created test table."""
    return TableHandle(
        identifier=DatasetIdentifier(database, name),
        location=location or f"/tmp/{database}/{name}",
        partition_keys=tuple(partition_keys),
        serde=SerDeInfo(format_name="avro", schema_url="/tmp/dummy"),
        create_time=create_time,
    )


def make_partition(
    table: TableHandle,
    values: Sequence[str],
    create_time: int = NOW_SECONDS - DAY_SECONDS,
    location: Optional[str] = None,
) -> PartitionHandle:
    name = "/".join(f"{k}={v}" for k, v in zip(table.partition_keys, values))
    return PartitionHandle(
        table=table.identifier,
        values=tuple(values),
        location=location or f"{table.location}/{name}",
        create_time=create_time,
    )


@pytest.fixture
def catalog():
    """Empty in-memory catalog."""
    return InMemoryCatalogClient()


@pytest.fixture
def pool(catalog):
    """Pool leasing the in-memory catalog."""
    with CatalogClientPool.for_client(catalog, max_size=4, acquire_timeout=5) as p:
        yield p


@pytest.fixture
def restore_logging():
    """Undo root logger changes made by setup_logging."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def missing_storage_drivers(monkeypatch):
    """Make hdfs:// and s3:// behave as if their fsspec drivers were not installed."""
    import fsspec

    real_filesystem = fsspec.filesystem
    messages = {
        "hdfs": "No module named 'pyarrow'",
        "s3": "Install s3fs to access S3",
    }

    def filesystem(protocol, **options):
        if protocol in messages:
            raise ImportError(messages[protocol])
        return real_filesystem(protocol, **options)

    monkeypatch.setattr(fsspec, "filesystem", filesystem)
