"""Update-time providers.

Provides a single interface for finding when a table or partition last
changed, with one implementation per source of truth.

Usage:
    from changescan.lib.providers import get_update_time_provider

    # Creation time recorded by the metastore
    provider = get_update_time_provider("metastore")

    # Newest file modification time under the storage location
    provider = get_update_time_provider("filesystem")

    # Metastore first, storage when the metastore has nothing
    provider = get_update_time_provider("metastore_then_filesystem")
"""

from typing import Any, Callable, Dict

from changescan.lib.errors import ConfigurationError
from changescan.lib.providers.base import (
    CatalogEntity,
    FallbackUpdateTimeProvider,
    UpdateTimeProvider,
    describe,
)
from changescan.lib.providers.filesystem import FilesystemUpdateTimeProvider
from changescan.lib.providers.metastore import MetastoreUpdateTimeProvider

__all__ = [
    "CatalogEntity",
    "FallbackUpdateTimeProvider",
    "FilesystemUpdateTimeProvider",
    "MetastoreUpdateTimeProvider",
    "PROVIDER_KINDS",
    "UpdateTimeProvider",
    "describe",
    "get_update_time_provider",
]


def _metastore_then_filesystem(**options: Any) -> UpdateTimeProvider:
    return FallbackUpdateTimeProvider(
        [MetastoreUpdateTimeProvider(), FilesystemUpdateTimeProvider(**options)]
    )


PROVIDER_KINDS: Dict[str, Callable[..., UpdateTimeProvider]] = {
    "metastore": MetastoreUpdateTimeProvider,
    "filesystem": FilesystemUpdateTimeProvider,
    "metastore_then_filesystem": _metastore_then_filesystem,
}


def get_update_time_provider(kind: str = "metastore", **options: Any) -> UpdateTimeProvider:
    """Get the update-time provider configured by name.

    Args:
        kind: Provider name (see ``PROVIDER_KINDS``)
        **options: Provider-specific options (e.g. fsspec storage options)

    Returns:
        UpdateTimeProvider instance

    Raises:
        ConfigurationError: If the kind is unknown
    """
    factory = PROVIDER_KINDS.get(kind.lower().strip())
    if factory is None:
        raise ConfigurationError(
            f"Unknown update time provider: {kind}",
            field="update_time_provider_kind",
            value=kind,
            suggestion=f"Use one of: {', '.join(sorted(PROVIDER_KINDS))}",
        )
    return factory(**options)
