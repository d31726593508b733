"""Change-scan library modules.

This package contains the catalog model, update-time providers, admission
policies and the scheduler that turns catalog changes into work.
"""

from changescan.lib.catalog import (
    CatalogClient,
    CatalogClientPool,
    InMemoryCatalogClient,
    RetryingCatalogClient,
    load_catalog_snapshot,
)
from changescan.lib.config import CatalogRetryConfig, ScanConfig, load_config, parse_config
from changescan.lib.entities import DatasetIdentifier, PartitionHandle, SerDeInfo, TableHandle
from changescan.lib.errors import (
    CatalogConnectionFailure,
    CatalogListingFailure,
    ConfigurationError,
    ScanError,
    UpdateTimeNotFound,
)
from changescan.lib.lookback import LookbackPolicy, admit, current_time_ms, parse_duration
from changescan.lib.providers import (
    FallbackUpdateTimeProvider,
    FilesystemUpdateTimeProvider,
    MetastoreUpdateTimeProvider,
    UpdateTimeProvider,
    get_update_time_provider,
)
from changescan.lib.resilience import RetryConfig, with_retry
from changescan.lib.scheduler import ChangeScheduler, FailureKind, ScanFailure, ScanResult
from changescan.lib.selector import DatasetSelector, NamePattern
from changescan.lib.watermark import (
    load_watermarks,
    merge_watermarks,
    normalize_watermarks,
    save_watermarks,
)
from changescan.lib.work import PropertyKeys, WorkDescriptor

__all__ = [
    # Catalog
    "CatalogClient",
    "CatalogClientPool",
    "InMemoryCatalogClient",
    "RetryingCatalogClient",
    "load_catalog_snapshot",
    # Config
    "CatalogRetryConfig",
    "ScanConfig",
    "load_config",
    "parse_config",
    # Entities
    "DatasetIdentifier",
    "PartitionHandle",
    "SerDeInfo",
    "TableHandle",
    # Errors
    "CatalogConnectionFailure",
    "CatalogListingFailure",
    "ConfigurationError",
    "ScanError",
    "UpdateTimeNotFound",
    # Lookback
    "LookbackPolicy",
    "admit",
    "current_time_ms",
    "parse_duration",
    # Providers
    "FallbackUpdateTimeProvider",
    "FilesystemUpdateTimeProvider",
    "MetastoreUpdateTimeProvider",
    "UpdateTimeProvider",
    "get_update_time_provider",
    # Resilience
    "RetryConfig",
    "with_retry",
    # Scheduler
    "ChangeScheduler",
    "FailureKind",
    "ScanFailure",
    "ScanResult",
    # Selector
    "DatasetSelector",
    "NamePattern",
    # Watermark
    "load_watermarks",
    "merge_watermarks",
    "normalize_watermarks",
    "save_watermarks",
    # Work
    "PropertyKeys",
    "WorkDescriptor",
]
