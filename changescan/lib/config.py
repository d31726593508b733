"""Scan configuration.

Scans are configured in YAML so they can be scheduled without writing
Python:

    scan:
      database_pattern: "sales|marketing"
      table_pattern: "*"
      exclude_tables: ["sales.tmp_*"]
      lookback_duration: 30d
      update_time_provider_kind: metastore
      max_workers: 4
      catalog: ./catalog.yaml

String values may reference environment variables as ``${VAR}`` or
``$VAR``; a ``.env`` file is loaded first when present.

Usage:
    from changescan.lib.config import load_config
    config = load_config("./scan.yaml")
    scheduler = config.build_scheduler(pool)
"""

from __future__ import annotations

import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from changescan.lib.catalog import (
    CatalogClient,
    CatalogClientPool,
    RetryingCatalogClient,
    load_catalog_snapshot,
)
from changescan.lib.errors import ConfigurationError
from changescan.lib.lookback import LookbackPolicy, parse_duration
from changescan.lib.providers import PROVIDER_KINDS, UpdateTimeProvider, get_update_time_provider
from changescan.lib.resilience import RetryConfig
from changescan.lib.scheduler import ChangeScheduler
from changescan.lib.selector import DatasetSelector, NamePattern

logger = logging.getLogger(__name__)

__all__ = [
    "CatalogRetryConfig",
    "ScanConfig",
    "expand_env_vars",
    "load_config",
    "parse_config",
]

# ${VAR_NAME} or $VAR_NAME
ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def expand_env_vars(value: Any) -> Any:
    """Recursively expand environment variable references.

    Unset variables are left as written so the validation error shows
    which one is missing.
    """
    if isinstance(value, str):

        def replacer(match: "re.Match[str]") -> str:
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))

        return ENV_VAR_PATTERN.sub(replacer, value)
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(v) for v in value]
    return value


class CatalogRetryConfig(BaseModel):
    """Retry settings for catalog calls made by the client."""

    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=1.0, ge=0)

    def to_retry_config(self) -> RetryConfig:
        return RetryConfig(max_attempts=self.max_attempts, backoff_seconds=self.backoff_seconds)


class ScanConfig(BaseModel):
    """Validated scan configuration.

    Example:
        >>> config = ScanConfig(database_pattern="sales", lookback_duration="30d")
        >>> config.lookback()
        datetime.timedelta(days=30)
    """

    database_pattern: str = Field(default="*", description="Glob(s) or regex: over database names")
    table_pattern: str = Field(default="*", description="Glob(s) or regex: over table names")
    exclude_tables: List[str] = Field(default_factory=list, description="'database.table' globs to skip")
    lookback_duration: Optional[Union[str, int, float]] = Field(
        default=None, description="Maximum entity age, e.g. '30d' or 'P30D'"
    )
    lookback_inclusive: bool = True
    update_time_provider_kind: str = Field(default="metastore")
    provider_options: Dict[str, Any] = Field(default_factory=dict)
    strict_watermark: bool = True
    ignore_path_identifiers: List[str] = Field(default_factory=list)
    max_workers: int = Field(default=4, ge=1)
    partition_workers: int = Field(default=1, ge=1)
    max_connections: int = Field(default=4, ge=1)
    acquire_timeout: Optional[float] = Field(default=30.0, gt=0)
    catalog: Optional[str] = Field(default=None, description="Path to a YAML catalog snapshot")
    catalog_retry: Optional[CatalogRetryConfig] = None

    @field_validator("database_pattern", "table_pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            NamePattern(v)
        except ConfigurationError as e:
            raise ValueError(e.message) from e
        return v

    @field_validator("exclude_tables")
    @classmethod
    def validate_exclude_tables(cls, v: List[str]) -> List[str]:
        for entry in v:
            if "." not in entry:
                raise ValueError(f"exclude_tables entries must be 'database.table', got {entry!r}")
        return v

    @field_validator("lookback_duration")
    @classmethod
    def validate_lookback(cls, v: Any) -> Any:
        try:
            parse_duration(v)
        except ConfigurationError as e:
            raise ValueError(e.message) from e
        return v

    @field_validator("update_time_provider_kind")
    @classmethod
    def validate_provider_kind(cls, v: str) -> str:
        kind = v.lower().strip()
        if kind not in PROVIDER_KINDS:
            raise ValueError(f"update_time_provider_kind must be one of: {sorted(PROVIDER_KINDS)}")
        return kind

    def lookback(self) -> Optional[timedelta]:
        return parse_duration(self.lookback_duration)

    def build_lookback_policy(self) -> LookbackPolicy:
        return LookbackPolicy(self.lookback(), inclusive=self.lookback_inclusive)

    def build_selector(self) -> DatasetSelector:
        return DatasetSelector(self.database_pattern, self.table_pattern, exclude=self.exclude_tables)

    def build_provider(self) -> UpdateTimeProvider:
        return get_update_time_provider(self.update_time_provider_kind, **self.provider_options)

    def build_catalog_client(self, base_dir: Optional[Path] = None) -> CatalogClient:
        """Client over the configured catalog snapshot.

        Relative snapshot paths resolve against ``base_dir`` (the config
        file's directory when loaded with ``load_config``).

        Raises:
            ConfigurationError: If no catalog is configured
        """
        if not self.catalog:
            raise ConfigurationError(
                "No catalog configured",
                field="catalog",
                suggestion="Set 'catalog' to the path of a catalog snapshot YAML file.",
            )
        path = Path(self.catalog)
        if not path.is_absolute() and base_dir is not None:
            path = base_dir / path

        client: CatalogClient = load_catalog_snapshot(path)
        if self.catalog_retry is not None:
            client = RetryingCatalogClient(client, self.catalog_retry.to_retry_config())
        return client

    def build_pool(self, client: CatalogClient) -> CatalogClientPool:
        return CatalogClientPool.for_client(
            client, max_size=self.max_connections, acquire_timeout=self.acquire_timeout
        )

    def build_scheduler(self, pool: CatalogClientPool) -> ChangeScheduler:
        return ChangeScheduler(
            pool,
            self.build_selector(),
            self.build_provider(),
            self.build_lookback_policy(),
            max_workers=self.max_workers,
            partition_workers=self.partition_workers,
            strict_watermark=self.strict_watermark,
            ignore_path_identifiers=self.ignore_path_identifiers,
        )


def parse_config(data: Any) -> ScanConfig:
    """Validate a parsed configuration mapping.

    Accepts either the scan section itself or a document with a top-level
    ``scan:`` key.

    Raises:
        ConfigurationError: With every validation issue listed
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError("Scan configuration must be a mapping", value=type(data).__name__)
    section = data.get("scan", data)
    if not isinstance(section, dict):
        raise ConfigurationError("'scan' section must be a mapping", field="scan")

    try:
        return ScanConfig(**expand_env_vars(section))
    except ValidationError as e:
        issues = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        raise ConfigurationError(
            "Invalid scan configuration",
            details={f"issue_{i + 1}": issue for i, issue in enumerate(issues)},
        ) from e


def load_config(path: Union[str, Path], *, env_file: Optional[Union[str, Path]] = None) -> ScanConfig:
    """Load and validate a scan configuration file.

    Args:
        path: YAML config path
        env_file: Optional .env file (default: search from the working directory)

    Raises:
        ConfigurationError: If the file is missing, not YAML, or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    load_dotenv(dotenv_path=env_file, override=False)

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    config = parse_config(data)
    logger.debug("Loaded scan config from %s", path)
    return config
