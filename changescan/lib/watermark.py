"""Dataset watermarks.

A watermark is the highest update time (ms since the epoch) already
processed for a dataset. The scheduler reads a snapshot of prior
watermarks and returns new candidates; persisting them is the host's job.

For hosts without their own state store, watermarks can be kept in a JSON
file:

    {
      "updated_at": "2025-01-15T10:30:00+00:00",
      "watermarks": {"sales@orders": 1736937000000}
    }
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from changescan.lib.entities import DatasetIdentifier

logger = logging.getLogger(__name__)

__all__ = [
    "WatermarkKey",
    "load_watermarks",
    "merge_watermarks",
    "normalize_watermarks",
    "save_watermarks",
    "watermarks_by_urn",
]

WatermarkKey = Union[str, DatasetIdentifier]


def normalize_watermarks(
    watermarks: Optional[Mapping[WatermarkKey, Any]],
) -> Dict[DatasetIdentifier, int]:
    """Key watermarks by DatasetIdentifier.

    Accepts ``database@table`` strings or identifiers as keys.

    Raises:
        ValueError: If a key is not a valid urn or a value is not an integer
    """
    result: Dict[DatasetIdentifier, int] = {}
    for key, value in (watermarks or {}).items():
        identifier = key if isinstance(key, DatasetIdentifier) else DatasetIdentifier.from_urn(key)
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"Watermark for {identifier.urn} must be an integer, got {value!r}")
        result[identifier] = int(value)
    return result


def watermarks_by_urn(watermarks: Mapping[DatasetIdentifier, int]) -> Dict[str, int]:
    """Inverse of ``normalize_watermarks``: key by ``database@table``."""
    return {identifier.urn: value for identifier, value in sorted(watermarks.items())}


def merge_watermarks(
    prior: Mapping[DatasetIdentifier, int],
    advanced: Mapping[DatasetIdentifier, int],
) -> Dict[DatasetIdentifier, int]:
    """Fold new candidates into prior watermarks.

    Watermarks never regress: each dataset keeps the larger of its prior
    and candidate values.

    Example:
        >>> merge_watermarks({db_t1: 100}, {db_t1: 90, db_t2: 50})
        {db_t1: 100, db_t2: 50}
    """
    merged = dict(prior)
    for identifier, value in advanced.items():
        current = merged.get(identifier)
        if current is None or value > current:
            merged[identifier] = value
        elif value < current:
            logger.warning(
                "Ignoring watermark regression for %s: %d < %d",
                identifier.urn,
                value,
                current,
            )
    return merged


def load_watermarks(path: Union[str, Path]) -> Dict[DatasetIdentifier, int]:
    """Load watermarks from a JSON state file.

    Returns:
        Watermarks by dataset, or an empty mapping if the file is missing
        or unreadable (which makes the next scan a first scan)
    """
    path = Path(path)

    if not path.exists():
        logger.debug("No watermark file at %s", path)
        return {}

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        watermarks = normalize_watermarks(data.get("watermarks", {}))
    except (json.JSONDecodeError, AttributeError, ValueError) as e:
        logger.warning("Invalid watermark file %s: %s", path, e)
        return {}

    logger.debug(
        "Loaded %d watermark(s) from %s (updated %s)",
        len(watermarks),
        path,
        data.get("updated_at", "unknown"),
    )
    return watermarks


def save_watermarks(
    path: Union[str, Path],
    watermarks: Mapping[DatasetIdentifier, int],
) -> None:
    """Write watermarks to a JSON state file, replacing its contents.

    Callers normally ``merge_watermarks`` with the loaded state first.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "updated_at": datetime.now(timezone.utc).isoformat(),
        "watermarks": watermarks_by_urn(watermarks),
    }

    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    tmp_path.replace(path)
    logger.info("Saved %d watermark(s) to %s", len(watermarks), path)
