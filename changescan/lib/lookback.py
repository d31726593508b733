"""Lookback window admission.

An entity whose update time is further in the past than the configured
lookback window is excluded from a scan, even if it is newer than the
dataset's watermark.
"""

from __future__ import annotations

import re
import time
from datetime import timedelta
from typing import Optional, Union

from changescan.lib.errors import ConfigurationError

__all__ = ["LookbackPolicy", "admit", "current_time_ms", "parse_duration"]

DurationLike = Union[None, str, int, float, timedelta]

# 30d, 12h, 1d12h, 1500ms
_COMPACT_PATTERN = re.compile(r"(\d+(?:\.\d+)?)(ms|w|d|h|m|s)", re.IGNORECASE)

# P30D, PT12H, P1DT2H30M, P2W
_ISO_PATTERN = re.compile(
    r"^P(?:(?P<weeks>\d+(?:\.\d+)?)W)?(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(?P<hours>\d+(?:\.\d+)?)H)?(?:(?P<minutes>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$",
    re.IGNORECASE,
)

_UNIT_KWARGS = {
    "ms": "milliseconds",
    "w": "weeks",
    "d": "days",
    "h": "hours",
    "m": "minutes",
    "s": "seconds",
}


def current_time_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def _to_ms(duration: timedelta) -> int:
    # timedelta arithmetic keeps integer precision down to microseconds
    return duration // timedelta(milliseconds=1)


def parse_duration(value: DurationLike) -> Optional[timedelta]:
    """Parse a lookback duration.

    Accepts ``None`` or an empty string (no lookback), a number of days,
    a ``timedelta``, a compact string such as ``"30d"`` or ``"1d12h"``,
    or an ISO-8601 duration such as ``"P30D"`` or ``"PT12H"``.

    Raises:
        ConfigurationError: If the value is negative or cannot be parsed.

    Example:
        >>> parse_duration("30d")
        datetime.timedelta(days=30)
        >>> parse_duration("PT12H")
        datetime.timedelta(seconds=43200)
    """
    if value is None:
        return None

    if isinstance(value, timedelta):
        duration = value
    elif isinstance(value, bool):
        raise ConfigurationError(
            "Lookback duration must be a duration, not a boolean",
            field="lookback_duration",
            value=value,
        )
    elif isinstance(value, (int, float)):
        duration = timedelta(days=value)
    else:
        text = str(value).strip()
        if not text:
            return None
        duration = _parse_duration_text(text)

    if duration < timedelta(0):
        raise ConfigurationError(
            "Lookback duration cannot be negative",
            field="lookback_duration",
            value=value,
        )
    return duration


def _parse_duration_text(text: str) -> timedelta:
    iso = _ISO_PATTERN.match(text)
    if iso:
        parts = {k: float(v) for k, v in iso.groupdict().items() if v is not None}
        if parts:
            return timedelta(**parts)

    position = 0
    total = timedelta(0)
    for match in _COMPACT_PATTERN.finditer(text):
        if match.start() != position:
            break
        amount, unit = match.groups()
        total += timedelta(**{_UNIT_KWARGS[unit.lower()]: float(amount)})
        position = match.end()

    if position == 0 or position != len(text):
        raise ConfigurationError(
            f"Cannot parse lookback duration {text!r}",
            field="lookback_duration",
            value=text,
            suggestion="Use a compact form like '30d' or '12h', or ISO-8601 like 'P30D'.",
        )
    return total


def admit(
    update_time: int,
    now: int,
    lookback: Optional[timedelta],
    *,
    inclusive: bool = True,
) -> bool:
    """Return whether an entity is recent enough to be scheduled.

    Args:
        update_time: Entity update time in ms since the epoch
        now: Reference time in ms since the epoch
        lookback: Maximum age, or ``None`` to disable the check
        inclusive: Admit an entity exactly ``lookback`` old

    An update time in the future (clock skew) is always admitted.
    """
    if lookback is None:
        return True

    age = now - update_time
    limit = _to_ms(lookback)
    if inclusive:
        return age <= limit
    return age < limit


class LookbackPolicy:
    """Lookback window bound to a configured duration.

    Example:
        >>> policy = LookbackPolicy.from_config("30d")
        >>> policy.admit(update_time, now)
        True
    """

    def __init__(self, lookback: Optional[timedelta] = None, *, inclusive: bool = True):
        self.lookback = lookback
        self.inclusive = inclusive

    @classmethod
    def from_config(cls, value: DurationLike, *, inclusive: bool = True) -> "LookbackPolicy":
        return cls(parse_duration(value), inclusive=inclusive)

    @property
    def enabled(self) -> bool:
        return self.lookback is not None

    def admit(self, update_time: int, now: int) -> bool:
        return admit(update_time, now, self.lookback, inclusive=self.inclusive)

    def __repr__(self) -> str:
        return f"LookbackPolicy(lookback={self.lookback!r}, inclusive={self.inclusive})"
