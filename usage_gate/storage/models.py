"""
Data models for the usage cache.

Defines the persisted snapshot of the two quota windows.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..core.errors import CacheUnavailable


def _finite_number(value: Any, field_name: str) -> Any:
    """Return ``value`` if it is a finite JSON number usable as a float.

    Raises:
        CacheUnavailable: For booleans, non-numbers, NaN, infinities, and
            integers too large to convert to float
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CacheUnavailable(f"{field_name} must be numeric, got {value!r}")
    try:
        finite = math.isfinite(value)
    except OverflowError:
        finite = False
    if not finite:
        raise CacheUnavailable(f"{field_name} is out of range")
    return value


@dataclass(frozen=True)
class UsageWindow:
    """Consumption of one rolling quota window.

    ``raw`` keeps the accounting service's object untouched so fields the
    gate does not understand (reset times and the like) survive a rewrite.
    """
    utilization: float = 0
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_raw(cls, raw: Any) -> "UsageWindow":
        """Build a window from the service's JSON object.

        Raises:
            CacheUnavailable: If the object or its utilization is malformed
        """
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise CacheUnavailable(f"window must be an object, got {type(raw).__name__}")
        value = raw.get("utilization")
        if value is None:
            return cls(utilization=0, raw=dict(raw))
        return cls(utilization=_finite_number(value, "utilization"), raw=dict(raw))

    def to_raw(self) -> Dict[str, Any]:
        data = dict(self.raw)
        data["utilization"] = self.utilization
        return data


@dataclass(frozen=True)
class UsageSnapshot:
    """Immutable snapshot of both windows and the time it was fetched."""
    five_hour: UsageWindow
    seven_day: UsageWindow
    cached_at: int

    def age(self, now: Optional[float] = None) -> float:
        """Seconds since the snapshot was fetched."""
        current = time.time() if now is None else now
        return current - self.cached_at

    def is_stale(self, ttl_seconds: int, now: Optional[float] = None) -> bool:
        """Stale once ``now - cached_at >= ttl``. Stale data is still usable."""
        return self.age(now) >= ttl_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "five_hour": self.five_hour.to_raw(),
            "seven_day": self.seven_day.to_raw(),
            "cached_at": self.cached_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "UsageSnapshot":
        """Parse the cache file layout.

        Raises:
            CacheUnavailable: If the document is not a valid snapshot
        """
        if not isinstance(data, dict):
            raise CacheUnavailable("cache document must be an object")
        cached_at = _finite_number(data.get("cached_at", 0), "cached_at")
        return cls(
            five_hour=UsageWindow.from_raw(data.get("five_hour")),
            seven_day=UsageWindow.from_raw(data.get("seven_day")),
            cached_at=int(cached_at),
        )
