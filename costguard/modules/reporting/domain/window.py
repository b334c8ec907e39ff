"""
Lookback Windows

Half-open [start, end) UTC intervals over which metric and billing samples
are collected for one report run.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from costguard.shared.core.exceptions import ContractViolationError

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class TimeWindow:
    """Lookback interval, end exclusive."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if not self.start < self.end:
            raise ContractViolationError(
                "TimeWindow start must be before end",
                details={"start": self.start.isoformat(), "end": self.end.isoformat()}
            )

    @property
    def length_seconds(self) -> float:
        return (self.end - self.start).total_seconds()

    @property
    def length_days(self) -> float:
        return self.length_seconds / SECONDS_PER_DAY

    def bucket_count(self, bucket_seconds: int) -> int:
        """Number of whole buckets of `bucket_seconds` covering the window (at least 1)."""
        if bucket_seconds < 1:
            raise ContractViolationError(
                "bucket_seconds must be >= 1", details={"bucket_seconds": bucket_seconds}
            )
        return max(1, int(self.length_seconds // bucket_seconds))

    def as_cost_explorer_period(self) -> Dict[str, str]:
        # Cost Explorer wants 'YYYY-MM-DD' strings
        return {
            "Start": self.start.date().isoformat(),
            "End": self.end.date().isoformat(),
        }


def day_floor(instant: datetime) -> datetime:
    """Midnight UTC of the day containing `instant`."""
    instant = _as_utc(instant)
    return instant.replace(hour=0, minute=0, second=0, microsecond=0)


def last_n_days(n: int, anchor: Optional[datetime] = None, *, day_aligned: bool = False) -> TimeWindow:
    """
    Returns the window covering the `n` days before `anchor`.

    Args:
        n: Lookback length in days (>= 1).
        anchor: Reference instant, defaults to now (UTC). Naive values are taken as UTC.
        day_aligned: Snap the end to the UTC day boundary, as billing APIs require.
    """
    if n < 1:
        raise ContractViolationError("Lookback must be at least 1 day", details={"lookback_days": n})

    anchor = _as_utc(anchor) if anchor is not None else datetime.now(timezone.utc)
    end = day_floor(anchor) if day_aligned else anchor
    return TimeWindow(start=end - timedelta(days=n), end=end)


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)
