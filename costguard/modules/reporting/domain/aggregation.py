"""
Metric Aggregation

Collapses per-bucket CloudWatch samples into one representative value.

The result is always the mean of the bucket values, including for metrics
fetched with the Sum statistic: each bucket already carries its own sum, so
the mean is an "average Sum per bucket" rate. The cost estimator multiplies
it back by the bucket count to recover a window total.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence


class StatisticKind(str, Enum):
    """CloudWatch statistic requested per bucket."""
    AVERAGE = "Average"
    SUM = "Sum"


@dataclass(frozen=True)
class MetricSample:
    """One bucket datapoint. `value` None means the bucket had no datapoint value."""
    bucket_start: datetime
    value: Optional[float] = None


@dataclass(frozen=True)
class AggregateResult:
    """Aggregated metric. `value` None means no data at all (unknown, not zero)."""
    statistic: StatisticKind
    value: Optional[float] = None

    @property
    def is_absent(self) -> bool:
        return self.value is None


def aggregate(samples: Sequence[MetricSample], statistic: StatisticKind) -> AggregateResult:
    """Mean of per-bucket values; absent per-sample values count as 0."""
    if not samples:
        return AggregateResult(statistic=statistic, value=None)

    total = 0.0
    for sample in samples:
        total += sample.value if sample.value is not None else 0.0
    return AggregateResult(statistic=statistic, value=total / len(samples))
