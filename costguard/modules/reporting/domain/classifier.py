from enum import Enum

from costguard.modules.reporting.domain.aggregation import AggregateResult


class UtilizationClass(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    UNKNOWN = "unknown"  # No datapoints: never reported as idle


def classify_idle(agg: AggregateResult, threshold_percent: float) -> UtilizationClass:
    """Idle iff utilization is present and strictly below the threshold."""
    if agg.is_absent:
        return UtilizationClass.UNKNOWN
    if agg.value < threshold_percent:
        return UtilizationClass.IDLE
    return UtilizationClass.ACTIVE
