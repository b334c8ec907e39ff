"""
Monthly Cost Estimation

Extrapolates consumed capacity observed over a lookback window to a 30-day
month and prices it per unit.

Cost structure (DynamoDB on-demand, us-east-1):
    - Reads:   $0.25 / million read request units
    - Writes:  $1.25 / million write request units
    - Storage: $0.25 / GB-month (binary GB, 1024^3 bytes)
"""

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Tuple

from costguard.modules.reporting.domain.aggregation import AggregateResult
from costguard.modules.reporting.domain.ports import ResourceCategory
from costguard.modules.reporting.domain.window import TimeWindow
from costguard.shared.core.exceptions import ContractViolationError

READ_REQUEST_MILLION = "read-request-million"
WRITE_REQUEST_MILLION = "write-request-million"
STORAGE_GB_MONTH = "storage-gb-month"

DAYS_PER_MONTH = 30.0
UNITS_PER_MILLION = 1_000_000
BYTES_PER_GB = 1024 ** 3


@dataclass(frozen=True)
class PriceEntry:
    unit_name: str
    price_per_unit: float


@dataclass(frozen=True)
class PricingModel:
    """Ordered, immutable set of unit prices keyed by unit name."""
    entries: Tuple[PriceEntry, ...]

    def __post_init__(self):
        seen = set()
        for entry in self.entries:
            price = entry.price_per_unit
            if not isinstance(price, (int, float)) or math.isnan(price) or math.isinf(price) or price < 0:
                raise ContractViolationError(
                    "Prices must be finite and non-negative",
                    details={"unit": entry.unit_name, "price": price}
                )
            if entry.unit_name in seen:
                raise ContractViolationError("Duplicate pricing unit", details={"unit": entry.unit_name})
            seen.add(entry.unit_name)

    @classmethod
    def from_prices(
        cls,
        read_per_million: float,
        write_per_million: float,
        storage_per_gb_month: float,
    ) -> "PricingModel":
        return cls(entries=(
            PriceEntry(READ_REQUEST_MILLION, read_per_million),
            PriceEntry(WRITE_REQUEST_MILLION, write_per_million),
            PriceEntry(STORAGE_GB_MONTH, storage_per_gb_month),
        ))

    def price(self, unit_name: str) -> float:
        for entry in self.entries:
            if entry.unit_name == unit_name:
                return entry.price_per_unit
        raise ContractViolationError("No price configured for unit", details={"unit": unit_name})


@dataclass(frozen=True)
class CostBreakdown:
    """Per-component monthly costs; total_cost is their sum."""
    component_costs: Mapping[str, float]
    total_cost: float


@dataclass(frozen=True)
class ResourceUsageRecord:
    """Usage of one resource over the lookback window, keyed by 'read'/'write'."""
    resource_id: str
    category: ResourceCategory
    size_bytes: int
    consumed_units: Mapping[str, AggregateResult] = field(default_factory=dict)


def _window_total(agg: AggregateResult, buckets_per_window: int) -> float:
    # No datapoints means nothing was consumed, which is billed as zero.
    if agg.is_absent:
        return 0.0
    return agg.value * buckets_per_window


def estimate_monthly_cost(
    window: TimeWindow,
    consumed_read: AggregateResult,
    consumed_write: AggregateResult,
    buckets_per_window: int,
    size_bytes: int,
    pricing: PricingModel,
) -> CostBreakdown:
    """
    Extrapolates window usage to a 30-day month and prices it.

    Args:
        window: Lookback window the aggregates were computed over.
        consumed_read: Average per-bucket consumed read units.
        consumed_write: Average per-bucket consumed write units.
        buckets_per_window: Number of metric buckets in the window.
        size_bytes: Static table size.
        pricing: Unit prices.

    Returns:
        CostBreakdown with 'read', 'write' and 'storage' components.
    """
    if buckets_per_window < 1:
        raise ContractViolationError(
            "buckets_per_window must be >= 1", details={"buckets_per_window": buckets_per_window}
        )
    if size_bytes < 0:
        raise ContractViolationError("size_bytes must be non-negative", details={"size_bytes": size_bytes})

    scale = DAYS_PER_MONTH / window.length_days
    monthly_reads = _window_total(consumed_read, buckets_per_window) * scale
    monthly_writes = _window_total(consumed_write, buckets_per_window) * scale

    read_cost = (monthly_reads / UNITS_PER_MILLION) * pricing.price(READ_REQUEST_MILLION)
    write_cost = (monthly_writes / UNITS_PER_MILLION) * pricing.price(WRITE_REQUEST_MILLION)
    storage_cost = (size_bytes / BYTES_PER_GB) * pricing.price(STORAGE_GB_MONTH)

    return CostBreakdown(
        component_costs=MappingProxyType({
            "read": read_cost,
            "write": write_cost,
            "storage": storage_cost,
        }),
        total_cost=read_cost + write_cost + storage_cost,
    )


def estimate_record_cost(
    record: ResourceUsageRecord,
    window: TimeWindow,
    buckets_per_window: int,
    pricing: PricingModel,
) -> CostBreakdown:
    """estimate_monthly_cost for a collected ResourceUsageRecord."""
    return estimate_monthly_cost(
        window=window,
        consumed_read=record.consumed_units["read"],
        consumed_write=record.consumed_units["write"],
        buckets_per_window=buckets_per_window,
        size_bytes=record.size_bytes,
        pricing=pricing,
    )
