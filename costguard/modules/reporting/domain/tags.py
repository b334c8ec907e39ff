"""
Billing Group Breakdown

Folds Cost Explorer groups (by SERVICE or by a cost-allocation tag) into
per-key totals and ranks them.

Tag group keys come back as "<TagKey>$<value>", e.g. "Project$web", or
"Project$" for resources without the tag.
"""

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar

import structlog

from costguard.modules.reporting.domain.ports import BillingGroup

logger = structlog.get_logger()

T = TypeVar("T")

NO_VALUE = "(no value)"
UNKNOWN_SERVICE = "UNKNOWN"


@dataclass(frozen=True)
class RankedEntry:
    key: str
    amount: float


def parse_group_key(raw_key: str, tag_key: str) -> str:
    """Tag value from a "<tag_key>$<value>" group key; unexpected formats pass through."""
    if not raw_key:
        return NO_VALUE
    prefix = f"{tag_key}$"
    if raw_key.startswith(prefix):
        return raw_key[len(prefix):] or NO_VALUE
    return raw_key


def parse_service_key(raw_key: str) -> str:
    return raw_key or UNKNOWN_SERVICE


def accumulate(
    groups: Iterable[BillingGroup],
    key_parser: Optional[Callable[[str], str]] = None,
) -> Mapping[str, float]:
    """
    Sums amounts per parsed key across all buckets of a billing response.

    Non-finite amounts (NaN/Infinity) are skipped without aborting the fold.
    """
    totals: Dict[str, float] = {}
    skipped = 0
    for group in groups:
        if not math.isfinite(group.amount):
            skipped += 1
            continue
        key = key_parser(group.key) if key_parser else group.key
        totals[key] = totals.get(key, 0.0) + group.amount

    if skipped:
        logger.debug("billing_amounts_skipped", count=skipped, reason="non_finite")
    return MappingProxyType(totals)


def rank(totals: Mapping[str, float]) -> List[RankedEntry]:
    """Amount descending, then key ascending."""
    return [
        RankedEntry(key=key, amount=amount)
        for key, amount in sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    ]


def top_n(ranked: Sequence[T], n: int) -> List[T]:
    """First `n` entries of an already ranked sequence; a negative `n` yields none."""
    return list(ranked[:max(n, 0)])
