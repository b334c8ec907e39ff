"""
Report Assembly

Merges per-category sections into the final report: per-category subtotals
and a grand total, in the order the caller supplied the sections.

A section whose estimated cost is absent contributes 0 to the totals but is
rendered as "not estimated", never as a verified $0.
"""

from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

from costguard.shared.core.exceptions import ContractViolationError


@dataclass(frozen=True)
class ReportSection:
    title: str
    narrative: str
    estimated_monthly_cost: Optional[float] = None


@dataclass(frozen=True)
class FailedSection:
    """A category whose collaborator call failed."""
    title: str
    error: str


@dataclass(frozen=True)
class Report:
    generated_at: datetime
    sections: Tuple[ReportSection, ...]
    service_totals: Mapping[str, float]
    grand_total: float


def placeholder_section(title: str, error: str) -> ReportSection:
    return ReportSection(
        title=title,
        narrative=f"Data unavailable for this run: {error}",
        estimated_monthly_cost=None,
    )


def assemble(
    sections: Sequence[Union[ReportSection, FailedSection]],
    generated_at: datetime,
) -> Report:
    """Builds the report; failed categories become placeholder sections."""
    finalized = []
    service_totals: Dict[str, float] = {}

    for item in sections:
        section = placeholder_section(item.title, item.error) if isinstance(item, FailedSection) else item
        if section.title in service_totals:
            raise ContractViolationError("Duplicate report section title", details={"title": section.title})

        cost = section.estimated_monthly_cost
        service_totals[section.title] = cost if cost is not None else 0.0
        finalized.append(section)

    grand_total = 0.0
    for subtotal in service_totals.values():
        grand_total += subtotal

    return Report(
        generated_at=generated_at,
        sections=tuple(finalized),
        service_totals=MappingProxyType(service_totals),
        grand_total=grand_total,
    )
