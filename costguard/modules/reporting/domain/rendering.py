"""
Report Rendering

Turns computed section data into Slack mrkdwn narratives and the report into
the final digest. Costs are shown with 2 decimals, per-bucket rates with 4.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from costguard.modules.notifications.domain.slack import SlackService
from costguard.modules.reporting.domain.aggregation import AggregateResult
from costguard.modules.reporting.domain.assembler import Report
from costguard.modules.reporting.domain.classifier import UtilizationClass
from costguard.modules.reporting.domain.estimator import CostBreakdown, ResourceUsageRecord
from costguard.modules.reporting.domain.ports import ResourceDescriptor
from costguard.modules.reporting.domain import tags
from costguard.modules.reporting.domain.tags import RankedEntry
from costguard.modules.reporting.domain.window import TimeWindow

NOT_ESTIMATED = "_not estimated_"
NO_DATA = "no data"

ClassifiedInstance = Tuple[ResourceDescriptor, AggregateResult, UtilizationClass]
EstimatedTable = Tuple[ResourceDescriptor, ResourceUsageRecord, CostBreakdown]


def format_cost(amount: float) -> str:
    return f"${amount:,.2f}"


def format_rate(value: float) -> str:
    return f"{value:.4f}"


def format_estimate(amount: Optional[float]) -> str:
    return format_cost(amount) if amount is not None else NOT_ESTIMATED


def _format_instant(instant: datetime) -> str:
    return instant.strftime("%Y-%m-%d %H:%M")


def _format_range(window: TimeWindow, *, dates_only: bool = False) -> str:
    if dates_only:
        return f"`{window.start.date().isoformat()}` → `{window.end.date().isoformat()}`"
    return f"`{_format_instant(window.start)}` → `{_format_instant(window.end)}`"


def _label(resource: ResourceDescriptor) -> str:
    return SlackService.escape_mrkdwn(resource.display_name)


def _rate_or_no_data(agg: AggregateResult) -> str:
    return NO_DATA if agg.is_absent else format_rate(agg.value)


def compute_narrative(
    classified: Sequence[ClassifiedInstance],
    threshold_percent: float,
    lookback_days: int,
    top_n: int,
) -> str:
    if not classified:
        return "No running EC2 instances found (0 resources scanned)."

    idle = [item for item in classified if item[2] == UtilizationClass.IDLE]
    unknown = [item for item in classified if item[2] == UtilizationClass.UNKNOWN]
    active_count = len(classified) - len(idle) - len(unknown)

    lines = [
        f"Scanned {len(classified)} running instance(s) over the last {lookback_days} day(s): "
        f"{len(idle)} idle (avg CPU < {threshold_percent:g}%), {active_count} active, "
        f"{len(unknown)} without CPU data."
    ]

    # Lowest utilization first
    idle.sort(key=lambda item: (item[1].value, item[0].resource_id))
    for resource, agg, _ in tags.top_n(idle, top_n):
        instance_type = resource.attributes.get("instance_type", "")
        suffix = f" {instance_type}" if instance_type else ""
        lines.append(f"• `{_label(resource)}`{suffix}: avg CPU {format_rate(agg.value)}%")
    if len(idle) > top_n:
        lines.append(f"…and {len(idle) - top_n} more idle instance(s).")

    if unknown:
        names = ", ".join(f"`{_label(resource)}`" for resource, _, _ in tags.top_n(unknown, top_n))
        if names:
            lines.append(f"No CPU datapoints: {names}")
    return "\n".join(lines)


def storage_narrative(estimated: Sequence[EstimatedTable], top_n: int) -> str:
    if not estimated:
        return "No DynamoDB tables found (0 resources scanned)."

    ranked = sorted(estimated, key=lambda item: (-item[2].total_cost, item[0].resource_id))
    section_total = 0.0
    for _, _, breakdown in estimated:
        section_total += breakdown.total_cost

    lines = [
        f"{len(estimated)} table(s), estimated {format_cost(section_total)}/month. "
        f"Top {min(top_n, len(ranked))} by estimated monthly cost:"
    ]
    for resource, record, breakdown in tags.top_n(ranked, top_n):
        components = breakdown.component_costs
        lines.append(
            f"• `{_label(resource)}`: {format_cost(breakdown.total_cost)}/month "
            f"(read {format_cost(components['read'])}, write {format_cost(components['write'])}, "
            f"storage {format_cost(components['storage'])}; per bucket "
            f"{_rate_or_no_data(record.consumed_units['read'])} RCU / "
            f"{_rate_or_no_data(record.consumed_units['write'])} WCU)"
        )
    return "\n".join(lines)


def billing_narrative(
    ranked: List[RankedEntry],
    top_n: int,
    billing_window: TimeWindow,
    noun: str,
) -> str:
    if not ranked:
        return f"No billed spend recorded for {_format_range(billing_window, dates_only=True)}."

    observed = 0.0
    for entry in ranked:
        observed += entry.amount

    shown = tags.top_n(ranked, top_n)
    lines = [
        f"Observed spend {_format_range(billing_window, dates_only=True)} (end exclusive): "
        f"{format_cost(observed)} across {len(ranked)} {noun}(s). Observed, not a monthly estimate."
    ]
    for entry in shown:
        lines.append(f"• *{SlackService.escape_mrkdwn(entry.key)}*: {format_cost(entry.amount)}")
    return "\n".join(lines)


def render_report(report: Report, window: TimeWindow, lookback_days: int) -> str:
    """Full Slack digest for one run."""
    lines = [
        f"*AWS cost hygiene report - last {lookback_days} day(s)*",
        f"Range (UTC): {_format_range(window)} (end exclusive)",
    ]

    any_not_estimated = False
    for section in report.sections:
        if section.estimated_monthly_cost is None:
            any_not_estimated = True
        lines.append("")
        lines.append(f"*{section.title}*")
        lines.append(f"Estimated monthly cost: {format_estimate(section.estimated_monthly_cost)}")
        lines.append(section.narrative)

    lines.append("")
    lines.append(f"*Estimated monthly total: {format_cost(report.grand_total)}*")
    if any_not_estimated:
        lines.append("_Sections marked not estimated contribute nothing to the total._")
    return "\n".join(lines)
