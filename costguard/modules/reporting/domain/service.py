"""
Cost Hygiene Service

Orchestrates one report run:
- Lists running resources per category through the inventory port.
- Fans out one metric task per resource (bounded by a semaphore).
- Queries billed spend by service and by cost-allocation tag.
- Assembles the report, isolating failures to the category they happen in.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

import structlog

from costguard.modules.reporting.domain import rendering
from costguard.modules.reporting.domain.aggregation import StatisticKind, aggregate
from costguard.modules.reporting.domain.assembler import FailedSection, Report, ReportSection, assemble
from costguard.modules.reporting.domain.classifier import UtilizationClass, classify_idle
from costguard.modules.reporting.domain.estimator import PricingModel, ResourceUsageRecord, estimate_record_cost
from costguard.modules.reporting.domain.ports import (
    BillingSource,
    GroupBy,
    MetricSource,
    Notifier,
    ResourceCategory,
    ResourceDescriptor,
    ResourceInventory,
)
from costguard.modules.reporting.domain.tags import accumulate, parse_group_key, parse_service_key, rank
from costguard.modules.reporting.domain.window import TimeWindow, last_n_days
from costguard.schemas.report import ReportSummary
from costguard.shared.core.exceptions import (
    AdapterError,
    ConfigurationError,
    ContractViolationError,
)
from costguard.shared.core.ops_metrics import (
    CATEGORY_FAILURES,
    NOTIFICATIONS,
    RESOURCES_SCANNED,
    SECTION_LATENCY,
)

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")

CPU_METRIC = "CPUUtilization"
READ_METRIC = "ConsumedReadCapacityUnits"
WRITE_METRIC = "ConsumedWriteCapacityUnits"

COMPUTE_TITLE = "Compute - idle EC2 instances"
STORAGE_TITLE = "Storage - DynamoDB tables"
SERVICES_TITLE = "Top services (billed)"


def tag_section_title(tag_key: str) -> str:
    return f"Top {tag_key} tag values (billed)"


async def join_all(awaitables: Iterable[Awaitable[T]]) -> List[T]:
    """
    Awaits every awaitable as a task, results in input order.

    If one raises, the still-pending siblings are cancelled and awaited before
    the error propagates.
    """
    tasks = [asyncio.ensure_future(aw) for aw in awaitables]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


@dataclass(frozen=True)
class ReportConfig:
    """Immutable per-run configuration handed to the service."""
    lookback_days: int
    metric_period_seconds: int
    idle_threshold_percent: float
    top_n: int
    tag_key: str
    max_concurrency: int
    category_timeout_seconds: float
    pricing: PricingModel

    @classmethod
    def from_settings(cls, settings) -> "ReportConfig":
        if settings.LOOKBACK_DAYS < 1:
            raise ContractViolationError(
                "LOOKBACK_DAYS must be at least 1", details={"lookback_days": settings.LOOKBACK_DAYS}
            )
        if settings.METRIC_PERIOD_SECONDS < 1:
            raise ConfigurationError(
                "METRIC_PERIOD_SECONDS must be positive",
                details={"metric_period_seconds": settings.METRIC_PERIOD_SECONDS},
            )
        if settings.MAX_CONCURRENT_METRIC_FETCHES < 1:
            raise ConfigurationError("MAX_CONCURRENT_METRIC_FETCHES must be at least 1")
        if settings.TOP_N < 0:
            raise ConfigurationError("TOP_N must not be negative")
        if settings.CATEGORY_TIMEOUT_SECONDS <= 0:
            raise ConfigurationError(
                "CATEGORY_TIMEOUT_SECONDS must be positive",
                details={"category_timeout_seconds": settings.CATEGORY_TIMEOUT_SECONDS},
            )

        return cls(
            lookback_days=settings.LOOKBACK_DAYS,
            metric_period_seconds=settings.METRIC_PERIOD_SECONDS,
            idle_threshold_percent=settings.CPU_IDLE_THRESHOLD_PERCENT,
            top_n=settings.TOP_N,
            tag_key=(settings.COST_TAG_KEY or "").strip(),
            max_concurrency=settings.MAX_CONCURRENT_METRIC_FETCHES,
            category_timeout_seconds=settings.CATEGORY_TIMEOUT_SECONDS,
            pricing=PricingModel.from_prices(
                settings.DYNAMODB_READ_PRICE_PER_MILLION,
                settings.DYNAMODB_WRITE_PRICE_PER_MILLION,
                settings.DYNAMODB_STORAGE_PRICE_PER_GB_MONTH,
            ),
        )


@dataclass(frozen=True)
class CategoryOutcome:
    section: Union[ReportSection, FailedSection]
    resources_scanned: int = 0
    idle_count: int = 0


@dataclass(frozen=True)
class ReportRun:
    """Result of one run: the assembled report plus the windows it covers."""
    report: Report
    window: TimeWindow
    billing_window: TimeWindow
    lookback_days: int
    resources_scanned: int = 0
    idle_count: int = 0
    failed_sections: Tuple[str, ...] = field(default_factory=tuple)

    def render(self) -> str:
        return rendering.render_report(self.report, self.window, self.lookback_days)

    def summary(self) -> ReportSummary:
        return ReportSummary(
            generated_at=self.report.generated_at,
            range_start=self.window.start,
            range_end=self.window.end,
            billing_range_start=self.billing_window.start.date(),
            billing_range_end=self.billing_window.end.date(),
            total_resources_scanned=self.resources_scanned,
            idle_count=self.idle_count,
            per_category_totals=dict(self.report.service_totals),
            grand_total=self.report.grand_total,
            failed_sections=list(self.failed_sections),
        )


class CostHygieneService:
    def __init__(
        self,
        config: ReportConfig,
        inventory: ResourceInventory,
        metrics: MetricSource,
        billing: BillingSource,
    ):
        self.config = config
        self.inventory = inventory
        self.metrics = metrics
        self.billing = billing

    async def build_report(self, anchor: Optional[datetime] = None) -> ReportRun:
        """
        Runs every category concurrently and assembles the report.

        Args:
            anchor: End of the lookback window, defaults to now (UTC).

        Raises:
            ContractViolationError: invalid windows, pricing or section titles.
        """
        config = self.config
        window = last_n_days(config.lookback_days, anchor)
        billing_window = last_n_days(config.lookback_days, anchor, day_aligned=True)

        categories: List[Tuple[str, str, Callable[[], Awaitable[CategoryOutcome]]]] = [
            ("compute", COMPUTE_TITLE, lambda: self._compute_section(window)),
            ("storage", STORAGE_TITLE, lambda: self._storage_section(window)),
            ("services", SERVICES_TITLE, lambda: self._billing_section(
                billing_window, GroupBy.service(), parse_service_key, "service"
            )),
        ]
        if config.tag_key:
            tag_key = config.tag_key
            categories.append((
                "tags",
                tag_section_title(tag_key),
                lambda: self._billing_section(
                    billing_window,
                    GroupBy.tag(tag_key),
                    lambda raw: parse_group_key(raw, tag_key),
                    "tag value",
                ),
            ))

        logger.info(
            "report_run_starting",
            categories=[label for label, _, _ in categories],
            window_start=window.start.isoformat(),
            window_end=window.end.isoformat(),
        )

        outcomes = await join_all(
            self._isolated(label, title, build) for label, title, build in categories
        )

        report = assemble([outcome.section for outcome in outcomes], datetime.now(timezone.utc))
        failed = tuple(o.section.title for o in outcomes if isinstance(o.section, FailedSection))
        run = ReportRun(
            report=report,
            window=window,
            billing_window=billing_window,
            lookback_days=config.lookback_days,
            resources_scanned=sum(o.resources_scanned for o in outcomes),
            idle_count=sum(o.idle_count for o in outcomes),
            failed_sections=failed,
        )

        logger.info(
            "report_run_assembled",
            sections=len(report.sections),
            failed_sections=list(failed),
            resources_scanned=run.resources_scanned,
            grand_total=round(report.grand_total, 2),
        )
        return run

    async def _isolated(
        self,
        label: str,
        title: str,
        build: Callable[[], Awaitable[CategoryOutcome]],
    ) -> CategoryOutcome:
        """Runs one category; any failure except a contract violation becomes a FailedSection."""
        start_time = time.perf_counter()
        try:
            outcome = await asyncio.wait_for(build(), timeout=self.config.category_timeout_seconds)
            logger.info("category_section_built", category=label, resources=outcome.resources_scanned)
            return outcome
        except ContractViolationError:
            raise
        except asyncio.TimeoutError:
            error = f"timed out after {self.config.category_timeout_seconds:g}s"
        except AdapterError as e:
            error = e.message
        except Exception as e:
            error = str(e) or type(e).__name__
        finally:
            SECTION_LATENCY.labels(category=label).observe(time.perf_counter() - start_time)

        logger.error("category_section_failed", category=label, error=error)
        CATEGORY_FAILURES.labels(category=label).inc()
        return CategoryOutcome(section=FailedSection(title=title, error=error))

    async def _fan_out(self, items: Sequence[T], fetch: Callable[[T], Awaitable[R]]) -> List[R]:
        """One task per item, bounded by max_concurrency; results keep item order."""
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def bounded(item: T) -> R:
            async with semaphore:
                return await fetch(item)

        return await join_all(bounded(item) for item in items)

    async def _compute_section(self, window: TimeWindow) -> CategoryOutcome:
        config = self.config
        instances = await self.inventory.list_running_resources(ResourceCategory.COMPUTE)
        RESOURCES_SCANNED.labels(category="compute").inc(len(instances))

        async def classify(resource: ResourceDescriptor) -> rendering.ClassifiedInstance:
            samples = await self.metrics.fetch_metric_samples(
                resource, CPU_METRIC, window, config.metric_period_seconds, StatisticKind.AVERAGE
            )
            agg = aggregate(samples, StatisticKind.AVERAGE)
            return resource, agg, classify_idle(agg, config.idle_threshold_percent)

        classified = await self._fan_out(instances, classify)
        idle_count = sum(1 for _, _, utilization in classified if utilization == UtilizationClass.IDLE)

        section = ReportSection(
            title=COMPUTE_TITLE,
            narrative=rendering.compute_narrative(
                classified, config.idle_threshold_percent, config.lookback_days, config.top_n
            ),
            estimated_monthly_cost=None,
        )
        return CategoryOutcome(section=section, resources_scanned=len(instances), idle_count=idle_count)

    async def _storage_section(self, window: TimeWindow) -> CategoryOutcome:
        config = self.config
        tables = await self.inventory.list_running_resources(ResourceCategory.STORAGE)
        RESOURCES_SCANNED.labels(category="storage").inc(len(tables))
        buckets = window.bucket_count(config.metric_period_seconds)

        async def collect(resource: ResourceDescriptor) -> rendering.EstimatedTable:
            consumed = {}
            for component, metric_name in (("read", READ_METRIC), ("write", WRITE_METRIC)):
                samples = await self.metrics.fetch_metric_samples(
                    resource, metric_name, window, config.metric_period_seconds, StatisticKind.SUM
                )
                consumed[component] = aggregate(samples, StatisticKind.SUM)

            record = ResourceUsageRecord(
                resource_id=resource.resource_id,
                category=resource.category,
                size_bytes=resource.size_bytes,
                consumed_units=consumed,
            )
            return resource, record, estimate_record_cost(record, window, buckets, config.pricing)

        estimated = await self._fan_out(tables, collect)

        section_cost: Optional[float] = None
        if estimated:
            section_cost = 0.0
            for _, _, breakdown in estimated:
                section_cost += breakdown.total_cost

        section = ReportSection(
            title=STORAGE_TITLE,
            narrative=rendering.storage_narrative(estimated, config.top_n),
            estimated_monthly_cost=section_cost,
        )
        return CategoryOutcome(section=section, resources_scanned=len(tables))

    async def _billing_section(
        self,
        billing_window: TimeWindow,
        group_by: GroupBy,
        key_parser: Callable[[str], str],
        noun: str,
    ) -> CategoryOutcome:
        buckets = await self.billing.fetch_billing_groups(billing_window, group_by)
        totals = accumulate(
            (group for bucket in buckets for group in bucket.groups),
            key_parser=key_parser,
        )
        ranked = rank(totals)

        title = SERVICES_TITLE if group_by.type == "DIMENSION" else tag_section_title(group_by.key)
        section = ReportSection(
            title=title,
            narrative=rendering.billing_narrative(ranked, self.config.top_n, billing_window, noun),
            # Observed spend, not a monthly estimate; counting it would double the storage estimate
            estimated_monthly_cost=None,
        )
        return CategoryOutcome(section=section)


async def deliver(run: ReportRun, notifier: Optional[Notifier]) -> bool:
    """Posts the rendered report. Never raises; returns whether it was delivered."""
    if notifier is None:
        logger.info("report_notification_skipped", reason="slack_not_configured")
        NOTIFICATIONS.labels(outcome="skipped").inc()
        return False

    text = run.render()
    try:
        sent = await notifier.notify(text)
    except Exception as e:
        logger.error("report_notification_failed", error=str(e))
        sent = False

    NOTIFICATIONS.labels(outcome="sent" if sent else "failed").inc()
    if sent:
        logger.info("report_notification_sent", length=len(text))
    else:
        logger.warning("report_notification_not_delivered")
    return sent
