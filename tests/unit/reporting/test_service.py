"""
Tests for CostHygieneService - end-to-end runs against fake collaborators
"""
import asyncio
import dataclasses
import pytest
from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

from costguard.modules.reporting.domain.estimator import BYTES_PER_GB
from costguard.modules.reporting.domain.ports import (
    BillingBucket,
    BillingGroup,
    ResourceCategory,
    ResourceDescriptor,
)
from costguard.modules.reporting.domain.service import (
    COMPUTE_TITLE,
    CPU_METRIC,
    READ_METRIC,
    SERVICES_TITLE,
    STORAGE_TITLE,
    WRITE_METRIC,
    CostHygieneService,
    ReportConfig,
    deliver,
    tag_section_title,
)
from costguard.shared.core.exceptions import (
    AdapterError,
    ConfigurationError,
    ContractViolationError,
)
from tests.conftest import FakeBilling, FakeInventory, FakeMetrics, FakeNotifier, hourly_samples

INSTANCE = ResourceDescriptor(
    resource_id="i-0abc",
    category=ResourceCategory.COMPUTE,
    name="web-1",
    attributes={"instance_type": "t3.micro"},
)
TABLE = ResourceDescriptor(
    resource_id="orders",
    category=ResourceCategory.STORAGE,
    name="orders",
    size_bytes=3 * BYTES_PER_GB,
)


def _service(config, inventory=None, metrics=None, billing=None):
    return CostHygieneService(
        config,
        inventory=inventory or FakeInventory(),
        metrics=metrics or FakeMetrics(),
        billing=billing or FakeBilling(),
    )


def _section(run, title):
    return next(s for s in run.report.sections if s.title == title)


class TestScenarios:
    @pytest.mark.asyncio
    async def test_idle_instance_is_flagged(self, report_config, anchor):
        service = _service(
            report_config,
            inventory=FakeInventory({ResourceCategory.COMPUTE: [INSTANCE]}),
            metrics=FakeMetrics({("i-0abc", CPU_METRIC): hourly_samples([2.0, 3.0, 4.0])}),
        )
        run = await service.build_report(anchor)

        assert run.idle_count == 1
        assert run.resources_scanned == 1
        compute = _section(run, COMPUTE_TITLE)
        assert compute.estimated_monthly_cost is None
        assert "1 idle" in compute.narrative
        assert "i-0abc (web-1)" in compute.narrative
        assert "3.0000%" in compute.narrative

    @pytest.mark.asyncio
    async def test_zero_resources(self, report_config, anchor):
        run = await _service(report_config).build_report(anchor)

        compute = _section(run, COMPUTE_TITLE)
        storage = _section(run, STORAGE_TITLE)
        assert "0 resources scanned" in compute.narrative
        assert "0 resources scanned" in storage.narrative
        assert compute.estimated_monthly_cost is None
        assert storage.estimated_monthly_cost is None
        assert run.report.grand_total == 0.0
        assert run.resources_scanned == 0

    @pytest.mark.asyncio
    async def test_storage_only_table_cost(self, report_config, anchor):
        zeros = hourly_samples([0.0] * 168)
        service = _service(
            report_config,
            inventory=FakeInventory({ResourceCategory.STORAGE: [TABLE]}),
            metrics=FakeMetrics({("orders", READ_METRIC): zeros, ("orders", WRITE_METRIC): zeros}),
        )
        run = await service.build_report(anchor)

        storage = _section(run, STORAGE_TITLE)
        assert storage.estimated_monthly_cost == pytest.approx(0.75)
        assert run.report.grand_total == pytest.approx(0.75)
        assert "$0.75" in storage.narrative

    @pytest.mark.asyncio
    async def test_failed_category_is_isolated(self, report_config, anchor):
        zeros = hourly_samples([0.0] * 24)
        inventory = FakeInventory(
            {ResourceCategory.STORAGE: [TABLE]},
            fail={ResourceCategory.COMPUTE: AdapterError("AWS describe_instances failed (AccessDenied)")},
        )
        service = _service(
            report_config,
            inventory=inventory,
            metrics=FakeMetrics({("orders", READ_METRIC): zeros, ("orders", WRITE_METRIC): zeros}),
        )
        run = await service.build_report(anchor)

        titles = [s.title for s in run.report.sections]
        assert titles == [COMPUTE_TITLE, STORAGE_TITLE, SERVICES_TITLE, tag_section_title("Project")]
        compute = _section(run, COMPUTE_TITLE)
        assert compute.narrative.startswith("Data unavailable for this run")
        assert "Permission denied" in compute.narrative
        assert compute.estimated_monthly_cost is None
        assert run.failed_sections == (COMPUTE_TITLE,)
        assert run.report.grand_total == pytest.approx(0.75)


class TestBillingSections:
    @pytest.mark.asyncio
    async def test_services_and_tags_are_ranked(self, report_config, anchor):
        billing = FakeBilling({
            "DIMENSION": [
                BillingBucket(date(2024, 3, 8), (BillingGroup("Amazon EC2", 10.0), BillingGroup("", 1.0))),
                BillingBucket(date(2024, 3, 9), (BillingGroup("Amazon DynamoDB", 12.0), BillingGroup("Amazon EC2", 5.0))),
            ],
            "TAG": [
                BillingBucket(date(2024, 3, 8), (BillingGroup("Project$web", 4.0), BillingGroup("Project$", 9.0))),
            ],
        })
        run = await _service(report_config, billing=billing).build_report(anchor)

        services = _section(run, SERVICES_TITLE)
        assert services.estimated_monthly_cost is None
        lines = services.narrative.splitlines()
        assert "$28.00" in lines[0]
        assert lines[1] == "• *Amazon EC2*: $15.00"
        assert lines[2] == "• *Amazon DynamoDB*: $12.00"
        assert lines[3] == "• *UNKNOWN*: $1.00"

        tags = _section(run, tag_section_title("Project"))
        assert "• *(no value)*: $9.00" in tags.narrative
        assert "• *web*: $4.00" in tags.narrative
        assert run.report.grand_total == 0.0

    @pytest.mark.asyncio
    async def test_billing_uses_day_aligned_window(self, report_config, anchor):
        billing = FakeBilling()
        run = await _service(report_config, billing=billing).build_report(anchor)

        window, group_by = billing.calls[0]
        assert window.end == datetime(2024, 3, 15, tzinfo=timezone.utc)
        assert window.start == datetime(2024, 3, 8, tzinfo=timezone.utc)
        assert run.window.end == anchor
        assert {call[1].type for call in billing.calls} == {"DIMENSION", "TAG"}

    @pytest.mark.asyncio
    async def test_tag_section_omitted_without_tag_key(self, report_config, anchor):
        config = dataclasses.replace(report_config, tag_key="")
        billing = FakeBilling()
        run = await _service(config, billing=billing).build_report(anchor)

        assert [s.title for s in run.report.sections] == [COMPUTE_TITLE, STORAGE_TITLE, SERVICES_TITLE]
        assert len(billing.calls) == 1

    @pytest.mark.asyncio
    async def test_billing_failure_yields_placeholders(self, report_config, anchor):
        billing = FakeBilling(fail=RuntimeError("cost explorer unavailable"))
        run = await _service(report_config, billing=billing).build_report(anchor)

        services = _section(run, SERVICES_TITLE)
        assert "cost explorer unavailable" in services.narrative
        assert set(run.failed_sections) == {SERVICES_TITLE, tag_section_title("Project")}
        assert _section(run, COMPUTE_TITLE).narrative.startswith("No running EC2 instances")


class TestFailureModes:
    @pytest.mark.asyncio
    async def test_category_timeout_becomes_placeholder(self, report_config, anchor):
        class SlowInventory(FakeInventory):
            async def list_running_resources(self, category):
                if category == ResourceCategory.STORAGE:
                    await asyncio.sleep(5)
                return []

        config = dataclasses.replace(report_config, category_timeout_seconds=0.05)
        run = await _service(config, inventory=SlowInventory()).build_report(anchor)

        storage = _section(run, STORAGE_TITLE)
        assert "timed out" in storage.narrative
        assert run.failed_sections == (STORAGE_TITLE,)

    @pytest.mark.asyncio
    async def test_contract_violation_aborts_run(self, report_config, anchor):
        inventory = FakeInventory(fail={ResourceCategory.COMPUTE: ContractViolationError("bad window")})
        with pytest.raises(ContractViolationError):
            await _service(report_config, inventory=inventory).build_report(anchor)

    @pytest.mark.asyncio
    async def test_contract_violation_cancels_sibling_categories(self, report_config, anchor):
        finished = []

        class AbortingInventory(FakeInventory):
            async def list_running_resources(self, category):
                if category == ResourceCategory.COMPUTE:
                    raise ContractViolationError("bad window")
                await asyncio.sleep(0.2)
                finished.append(category)
                return []

        with pytest.raises(ContractViolationError):
            await _service(report_config, inventory=AbortingInventory()).build_report(anchor)

        pending = [
            task for task in asyncio.all_tasks()
            if task is not asyncio.current_task() and not task.done()
        ]
        assert pending == []
        await asyncio.sleep(0.3)
        assert finished == []

    @pytest.mark.asyncio
    async def test_resource_failure_cancels_sibling_fetches(self, report_config, anchor):
        instances = [
            ResourceDescriptor(resource_id=f"i-{n}", category=ResourceCategory.COMPUTE)
            for n in range(3)
        ]
        finished = []

        class FlakyMetrics(FakeMetrics):
            async def fetch_metric_samples(self, resource, metric_name, window, bucket_seconds, statistic):
                if resource.resource_id == "i-0":
                    raise AdapterError("AWS get_metric_statistics failed (InternalError)")
                await asyncio.sleep(0.2)
                finished.append(resource.resource_id)
                return []

        run = await _service(
            report_config,
            inventory=FakeInventory({ResourceCategory.COMPUTE: instances}),
            metrics=FlakyMetrics(),
        ).build_report(anchor)

        assert run.failed_sections == (COMPUTE_TITLE,)
        await asyncio.sleep(0.3)
        assert finished == []

    @pytest.mark.asyncio
    async def test_metric_fan_out_is_bounded(self, report_config, anchor):
        instances = [
            ResourceDescriptor(resource_id=f"i-{n}", category=ResourceCategory.COMPUTE)
            for n in range(10)
        ]

        class TrackingMetrics(FakeMetrics):
            in_flight = 0
            peak = 0

            async def fetch_metric_samples(self, resource, metric_name, window, bucket_seconds, statistic):
                TrackingMetrics.in_flight += 1
                TrackingMetrics.peak = max(TrackingMetrics.peak, TrackingMetrics.in_flight)
                await asyncio.sleep(0.01)
                TrackingMetrics.in_flight -= 1
                return hourly_samples([50.0])

        run = await _service(
            report_config,
            inventory=FakeInventory({ResourceCategory.COMPUTE: instances}),
            metrics=TrackingMetrics(),
        ).build_report(anchor)

        assert TrackingMetrics.peak <= report_config.max_concurrency
        assert run.resources_scanned == 10
        assert run.idle_count == 0


class TestReportRun:
    @pytest.mark.asyncio
    async def test_summary_and_render(self, report_config, anchor):
        zeros = hourly_samples([0.0] * 24)
        service = _service(
            report_config,
            inventory=FakeInventory({
                ResourceCategory.STORAGE: [TABLE],
                ResourceCategory.COMPUTE: [INSTANCE],
            }),
            metrics=FakeMetrics({
                ("orders", READ_METRIC): zeros,
                ("orders", WRITE_METRIC): zeros,
                ("i-0abc", CPU_METRIC): hourly_samples([1.0]),
            }),
        )
        run = await service.build_report(anchor)

        summary = run.summary()
        assert summary.total_resources_scanned == 2
        assert summary.idle_count == 1
        assert summary.per_category_totals[STORAGE_TITLE] == pytest.approx(0.75)
        assert summary.per_category_totals[COMPUTE_TITLE] == 0.0
        assert summary.billing_range_end == date(2024, 3, 15)
        assert summary.range_end == anchor

        text = run.render()
        assert "Range (UTC): `2024-03-08 10:30` → `2024-03-15 10:30` (end exclusive)" in text
        assert "Estimated monthly cost: _not estimated_" in text
        assert "*Estimated monthly total: $0.75*" in text


class TestDeliver:
    @pytest.mark.asyncio
    async def test_delivers_rendered_text(self, report_config, anchor):
        run = await _service(report_config).build_report(anchor)
        notifier = FakeNotifier()
        assert await deliver(run, notifier) is True
        assert notifier.messages == [run.render()]

    @pytest.mark.asyncio
    async def test_skipped_without_notifier(self, report_config, anchor):
        run = await _service(report_config).build_report(anchor)
        assert await deliver(run, None) is False

    @pytest.mark.asyncio
    async def test_notifier_errors_never_propagate(self, report_config, anchor):
        run = await _service(report_config).build_report(anchor)
        notifier = SimpleNamespace(notify=AsyncMock(side_effect=RuntimeError("socket closed")))
        assert await deliver(run, notifier) is False


class TestReportConfig:
    def _settings(self, **overrides):
        values = dict(
            LOOKBACK_DAYS=7,
            METRIC_PERIOD_SECONDS=3600,
            CPU_IDLE_THRESHOLD_PERCENT=5.0,
            TOP_N=10,
            COST_TAG_KEY=" Project ",
            MAX_CONCURRENT_METRIC_FETCHES=5,
            CATEGORY_TIMEOUT_SECONDS=120,
            DYNAMODB_READ_PRICE_PER_MILLION=0.25,
            DYNAMODB_WRITE_PRICE_PER_MILLION=1.25,
            DYNAMODB_STORAGE_PRICE_PER_GB_MONTH=0.25,
        )
        values.update(overrides)
        return SimpleNamespace(**values)

    def test_from_settings(self):
        config = ReportConfig.from_settings(self._settings())
        assert config.tag_key == "Project"
        assert config.pricing.price("storage-gb-month") == 0.25

    def test_negative_price_is_contract_violation(self):
        with pytest.raises(ContractViolationError):
            ReportConfig.from_settings(self._settings(DYNAMODB_WRITE_PRICE_PER_MILLION=-1.0))

    def test_zero_lookback_is_contract_violation(self):
        with pytest.raises(ContractViolationError):
            ReportConfig.from_settings(self._settings(LOOKBACK_DAYS=0))

    def test_non_positive_period_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            ReportConfig.from_settings(self._settings(METRIC_PERIOD_SECONDS=0))

    @pytest.mark.parametrize("timeout", [0, -5])
    def test_non_positive_category_timeout_is_configuration_error(self, timeout):
        with pytest.raises(ConfigurationError):
            ReportConfig.from_settings(self._settings(CATEGORY_TIMEOUT_SECONDS=timeout))
