import os
# Pin settings for all tests BEFORE any costguard imports
os.environ["ENVIRONMENT"] = "development"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ.pop("SLACK_BOT_TOKEN", None)
os.environ.pop("SLACK_CHANNEL_ID", None)

import pytest
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from costguard.modules.reporting.domain.aggregation import MetricSample
from costguard.modules.reporting.domain.estimator import PricingModel
from costguard.modules.reporting.domain.ports import (
    BillingBucket,
    BillingSource,
    MetricSource,
    Notifier,
    ResourceCategory,
    ResourceInventory,
)
from costguard.modules.reporting.domain.service import ReportConfig
from costguard.shared.core.config import get_settings

ANCHOR = datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def anchor() -> datetime:
    return ANCHOR


@pytest.fixture
def report_config() -> ReportConfig:
    return ReportConfig(
        lookback_days=7,
        metric_period_seconds=3600,
        idle_threshold_percent=5.0,
        top_n=10,
        tag_key="Project",
        max_concurrency=3,
        category_timeout_seconds=5,
        pricing=PricingModel.from_prices(0.25, 1.25, 0.25),
    )


def hourly_samples(values, start: datetime = ANCHOR - timedelta(days=7)) -> List[MetricSample]:
    return [MetricSample(bucket_start=start + timedelta(hours=i), value=v) for i, v in enumerate(values)]


class FakeInventory(ResourceInventory):
    def __init__(self, resources: Optional[Dict[ResourceCategory, list]] = None, fail: Optional[Dict] = None):
        self.resources = resources or {}
        self.fail = fail or {}

    async def list_running_resources(self, category):
        if category in self.fail:
            raise self.fail[category]
        return list(self.resources.get(category, []))


class FakeMetrics(MetricSource):
    """Samples keyed by (resource_id, metric_name)."""

    def __init__(self, samples: Optional[Dict] = None):
        self.samples = samples or {}
        self.calls = []

    async def fetch_metric_samples(self, resource, metric_name, window, bucket_seconds, statistic):
        self.calls.append((resource.resource_id, metric_name, statistic))
        return list(self.samples.get((resource.resource_id, metric_name), []))


class FakeBilling(BillingSource):
    """Buckets keyed by GroupBy type ('DIMENSION' or 'TAG')."""

    def __init__(self, buckets: Optional[Dict[str, List[BillingBucket]]] = None, fail: Optional[Exception] = None):
        self.buckets = buckets or {}
        self.fail = fail
        self.calls = []

    async def fetch_billing_groups(self, window, group_by):
        self.calls.append((window, group_by))
        if self.fail is not None:
            raise self.fail
        return list(self.buckets.get(group_by.type, []))


class FakeNotifier(Notifier):
    def __init__(self, result: bool = True):
        self.result = result
        self.messages = []

    async def notify(self, text):
        self.messages.append(text)
        return self.result
