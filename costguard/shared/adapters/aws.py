"""
AWS Adapter

Implements the inventory, metric and billing ports on top of aioboto3:
- EC2 describe_instances (running instances)
- DynamoDB list_tables + describe_table
- CloudWatch get_metric_statistics
- Cost Explorer get_cost_and_usage (grouped by SERVICE or by tag)

Clients are opened once per run: use the adapter as an async context manager.
"""

import math
from contextlib import AsyncExitStack
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog
import tenacity
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from costguard.modules.reporting.domain.aggregation import MetricSample, StatisticKind
from costguard.modules.reporting.domain.ports import (
    BillingBucket,
    BillingGroup,
    BillingSource,
    GroupBy,
    MetricSource,
    ResourceCategory,
    ResourceDescriptor,
    ResourceInventory,
)
from costguard.modules.reporting.domain.window import TimeWindow
from costguard.shared.adapters.aws_utils import client_kwargs, get_boto_session
from costguard.shared.adapters.rate_limiter import RateLimiter
from costguard.shared.core.exceptions import AdapterError

logger = structlog.get_logger()

# GetMetricStatistics returns at most 1440 datapoints per request
MAX_DATAPOINTS_PER_REQUEST = 1440
RETRY_ATTEMPTS = 3

METRIC_DIMENSIONS = {
    ResourceCategory.COMPUTE: ("AWS/EC2", "InstanceId"),
    ResourceCategory.STORAGE: ("AWS/DynamoDB", "TableName"),
}

THROTTLING_CODES = {
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "LimitExceededException",
    "ProvisionedThroughputExceededException",
}
TRANSIENT_ERRORS = (ConnectTimeoutError, ReadTimeoutError, EndpointConnectionError)


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "Unknown")


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    return isinstance(exc, ClientError) and _error_code(exc) in THROTTLING_CODES


def _log_retry(retry_state: tenacity.RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning("aws_call_retry", attempt=retry_state.attempt_number, error=str(exc))


def _parse_amount(raw: Any) -> float:
    # Missing amount means nothing billed; garbage becomes NaN and is skipped downstream
    if raw is None:
        return 0.0
    try:
        return float(raw)
    except (TypeError, ValueError):
        return math.nan


def _as_float(raw: Any) -> Optional[float]:
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _tag_value(tags: Optional[List[Dict[str, str]]], key: str) -> str:
    for tag in tags or []:
        if tag.get("Key") == key:
            return tag.get("Value", "")
    return ""


class AWSAdapter(ResourceInventory, MetricSource, BillingSource):
    def __init__(
        self,
        settings=None,
        session=None,
        retry_wait: Optional[tenacity.wait.wait_base] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        if settings is None:
            from costguard.shared.core.config import get_settings
            settings = get_settings()
        self.settings = settings
        self.session = session or get_boto_session()
        self.rate_limiter = rate_limiter
        self._retry_config = {
            "retry": tenacity.retry_if_exception(_is_retryable),
            "wait": retry_wait or tenacity.wait_exponential(multiplier=1, min=1, max=10),
            "stop": tenacity.stop_after_attempt(RETRY_ATTEMPTS),
            "before_sleep": _log_retry,
            "reraise": True,
        }
        self._stack: Optional[AsyncExitStack] = None
        self._clients: Dict[str, Any] = {}

    async def __aenter__(self) -> "AWSAdapter":
        settings = self.settings
        regions = {
            "ec2": settings.AWS_DEFAULT_REGION,
            "dynamodb": settings.AWS_DEFAULT_REGION,
            "cloudwatch": settings.AWS_DEFAULT_REGION,
            # Cost Explorer is a global service served from us-east-1
            "ce": settings.COST_EXPLORER_REGION,
        }
        self._stack = AsyncExitStack()
        try:
            for service_name, region in regions.items():
                self._clients[service_name] = await self._stack.enter_async_context(
                    self.session.client(**client_kwargs(service_name, region, settings.AWS_ENDPOINT_URL))
                )
        except BaseException:
            await self._stack.aclose()
            self._clients = {}
            raise

        if self.rate_limiter is None:
            self.rate_limiter = RateLimiter(settings.CLOUDWATCH_RATE_PER_SECOND)
        logger.debug("aws_clients_opened", services=list(regions))
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stack is not None:
            await self._stack.aclose()
        self._stack = None
        self._clients = {}

    def _client(self, service_name: str):
        try:
            return self._clients[service_name]
        except KeyError:
            raise RuntimeError("AWSAdapter clients are not open; use 'async with AWSAdapter(...)'") from None

    async def _call(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        """Awaits `func` with retries on throttling and transient errors; failures become AdapterError."""
        try:
            async for attempt in tenacity.AsyncRetrying(**self._retry_config):
                with attempt:
                    return await func(*args, **kwargs)
        except ClientError as e:
            code = _error_code(e)
            message = e.response.get("Error", {}).get("Message", str(e))
            raise AdapterError(
                f"AWS {operation} failed ({code}): {message}",
                code=code,
                details={"operation": operation},
            ) from e
        except BotoCoreError as e:
            raise AdapterError(
                f"AWS {operation} failed: {e}",
                code="aws_connection_error",
                details={"operation": operation},
            ) from e

    # --- ResourceInventory ---

    async def list_running_resources(self, category: ResourceCategory) -> List[ResourceDescriptor]:
        if category == ResourceCategory.COMPUTE:
            resources = await self._call("describe_instances", self._running_instances)
        elif category == ResourceCategory.STORAGE:
            resources = await self._tables()
        else:
            raise ValueError(f"Unsupported resource category: {category}")

        logger.info("aws_resources_listed", category=category.value, count=len(resources))
        return resources

    async def _running_instances(self) -> List[ResourceDescriptor]:
        ec2 = self._client("ec2")
        paginator = ec2.get_paginator("describe_instances")
        instances = []
        async for page in paginator.paginate(
            Filters=[{"Name": "instance-state-name", "Values": ["running"]}]
        ):
            for reservation in page.get("Reservations", []):
                for instance in reservation.get("Instances", []):
                    instances.append(ResourceDescriptor(
                        resource_id=instance["InstanceId"],
                        category=ResourceCategory.COMPUTE,
                        name=_tag_value(instance.get("Tags"), "Name"),
                        attributes={"instance_type": instance.get("InstanceType", "")},
                    ))
        return instances

    async def _table_names(self) -> List[str]:
        paginator = self._client("dynamodb").get_paginator("list_tables")
        names: List[str] = []
        async for page in paginator.paginate():
            names.extend(page.get("TableNames", []))
        return names

    async def _tables(self) -> List[ResourceDescriptor]:
        dynamodb = self._client("dynamodb")
        names = await self._call("list_tables", self._table_names)

        tables = []
        for name in names:
            try:
                response = await self._call("describe_table", dynamodb.describe_table, TableName=name)
            except AdapterError as e:
                if e.code == "ResourceNotFoundException":
                    # Deleted between listing and describing
                    logger.info("dynamodb_table_vanished", table=name)
                    continue
                raise

            table = response.get("Table", {})
            if table.get("TableStatus") == "DELETING":
                continue
            tables.append(ResourceDescriptor(
                resource_id=name,
                category=ResourceCategory.STORAGE,
                name=name,
                size_bytes=int(table.get("TableSizeBytes", 0) or 0),
                attributes={
                    "billing_mode": table.get("BillingModeSummary", {}).get("BillingMode", "PROVISIONED"),
                },
            ))
        return tables

    # --- MetricSource ---

    async def fetch_metric_samples(
        self,
        resource: ResourceDescriptor,
        metric_name: str,
        window: TimeWindow,
        bucket_seconds: int,
        statistic: StatisticKind,
    ) -> List[MetricSample]:
        namespace, dimension = METRIC_DIMENSIONS[resource.category]
        cloudwatch = self._client("cloudwatch")
        span = timedelta(seconds=bucket_seconds * MAX_DATAPOINTS_PER_REQUEST)

        samples: List[MetricSample] = []
        chunk_start = window.start
        while chunk_start < window.end:
            chunk_end = min(chunk_start + span, window.end)
            if self.rate_limiter is not None:
                await self.rate_limiter.acquire()
            response = await self._call(
                "get_metric_statistics",
                cloudwatch.get_metric_statistics,
                Namespace=namespace,
                MetricName=metric_name,
                Dimensions=[{"Name": dimension, "Value": resource.resource_id}],
                StartTime=chunk_start,
                EndTime=chunk_end,
                Period=bucket_seconds,
                Statistics=[statistic.value],
            )
            for datapoint in response.get("Datapoints", []):
                samples.append(MetricSample(
                    bucket_start=datapoint["Timestamp"],
                    value=_as_float(datapoint.get(statistic.value)),
                ))
            chunk_start = chunk_end

        # CloudWatch does not order datapoints
        samples.sort(key=lambda sample: sample.bucket_start)
        return samples

    # --- BillingSource ---

    async def fetch_billing_groups(self, window: TimeWindow, group_by: GroupBy) -> List[BillingBucket]:
        ce = self._client("ce")
        params: Dict[str, Any] = {
            "TimePeriod": window.as_cost_explorer_period(),
            "Granularity": "DAILY",
            "Metrics": ["UnblendedCost"],
            "GroupBy": [{"Type": group_by.type, "Key": group_by.key}],
        }

        buckets: List[BillingBucket] = []
        while True:
            response = await self._call("get_cost_and_usage", ce.get_cost_and_usage, **params)
            for result in response.get("ResultsByTime", []):
                groups = []
                for group in result.get("Groups", []):
                    keys = group.get("Keys") or [""]
                    amount = group.get("Metrics", {}).get("UnblendedCost", {}).get("Amount")
                    groups.append(BillingGroup(key=keys[0], amount=_parse_amount(amount)))
                buckets.append(BillingBucket(
                    bucket_start=date.fromisoformat(result["TimePeriod"]["Start"]),
                    groups=tuple(groups),
                ))

            token = response.get("NextPageToken")
            if not token:
                break
            params["NextPageToken"] = token

        logger.info(
            "cost_explorer_groups_fetched",
            group_by=f"{group_by.type}:{group_by.key}",
            buckets=len(buckets),
        )
        return buckets
