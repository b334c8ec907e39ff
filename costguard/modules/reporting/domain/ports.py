"""
Collaborator Ports

Abstract contracts for the external systems a report run consults. The AWS
adapter and the Slack service implement them; tests inject fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Mapping, Tuple

from costguard.modules.reporting.domain.aggregation import MetricSample, StatisticKind
from costguard.modules.reporting.domain.window import TimeWindow


class ResourceCategory(str, Enum):
    COMPUTE = "compute"
    STORAGE = "storage"


@dataclass(frozen=True)
class ResourceDescriptor:
    """A running resource as reported by the inventory."""
    resource_id: str
    category: ResourceCategory
    name: str = ""
    size_bytes: int = 0
    attributes: Mapping[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        if self.name and self.name != self.resource_id:
            return f"{self.resource_id} ({self.name})"
        return self.resource_id


@dataclass(frozen=True)
class BillingGroup:
    key: str
    amount: float


@dataclass(frozen=True)
class BillingBucket:
    """One Cost Explorer time bucket (a day for DAILY granularity)."""
    bucket_start: date
    groups: Tuple[BillingGroup, ...] = ()


@dataclass(frozen=True)
class GroupBy:
    type: str  # DIMENSION or TAG
    key: str

    @classmethod
    def service(cls) -> "GroupBy":
        return cls(type="DIMENSION", key="SERVICE")

    @classmethod
    def tag(cls, tag_key: str) -> "GroupBy":
        return cls(type="TAG", key=tag_key)


class ResourceInventory(ABC):
    @abstractmethod
    async def list_running_resources(self, category: ResourceCategory) -> List[ResourceDescriptor]:
        """Running resources of a category. An empty list is a valid answer."""


class MetricSource(ABC):
    @abstractmethod
    async def fetch_metric_samples(
        self,
        resource: ResourceDescriptor,
        metric_name: str,
        window: TimeWindow,
        bucket_seconds: int,
        statistic: StatisticKind,
    ) -> List[MetricSample]:
        """Per-bucket samples ordered by bucket start. May be empty."""


class BillingSource(ABC):
    @abstractmethod
    async def fetch_billing_groups(self, window: TimeWindow, group_by: GroupBy) -> List[BillingBucket]:
        """Billed amounts per time bucket, grouped by `group_by`."""


class Notifier(ABC):
    @abstractmethod
    async def notify(self, text: str) -> bool:
        """Deliver `text`. Returns False on failure; never raises."""
