"""
Report Summary Schema - structured view of one report run
"""

from datetime import date, datetime
from typing import Dict, List
from pydantic import BaseModel, ConfigDict, Field


class ReportSummary(BaseModel):
    """Machine-readable summary returned by the handler alongside the Slack digest."""
    model_config = ConfigDict(frozen=True)

    generated_at: datetime
    range_start: datetime = Field(..., description="Metric lookback start (UTC)")
    range_end: datetime = Field(..., description="Metric lookback end (UTC, exclusive)")
    billing_range_start: date
    billing_range_end: date = Field(..., description="Billing range end (exclusive)")
    total_resources_scanned: int = 0
    idle_count: int = 0
    per_category_totals: Dict[str, float] = Field(default_factory=dict)
    grand_total: float = 0.0
    failed_sections: List[str] = Field(default_factory=list)
