"""
Operational Metrics for costguard

Prometheus metrics for tracking report runs, category health and delivery.
"""

from prometheus_client import Counter, Histogram

# --- Run Metrics ---
REPORT_RUNS = Counter(
    "costguard_report_runs_total",
    "Total number of report runs by outcome",
    ["status"]  # 'success', 'contract_violation', 'error'
)

# --- Category Metrics ---
CATEGORY_FAILURES = Counter(
    "costguard_category_failures_total",
    "Total number of report categories replaced by an error placeholder",
    ["category"]
)

SECTION_LATENCY = Histogram(
    "costguard_section_latency_seconds",
    "Latency of building a single report section",
    ["category"],
    buckets=(1, 5, 10, 30, 60, 120, 300)
)

RESOURCES_SCANNED = Counter(
    "costguard_resources_scanned_total",
    "Total number of inventoried resources",
    ["category"]
)

# --- Delivery Metrics ---
NOTIFICATIONS = Counter(
    "costguard_notifications_total",
    "Total number of notification attempts by outcome",
    ["outcome"]  # 'sent', 'failed', 'skipped'
)
