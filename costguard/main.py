"""
Entry points for a report run: `run_report` for async callers and the
scheduler, `handler` for AWS Lambda.
"""

import asyncio
import json
import uuid
from typing import Any, Dict, Optional

import structlog

from costguard.modules.notifications.domain.slack import get_slack_service
from costguard.modules.reporting.domain.ports import Notifier
from costguard.modules.reporting.domain.service import (
    CostHygieneService,
    ReportConfig,
    ReportRun,
    deliver,
)
from costguard.shared.adapters.aws import AWSAdapter
from costguard.shared.core.config import Settings, get_settings
from costguard.shared.core.exceptions import ContractViolationError
from costguard.shared.core.logging import setup_logging
from costguard.shared.core.ops_metrics import REPORT_RUNS

logger = structlog.get_logger()


async def run_report(
    settings: Optional[Settings] = None,
    *,
    notify: bool = True,
    adapter=None,
    notifier: Optional[Notifier] = None,
) -> ReportRun:
    """
    Builds one report and, unless `notify` is False, posts it to Slack.

    `adapter` must implement the inventory, metric and billing ports and be an
    async context manager; it defaults to an AWSAdapter for `settings`.

    Raises:
        ContractViolationError: the run aborts and nothing is posted.
    """
    settings = settings or get_settings()
    run_id = str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(run_id=run_id)
    try:
        logger.info(
            "report_run_started",
            app=settings.APP_NAME,
            version=settings.VERSION,
            environment=settings.ENVIRONMENT,
        )
        config = ReportConfig.from_settings(settings)
        adapter = adapter or AWSAdapter(settings)
        async with adapter as aws:
            service = CostHygieneService(config, inventory=aws, metrics=aws, billing=aws)
            run = await service.build_report()

        REPORT_RUNS.labels(status="success").inc()
        logger.info(
            "report_run_complete",
            resources_scanned=run.resources_scanned,
            idle_count=run.idle_count,
            grand_total=round(run.report.grand_total, 2),
        )

        if notify:
            await deliver(run, notifier or get_slack_service(settings))
        return run
    except ContractViolationError as e:
        REPORT_RUNS.labels(status="contract_violation").inc()
        logger.error("report_run_aborted", error=e.message, details=e.details)
        raise
    except Exception as e:
        REPORT_RUNS.labels(status="error").inc()
        logger.error("report_run_failed", error=str(e), error_type=type(e).__name__)
        raise
    finally:
        structlog.contextvars.unbind_contextvars("run_id")


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """AWS Lambda entry point (EventBridge schedule)."""
    settings = get_settings()
    setup_logging(settings)

    run = asyncio.run(run_report(settings))
    body = {
        "message": "Cost hygiene report complete",
        "app": settings.APP_NAME,
        "version": settings.VERSION,
        "summary": run.summary().model_dump(mode="json"),
        "tag_key": settings.COST_TAG_KEY,
    }
    return {"statusCode": 200, "body": json.dumps(body)}
