import sys
import structlog
import logging
from typing import Optional

from costguard.shared.core.config import Settings, get_settings

SECRET_FIELDS = {
    "token", "bot_token", "slack_bot_token", "secret", "password",
    "api_key", "aws_secret_access_key", "aws_session_token",
}


def secret_redactor(logger, method_name, event_dict):
    """
    Redact credentials from log events before rendering.
    Slack tokens and AWS keys must never reach CloudWatch Logs.
    """
    for field in SECRET_FIELDS:
        if field in event_dict:
            event_dict[field] = "[REDACTED]"

    for container in ["metadata", "payload", "details", "extra"]:
        if container in event_dict and isinstance(event_dict[container], dict):
            for field in SECRET_FIELDS:
                if field in event_dict[container]:
                    event_dict[container][field] = "[REDACTED]"

    return event_dict


def setup_logging(settings: Optional[Settings] = None):
    settings = settings or get_settings()

    # 1. Choose the renderer based on environment
    if settings.DEBUG:
        renderer = structlog.dev.ConsoleRenderer()
        min_level = logging.DEBUG
    else:
        renderer = structlog.processors.JSONRenderer()
        min_level = logging.INFO

    # 2. Processor pipeline
    processors = [
        structlog.contextvars.merge_contextvars,      # run_id bound per report run
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        secret_redactor,
        renderer
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # 3. Route library logs (botocore, slack_sdk, apscheduler) to stdout as well
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=min_level,
    )
    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(max(min_level, logging.INFO))
