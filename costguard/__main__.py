"""Command line entry point: `costguard` or `python -m costguard`."""

import asyncio

import click
import structlog

from costguard.main import run_report
from costguard.modules.reporting.domain.scheduler import ReportScheduler
from costguard.shared.core.config import get_settings
from costguard.shared.core.exceptions import ConfigurationError
from costguard.shared.core.logging import setup_logging

logger = structlog.get_logger()


async def _run_once(settings, notify: bool) -> None:
    run = await run_report(settings, notify=notify)
    if not notify:
        click.echo(run.render())


async def _serve(settings, notify: bool) -> None:
    scheduler = ReportScheduler(settings, job=lambda: _run_once(settings, notify))
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.stop()


@click.command()
@click.version_option(package_name="costguard", prog_name="costguard")
@click.option(
    "--schedule",
    is_flag=True,
    help="Keep running and post the report daily at SCHEDULER_HOUR:SCHEDULER_MINUTE UTC.",
)
@click.option(
    "--no-notify",
    "no_notify",
    is_flag=True,
    help="Print the report instead of posting it to Slack (on every run with --schedule).",
)
def main(schedule: bool, no_notify: bool) -> None:
    """Post an AWS cost hygiene digest (idle EC2, DynamoDB cost, top billed services and tags) to Slack."""
    settings = get_settings()
    setup_logging(settings)

    try:
        if schedule:
            asyncio.run(_serve(settings, notify=not no_notify))
        else:
            asyncio.run(_run_once(settings, notify=not no_notify))
    except ConfigurationError as e:
        raise click.ClickException(e.message) from e
    except KeyboardInterrupt:
        logger.info("costguard_interrupted")


if __name__ == "__main__":
    main()
