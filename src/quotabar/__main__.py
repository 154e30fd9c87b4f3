import asyncio

import structlog
from prometheus_client import CollectorRegistry

from quotabar.catalog import active_entries
from quotabar.cli import parse_args
from quotabar.config import Config
from quotabar.credentials import CredentialBag, CredentialResolver
from quotabar.errors import NoCredentialsError, UnknownProviderError
from quotabar.logging import setup_logging
from quotabar.metrics import MetricsUpdater
from quotabar.models import UsageReport
from quotabar.orchestrator import Orchestrator
from quotabar.render import render_json, render_table

logger = structlog.get_logger()


async def collect(
    config: "Config",
    bag: "CredentialBag",
    metrics_updater: "MetricsUpdater",
) -> "list[UsageReport]":
    """
    fetches every active provider once and returns their reports.
    """
    try:
        entries = active_entries(bag, config.provider or None)
    except UnknownProviderError as exc:
        raise SystemExit(str(exc)) from exc

    if not entries:
        raise SystemExit(
            "No providers configured. Log in with opencode or set an API key "
            "environment variable such as OPENROUTER_API_KEY."
        )

    for entry in entries:
        logger.info("provider_enabled", provider=entry.name)

    orchestrator = Orchestrator(
        [entry.factory() for entry in entries],
        metrics_updater,
        fetch_timeout_seconds=config.fetch_timeout,
        forecast=config.forecast,
        overage_rates={
            entry.name: config.overage_rate_for(entry.overage_rate)
            for entry in entries
        },
    )
    try:
        return await orchestrator.fetch_all(bag)
    finally:
        await orchestrator.close()


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level, json_format=config.log_format == "json")

    try:
        bag = CredentialResolver().resolve()
    except NoCredentialsError as exc:
        raise SystemExit(str(exc)) from exc

    metrics_updater = MetricsUpdater(registry=CollectorRegistry())
    reports = asyncio.run(collect(config, bag, metrics_updater))

    if config.json_output:
        print(render_json(reports))
    else:
        print(render_table(reports))

    if config.metrics_textfile:
        metrics_updater.write_textfile(config.metrics_textfile)
        logger.info("metrics_written", path=config.metrics_textfile)


if __name__ == "__main__":
    main()
