import asyncio
import dataclasses
import datetime
import time
from collections.abc import Mapping

import structlog

from quotabar.credentials import CredentialBag
from quotabar.forecast import predict
from quotabar.metrics import MetricsUpdater
from quotabar.models import DailyUsage, UsageReport
from quotabar.provider.base import UsageProvider

logger = structlog.get_logger()

DEFAULT_FETCH_TIMEOUT_SECONDS = 15.0


def _describe(exc: "BaseException") -> "str":
    return str(exc) or type(exc).__name__


class Orchestrator:
    """
    Orchestrator fetches every active provider concurrently, one
    attempt each, under a per-provider deadline. A provider that fails
    turns into a report carrying only its name and the error, so one
    bad backend never aborts the batch. When forecasting is on, the
    provider's daily history is fetched too and a forecast attached.
    """

    def __init__(
        self,
        providers: "list[UsageProvider]",
        metrics_updater: "MetricsUpdater",
        fetch_timeout_seconds: "float" = DEFAULT_FETCH_TIMEOUT_SECONDS,
        forecast: "bool" = True,
        overage_rates: "Mapping[str, float] | None" = None,
        today: "datetime.date | None" = None,
    ) -> "None":
        self._providers = providers
        self._metrics = metrics_updater
        self._timeout = fetch_timeout_seconds
        self._forecast = forecast
        self._overage_rates = dict(overage_rates or {})
        self._today = today

    async def close(self) -> "None":
        """
        closes all provider sessions.
        """
        for p in self._providers:
            await p.close()

    async def fetch_all(self, bag: "CredentialBag") -> "list[UsageReport]":
        """
        returns one report per provider, in provider order. Cancelling
        the caller cancels every in-flight request.
        """
        tasks = [self._fetch_provider(provider, bag) for provider in self._providers]
        return list(await asyncio.gather(*tasks))

    async def _fetch_provider(
        self,
        provider: "UsageProvider",
        bag: "CredentialBag",
    ) -> "UsageReport":
        fetch_start = time.monotonic()
        structlog.contextvars.bind_contextvars(provider=provider.name)
        try:
            report = await self._fetch_report(provider, bag)

            if report.ok:
                self._metrics.set_last_fetch_success(provider.name, time.time())
                if self._forecast:
                    report = await self._attach_forecast(provider, bag, report)

            self._metrics.update_report(report)
            return report
        finally:
            duration = time.monotonic() - fetch_start
            self._metrics.observe_fetch_duration(provider.name, duration)
            structlog.contextvars.unbind_contextvars("provider")

    async def _fetch_report(
        self,
        provider: "UsageProvider",
        bag: "CredentialBag",
    ) -> "UsageReport":
        try:
            async with asyncio.timeout(self._timeout):
                report = await provider.fetch(bag)
        except TimeoutError:
            logger.warning("provider_fetch_timeout", timeout=self._timeout)
            self._metrics.inc_fetch_error(provider.name, "fetch")
            return UsageReport.failed(
                provider.name,
                provider.billing_kind,
                f"timed out after {self._timeout:g}s",
            )
        except Exception as exc:
            logger.exception("provider_fetch_error")
            self._metrics.inc_fetch_error(provider.name, "fetch")
            return UsageReport.failed(
                provider.name, provider.billing_kind, _describe(exc)
            )

        logger.debug("provider_fetch_done")
        return report

    async def _fetch_history(
        self,
        provider: "UsageProvider",
        bag: "CredentialBag",
    ) -> "list[DailyUsage]":
        # history only enriches the report, so failures degrade to none
        try:
            async with asyncio.timeout(self._timeout):
                return await provider.fetch_history(bag)
        except Exception as exc:
            logger.warning("provider_history_error", error=_describe(exc))
            self._metrics.inc_fetch_error(provider.name, "history")
            return []

    async def _attach_forecast(
        self,
        provider: "UsageProvider",
        bag: "CredentialBag",
        report: "UsageReport",
    ) -> "UsageReport":
        history = await self._fetch_history(provider, bag)
        if not history:
            return report

        forecast = predict(
            history,
            report,
            today=self._today,
            overage_rate=self._overage_rates.get(provider.name, 0.0),
        )
        logger.debug(
            "provider_forecast",
            points=len(history),
            confidence=forecast.confidence.value,
        )
        return dataclasses.replace(report, history=history, forecast=forecast)
