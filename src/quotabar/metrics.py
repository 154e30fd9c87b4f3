from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    write_to_textfile,
)

from quotabar.models import UsageReport


class MetricsUpdater:
    """
    records how each fetch went and mirrors the resulting reports
    into Prometheus gauges.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._fetch_duration: "Histogram" = Histogram(
            "quotabar_fetch_duration_seconds",
            "Duration of provider fetches",
            ["provider"],
            registry=registry,
        )
        self._fetch_errors: "Counter" = Counter(
            "quotabar_fetch_errors_total",
            "Total number of fetch errors by provider and stage",
            ["provider", "stage"],
            registry=registry,
        )
        self._last_fetch_success: "Gauge" = Gauge(
            "quotabar_last_fetch_success_timestamp_seconds",
            "Unix timestamp of last successful fetch per provider",
            ["provider"],
            registry=registry,
        )
        self._remaining: "Gauge" = Gauge(
            "quotabar_quota_remaining",
            "Remaining quota units",
            ["provider", "account"],
            registry=registry,
        )
        self._entitlement: "Gauge" = Gauge(
            "quotabar_quota_entitlement",
            "Quota units granted per period",
            ["provider", "account"],
            registry=registry,
        )
        self._cost: "Gauge" = Gauge(
            "quotabar_cost_usd",
            "Amount spent in USD",
            ["provider"],
            registry=registry,
        )
        self._tokens: "Gauge" = Gauge(
            "quotabar_tokens_used",
            "Tokens used in the current period",
            ["provider"],
            registry=registry,
        )
        self._predicted: "Gauge" = Gauge(
            "quotabar_predicted_monthly_usage",
            "Forecast month-end usage",
            ["provider"],
            registry=registry,
        )

    def observe_fetch_duration(
        self, provider: "str", duration_seconds: "float"
    ) -> "None":
        self._fetch_duration.labels(provider=provider).observe(duration_seconds)

    def inc_fetch_error(self, provider: "str", stage: "str") -> "None":
        self._fetch_errors.labels(provider=provider, stage=stage).inc()

    def set_last_fetch_success(self, provider: "str", timestamp: "float") -> "None":
        self._last_fetch_success.labels(provider=provider).set(timestamp)

    def update_report(self, report: "UsageReport") -> "None":
        """
        sets the gauges for every metric the report carries. Error
        reports carry none and leave the gauges untouched.
        """
        name = report.name
        if report.remaining is not None:
            self._remaining.labels(provider=name, account="").set(report.remaining)
        if report.entitlement is not None:
            self._entitlement.labels(provider=name, account="").set(
                report.entitlement
            )
        for account in report.accounts:
            # labels embed a countdown, the index is stable
            index = str(account.index)
            self._remaining.labels(provider=name, account=index).set(
                account.remaining
            )
            self._entitlement.labels(provider=name, account=index).set(
                account.entitlement
            )
        if report.cost is not None:
            self._cost.labels(provider=name).set(report.cost)
        if report.tokens_used is not None:
            self._tokens.labels(provider=name).set(report.tokens_used)
        if report.forecast and report.forecast.predicted_monthly_usage is not None:
            self._predicted.labels(provider=name).set(
                report.forecast.predicted_monthly_usage
            )

    def write_textfile(self, path: "str") -> "None":
        """
        writes the registry in the text exposition format, for the
        node exporter textfile collector.
        """
        write_to_textfile(path, self._registry)
