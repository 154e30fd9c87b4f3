import os
from dataclasses import dataclass

from quotabar.orchestrator import DEFAULT_FETCH_TIMEOUT_SECONDS


def _float_env(name: "str") -> "float | None":
    value = os.environ.get(name, "")
    if not value:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


@dataclass
class Config:
    # restrict the run to one provider name
    provider: "str" = ""
    json_output: "bool" = False
    forecast: "bool" = True
    # overall deadline per provider fetch, in seconds
    fetch_timeout: "float" = DEFAULT_FETCH_TIMEOUT_SECONDS
    # overrides the per-request overage price used in forecasts
    overage_rate: "float | None" = None
    log_level: "str" = "warning"
    log_format: "str" = "console"
    # write Prometheus metrics here when set
    metrics_textfile: "str" = ""

    @classmethod
    def from_env(cls) -> "Config":
        timeout = _float_env("QUOTABAR_TIMEOUT")
        return cls(
            provider=os.environ.get("QUOTABAR_PROVIDER", ""),
            fetch_timeout=(
                DEFAULT_FETCH_TIMEOUT_SECONDS if timeout is None else timeout
            ),
            overage_rate=_float_env("QUOTABAR_OVERAGE_RATE"),
            log_level=os.environ.get("QUOTABAR_LOG_LEVEL", "warning"),
        )

    def overage_rate_for(self, default_rate: "float") -> "float":
        """
        applies the configured override to providers that bill overage.
        """
        if default_rate and self.overage_rate is not None:
            return self.overage_rate
        return default_rate
