import json
from collections.abc import Sequence

from tabulate import tabulate

from quotabar.models import BillingKind, UsageReport

_HEADER = ("Provider", "Refresh", "Use", "Key Metrics")


def format_tokens(count: "int") -> "str":
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1_000:
        return f"{count / 1_000:.1f}K"
    return str(count)


def _used_percent(remaining: "int", entitlement: "int") -> "int":
    if entitlement <= 0:
        return 0
    return ((entitlement - remaining) * 100) // entitlement


def _quota_metric(remaining: "int", entitlement: "int") -> "str":
    if entitlement <= 0:
        return "unlimited"
    return f"{remaining}/{entitlement} remaining"


def _rows(report: "UsageReport") -> "list[tuple[str, str, str, str]]":
    if report.error is not None:
        return [(report.name, "(unavailable)", "-", f"! {report.error}")]

    if report.billing_kind == BillingKind.QUOTA_BASED:
        if report.accounts:
            rows = [(report.name, "", "", "")]
            for acc in report.accounts:
                rows.append(
                    (
                        "->",
                        acc.label,
                        f"{_used_percent(acc.remaining, acc.entitlement)}%",
                        _quota_metric(acc.remaining, acc.entitlement),
                    )
                )
            return rows

        remaining = report.remaining or 0
        entitlement = report.entitlement or 0
        return [
            (
                report.name,
                report.refresh_label or "-",
                f"{_used_percent(remaining, entitlement)}%",
                _quota_metric(remaining, entitlement),
            )
        ]

    if report.billing_kind == BillingKind.TOKENS_BASED:
        return [
            (
                report.name,
                report.refresh_label or "-",
                "-",
                f"{format_tokens(report.tokens_used or 0)} tokens used",
            )
        ]

    return [(report.name, "-", "-", f"${report.cost or 0.0:.2f} spent")]


def _forecast_rows(report: "UsageReport") -> "list[tuple[str, str, str, str]]":
    forecast = report.forecast
    if forecast is None or forecast.predicted_monthly_usage is None:
        return []
    metric = f"~{forecast.predicted_monthly_usage:.0f} by month end"
    if forecast.predicted_extra_cost:
        metric += f", +${forecast.predicted_extra_cost:.2f}"
    return [("forecast", f"{forecast.confidence.value} confidence", "-", metric)]


def sort_reports(reports: "Sequence[UsageReport]") -> "list[UsageReport]":
    """
    multi-account providers first, then alphabetical.
    """
    return sorted(reports, key=lambda r: (not r.accounts, r.name))


def render_table(reports: "Sequence[UsageReport]") -> "str":
    rows: "list[tuple[str, str, str, str]]" = []
    for report in sort_reports(reports):
        rows.extend(_rows(report))
        rows.extend(_forecast_rows(report))
    if not rows:
        return ""
    return tabulate(rows, headers=_HEADER, tablefmt="github", disable_numparse=True)


def render_json(reports: "Sequence[UsageReport]") -> "str":
    """
    renders a JSON object keyed by provider name.
    """
    payload = {report.name: report.to_dict() for report in reports}
    return json.dumps(payload, indent=2)
