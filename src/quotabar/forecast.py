import calendar
import datetime
from collections.abc import Sequence

from quotabar.models import BillingKind, Confidence, DailyUsage, Forecast, UsageReport

# applied newest to oldest
WEIGHTS: "tuple[float, ...]" = (1.5, 1.5, 1.2, 1.2, 1.2, 1.0, 1.0)

WEEKEND_RATIO_FLOOR = 0.1

# GitHub Copilot bills $0.04 per premium request over the entitlement.
# Other backends pass their own rate.
COPILOT_OVERAGE_RATE = 0.04


def weighted_average(history: "Sequence[DailyUsage]") -> "float":
    """
    weighted mean of the newest len(WEIGHTS) points. history is
    ordered newest first.
    """
    weighted_sum = 0.0
    weight_sum = 0.0
    for day, weight in zip(history, WEIGHTS):
        weighted_sum += day.included_requests * weight
        weight_sum += weight

    if weight_sum == 0:
        return 0.0
    return weighted_sum / weight_sum


def day_type_means(history: "Sequence[DailyUsage]") -> "tuple[float, float]":
    """
    returns (weekday mean, weekend mean) over every point. Points
    with an unparseable date are skipped; an empty bucket has mean 0.
    """
    weekday_sum = weekend_sum = 0.0
    weekday_count = weekend_count = 0

    for day in history:
        try:
            parsed = datetime.date.fromisoformat(day.date)
        except ValueError:
            continue

        if parsed.weekday() >= 5:
            weekend_sum += day.included_requests
            weekend_count += 1
        else:
            weekday_sum += day.included_requests
            weekday_count += 1

    weekday_mean = weekday_sum / weekday_count if weekday_count else 0.0
    weekend_mean = weekend_sum / weekend_count if weekend_count else 0.0
    return weekday_mean, weekend_mean


def weekend_ratio(weekday_mean: "float", weekend_mean: "float") -> "float":
    if weekday_mean <= 0:
        return WEEKEND_RATIO_FLOOR
    return max(weekend_mean / weekday_mean, WEEKEND_RATIO_FLOOR)


def remaining_days(today: "datetime.date") -> "tuple[int, int]":
    """
    counts the days after today up to and including the last day of
    the month, as (weekdays, weekend days).
    """
    last_day = calendar.monthrange(today.year, today.month)[1]
    weekdays = weekends = 0
    for day in range(today.day + 1, last_day + 1):
        if datetime.date(today.year, today.month, day).weekday() >= 5:
            weekends += 1
        else:
            weekdays += 1
    return weekdays, weekends


def usage_to_date(report: "UsageReport") -> "float":
    if report.billing_kind == BillingKind.TOKENS_BASED:
        return float(report.tokens_used or 0)
    return float((report.entitlement or 0) - (report.remaining or 0))


def confidence_for(points: "int") -> "Confidence":
    if points < 3:
        return Confidence.LOW
    if points < 4:
        return Confidence.MEDIUM
    return Confidence.HIGH


def project(
    history: "Sequence[DailyUsage]",
    report: "UsageReport",
    remaining_weekdays: "int",
    remaining_weekends: "int",
    overage_rate: "float" = COPILOT_OVERAGE_RATE,
) -> "Forecast":
    """
    projects month-end usage from explicit remaining day counts.
    """
    if len(history) < 2:
        return Forecast(confidence=Confidence.LOW)

    average = weighted_average(history)
    ratio = weekend_ratio(*day_type_means(history))

    projected = (average * remaining_weekdays) + (
        average * ratio * remaining_weekends
    )
    predicted_total = usage_to_date(report) + projected

    entitlement = float(report.entitlement or 0)
    extra_cost = 0.0
    if predicted_total > entitlement:
        extra_cost = (predicted_total - entitlement) * overage_rate

    return Forecast(
        confidence=confidence_for(len(history)),
        predicted_monthly_usage=predicted_total,
        predicted_extra_cost=extra_cost,
    )


def predict(
    history: "Sequence[DailyUsage]",
    report: "UsageReport",
    *,
    today: "datetime.date | None" = None,
    overage_rate: "float" = COPILOT_OVERAGE_RATE,
) -> "Forecast":
    """
    forecasts the month-end usage and overage cost of report from its
    daily history (newest first). Pure apart from reading today's date
    when today is not given.
    """
    if today is None:
        today = datetime.datetime.now(datetime.timezone.utc).date()

    weekdays, weekends = remaining_days(today)
    return project(history, report, weekdays, weekends, overage_rate)
