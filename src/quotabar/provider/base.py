import datetime
from typing import Any, Protocol

import httpx

from quotabar.credentials import CredentialBag
from quotabar.errors import ProviderError
from quotabar.models import BillingKind, DailyUsage, UsageReport

# per-request timeout; the orchestrator adds an overall deadline
REQUEST_TIMEOUT_SECONDS = 10.0


class UsageProvider(Protocol):
    """
    UsageProvider stands as a common protocol that all
    backends must satisfy.

    Providers read their credentials from the bag (never writing
    to it) and return a provider-agnostic UsageReport. Failures are
    raised; the orchestrator turns them into error reports.
    """

    @property
    def name(self) -> "str": ...

    @property
    def billing_kind(self) -> "BillingKind": ...

    async def fetch(self, bag: "CredentialBag") -> "UsageReport": ...

    async def fetch_history(self, bag: "CredentialBag") -> "list[DailyUsage]": ...

    async def close(self) -> "None": ...


class HTTPProvider:
    """
    HTTPProvider owns the httpx client shared by the requests of one
    backend. Subclasses set NAME and BILLING_KIND.
    """

    NAME: "str" = ""
    BILLING_KIND: "BillingKind" = BillingKind.QUOTA_BASED

    def __init__(self, client: "httpx.AsyncClient | None" = None) -> "None":
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    @property
    def name(self) -> "str":
        return self.NAME

    @property
    def billing_kind(self) -> "BillingKind":
        return self.BILLING_KIND

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def fetch_history(self, bag: "CredentialBag") -> "list[DailyUsage]":
        # most backends expose no daily history
        return []


def check_status(resp: "httpx.Response", backend: "str") -> "None":
    if resp.status_code != 200:
        raise ProviderError(f"{backend} API returned status {resp.status_code}")


def parse_json(resp: "httpx.Response", backend: "str") -> "dict[str, Any]":
    try:
        data = resp.json()
    except ValueError as exc:
        raise ProviderError(f"failed to parse {backend} response: {exc}") from exc
    if not isinstance(data, dict):
        raise ProviderError(f"unexpected {backend} response shape")
    return data


def parse_timestamp(value: "object") -> "datetime.datetime | None":
    """
    parses an RFC 3339 timestamp, returning None when it is empty,
    malformed or not a string.
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def _now(now: "datetime.datetime | None") -> "datetime.datetime":
    return now or datetime.datetime.now(datetime.timezone.utc)


def day_countdown(
    prefix: "str",
    reset_at: "datetime.datetime | None",
    now: "datetime.datetime | None" = None,
    *,
    same_day_format: "str" = "%m/%d",
) -> "str":
    """
    formats "Weekly: in 3d (10/21)", or "Weekly: 10/21" once less than
    a day is left.
    """
    if reset_at is None:
        return prefix

    days = int((reset_at - _now(now)).total_seconds() // 86400)
    if days > 0:
        return f"{prefix}: in {days}d ({reset_at.strftime('%m/%d')})"
    return f"{prefix}: {reset_at.strftime(same_day_format)}"


def hour_countdown(
    prefix: "str",
    reset_at: "datetime.datetime | None",
    now: "datetime.datetime | None" = None,
) -> "str":
    """
    formats "Claude: in 5h (14:00)" under a day, "Claude: in 2d (10/21)"
    beyond.
    """
    if reset_at is None:
        return prefix

    hours = max(int((reset_at - _now(now)).total_seconds() // 3600), 0)
    if hours < 24:
        return f"{prefix}: in {hours}h ({reset_at.strftime('%H:%M')})"
    return f"{prefix}: in {hours // 24}d ({reset_at.strftime('%m/%d')})"


def clamp_percent(value: "float") -> "int":
    return min(max(int(value), 0), 100)
