import datetime

import httpx

from quotabar.credentials import CredentialBag
from quotabar.errors import ProviderError
from quotabar.models import BillingKind, UsageReport
from quotabar.provider.base import (
    HTTPProvider,
    check_status,
    clamp_percent,
    day_countdown,
    parse_json,
    parse_timestamp,
)

CLAUDE_USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
CLAUDE_OAUTH_BETA = "oauth-2025-04-20"


async def fetch_seven_day_window(
    client: "httpx.AsyncClient", token: "str"
) -> "tuple[int, datetime.datetime | None]":
    """
    returns the used percentage of the seven day window and when it
    resets.
    """
    resp = await client.get(
        CLAUDE_USAGE_URL,
        headers={
            "Authorization": f"Bearer {token}",
            "anthropic-beta": CLAUDE_OAUTH_BETA,
        },
    )
    check_status(resp, "claude")
    data = parse_json(resp, "claude")

    window = data.get("seven_day") or {}
    if not isinstance(window, dict):
        raise ProviderError("unexpected claude seven_day window")

    utilization = window.get("utilization") or 0
    if not isinstance(utilization, (int, float)):
        raise ProviderError(f"invalid claude utilization {utilization!r}")

    return clamp_percent(utilization), parse_timestamp(window.get("resets_at"))


class ClaudeProvider(HTTPProvider):
    """
    ClaudeProvider reports the weekly utilization of a Claude
    subscription through the OAuth usage endpoint.
    """

    NAME = "Claude"
    BILLING_KIND = BillingKind.QUOTA_BASED

    async def fetch(self, bag: "CredentialBag") -> "UsageReport":
        token = bag.get_key(self.NAME)
        if not token:
            raise ProviderError("no API key provided")

        usage, reset_at = await fetch_seven_day_window(self._client, token)
        return UsageReport(
            name=self.NAME,
            billing_kind=self.BILLING_KIND,
            remaining=100 - usage,
            entitlement=100,
            usage_percent=usage,
            refresh_label=day_countdown("Weekly", reset_at, same_day_format="%H:%M"),
        )
