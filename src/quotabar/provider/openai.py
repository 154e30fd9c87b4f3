import datetime

import structlog

from quotabar.credentials import CredentialBag
from quotabar.errors import ProviderError
from quotabar.models import BillingKind, UsageReport
from quotabar.provider.base import (
    HTTPProvider,
    check_status,
    clamp_percent,
    day_countdown,
    parse_json,
)

logger = structlog.get_logger()

OPENAI_USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"


class OpenAIProvider(HTTPProvider):
    """
    OpenAIProvider reports the ChatGPT subscription rate limit used by
    Codex logins. The OAuth access token (and the optional account id)
    come from the "openai" object in auth.json; a plain API key works
    as a fallback.
    """

    NAME = "OpenAI"
    BILLING_KIND = BillingKind.QUOTA_BASED

    async def fetch(self, bag: "CredentialBag") -> "UsageReport":
        token = bag.get_nested_field("openai", "access") or bag.get_key(self.NAME)
        if not token:
            raise ProviderError("no OpenAI token found")

        headers = {"Authorization": f"Bearer {token}"}
        account_id = bag.get_nested_field("openai", "accountId")
        if account_id:
            headers["ChatGPT-Account-Id"] = account_id

        logger.debug("openai_fetch_usage", url=OPENAI_USAGE_URL)
        resp = await self._client.get(OPENAI_USAGE_URL, headers=headers)
        check_status(resp, "openai")
        data = parse_json(resp, "openai")

        window = (data.get("rate_limit") or {}).get("primary_window") or {}
        usage = clamp_percent(window.get("used_percent", 0))

        reset_at = None
        reset_ts = window.get("reset_at") or 0
        if reset_ts > 0:
            reset_at = datetime.datetime.fromtimestamp(
                reset_ts, tz=datetime.timezone.utc
            )

        return UsageReport(
            name=self.NAME,
            billing_kind=self.BILLING_KIND,
            remaining=100 - usage,
            entitlement=100,
            usage_percent=usage,
            refresh_label=day_countdown(
                "Weekly", reset_at, same_day_format="%m/%d %H:%M"
            ),
        )
