import datetime
from dataclasses import dataclass

import httpx
import structlog

from quotabar.credentials import CredentialBag
from quotabar.errors import ProviderError
from quotabar.models import BillingKind, UsageReport
from quotabar.provider.base import (
    HTTPProvider,
    check_status,
    parse_json,
    parse_timestamp,
)
from quotabar.provider.oauth import RefreshCredentials, RefreshingSession

logger = structlog.get_logger()

GEMINI_QUOTA_URL = "https://cloudcode-pa.googleapis.com/v1internal:retrieveUserQuota"


@dataclass(frozen=True, slots=True)
class GeminiQuota:
    # lowest remaining fraction across all buckets, as a percentage
    remaining: "int"
    reset_at: "datetime.datetime | None"


async def fetch_gemini_quota(session: "RefreshingSession") -> "GeminiQuota":
    """
    fetches the quota buckets and keeps the most exhausted one.
    """
    resp = await session.request(
        "POST",
        GEMINI_QUOTA_URL,
        headers={"Content-Type": "application/json"},
        json={},
    )
    check_status(resp, "gemini")
    data = parse_json(resp, "gemini")

    buckets = data.get("buckets") or []
    if not isinstance(buckets, list):
        raise ProviderError("unexpected gemini buckets shape")
    if not buckets:
        raise ProviderError("no quota buckets found")

    min_fraction = 1.0
    reset_time = ""
    for bucket in buckets:
        if not isinstance(bucket, dict):
            raise ProviderError("unexpected gemini bucket shape")
        fraction = bucket.get("remainingFraction", 1.0)
        if not isinstance(fraction, (int, float)):
            raise ProviderError(f"invalid gemini remainingFraction {fraction!r}")
        if fraction < min_fraction:
            min_fraction = fraction
            reset_time = bucket.get("resetTime") or ""

    return GeminiQuota(
        remaining=int(min_fraction * 100),
        reset_at=parse_timestamp(reset_time),
    )


def gemini_session(
    client: "httpx.AsyncClient", bag: "CredentialBag"
) -> "RefreshingSession":
    return RefreshingSession(
        client,
        access_token=bag.get_key(GeminiProvider.NAME),
        refresh=RefreshCredentials.from_bag(bag),
    )


class GeminiProvider(HTTPProvider):
    """
    GeminiProvider reports the Gemini CLI (Code Assist) quota. A
    missing or expired access token is refreshed once with the OAuth
    client from the linked accounts file.
    """

    NAME = "Gemini CLI"
    BILLING_KIND = BillingKind.QUOTA_BASED

    async def fetch(self, bag: "CredentialBag") -> "UsageReport":
        session = gemini_session(self._client, bag)
        quota = await fetch_gemini_quota(session)
        logger.debug("gemini_quota_fetched", token_state=session.state.value)

        return UsageReport(
            name=self.NAME,
            billing_kind=self.BILLING_KIND,
            remaining=quota.remaining,
            entitlement=100,
            usage_percent=100 - quota.remaining,
        )
