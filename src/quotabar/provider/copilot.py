from quotabar.credentials import CredentialBag
from quotabar.errors import ProviderError
from quotabar.models import BillingKind, UsageReport
from quotabar.provider.base import (
    HTTPProvider,
    check_status,
    day_countdown,
    parse_json,
    parse_timestamp,
)

COPILOT_USER_URL = "https://api.github.com/copilot_internal/user"


class CopilotProvider(HTTPProvider):
    """
    CopilotProvider reports the monthly premium request quota of a
    GitHub Copilot subscription, using the OAuth token the editor
    login stored in auth.json (or GITHUB_TOKEN / COPILOT_TOKEN).
    """

    NAME = "GitHub Copilot"
    BILLING_KIND = BillingKind.QUOTA_BASED

    async def fetch(self, bag: "CredentialBag") -> "UsageReport":
        token = bag.get_nested_field("github-copilot", "access") or bag.get_key(
            self.NAME
        )
        if not token:
            raise ProviderError("no GitHub Copilot OAuth token found")

        resp = await self._client.get(
            COPILOT_USER_URL,
            headers={"Authorization": f"token {token}"},
        )
        check_status(resp, "copilot")
        data = parse_json(resp, "copilot")

        snapshots = data.get("quota_snapshots") or {}
        premium = snapshots.get("premium_interactions") or {}
        entitlement = int(premium.get("entitlement") or 0)
        if entitlement == 0:
            raise ProviderError("no premium_interactions quota data in response")

        remaining = int(premium.get("remaining") or 0)
        used = entitlement - remaining
        reset_at = parse_timestamp(data.get("quota_reset_date_utc") or "")

        return UsageReport(
            name=self.NAME,
            billing_kind=self.BILLING_KIND,
            remaining=remaining,
            entitlement=entitlement,
            usage_percent=(used * 100) // entitlement,
            overage_permitted=bool(premium.get("overage_permitted", False)),
            refresh_label=day_countdown("Monthly", reset_at),
        )
