from quotabar.credentials import CredentialBag
from quotabar.errors import ProviderError
from quotabar.models import BillingKind, UsageReport
from quotabar.provider.base import HTTPProvider, check_status, parse_json

OPENROUTER_CREDITS_URL = "https://openrouter.ai/api/v1/credits"


class OpenRouterProvider(HTTPProvider):
    """
    OpenRouterProvider reports the total amount spent on OpenRouter.
    """

    NAME = "OpenRouter"
    BILLING_KIND = BillingKind.PAY_AS_YOU_GO

    async def fetch(self, bag: "CredentialBag") -> "UsageReport":
        api_key = bag.get_key(self.NAME)
        if not api_key:
            raise ProviderError("no API key provided")

        resp = await self._client.get(
            OPENROUTER_CREDITS_URL,
            headers={"Authorization": f"Bearer {api_key}"},
        )
        check_status(resp, "openrouter")
        data = parse_json(resp, "openrouter")

        total = (data.get("data") or {}).get("total_usage", 0.0)
        return UsageReport(
            name=self.NAME,
            billing_kind=self.BILLING_KIND,
            cost=float(total),
        )
