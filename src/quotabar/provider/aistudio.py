from quotabar.credentials import CredentialBag
from quotabar.errors import ProviderError
from quotabar.models import BillingKind, UsageReport
from quotabar.provider.base import HTTPProvider


class AIStudioProvider(HTTPProvider):
    """
    AIStudioProvider stands for Google AI Studio API keys. Google
    exposes no quota endpoint for them, so a configured key shows up
    as an error row rather than silently disappearing.
    """

    NAME = "Google AI Studio"
    BILLING_KIND = BillingKind.QUOTA_BASED

    async def fetch(self, bag: "CredentialBag") -> "UsageReport":
        raise ProviderError("Google AI Studio exposes no quota endpoint for API keys")
