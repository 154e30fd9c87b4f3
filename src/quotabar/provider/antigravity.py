import httpx
import structlog

from quotabar.credentials import CredentialBag
from quotabar.errors import ProviderError
from quotabar.models import BillingKind, SubAccount, UsageReport
from quotabar.provider.base import HTTPProvider, hour_countdown
from quotabar.provider.claude import ClaudeProvider, fetch_seven_day_window
from quotabar.provider.gemini import fetch_gemini_quota, gemini_session
from quotabar.provider.oauth import RefreshCredentials

logger = structlog.get_logger()


def claude_token(bag: "CredentialBag") -> "str":
    return bag.get_nested_field("anthropic", "access") or bag.get_key(
        ClaudeProvider.NAME
    )


def has_gemini_credentials(bag: "CredentialBag") -> "bool":
    return bool(bag.get_key("Gemini CLI")) or (
        RefreshCredentials.from_bag(bag) is not None
    )


class AntigravityProvider(HTTPProvider):
    """
    AntigravityProvider shows the Claude and Gemini CLI logins as one
    provider with a sub-account row each. Either identity is enough;
    an identity whose fetch fails is left out.
    """

    NAME = "Antigravity"
    BILLING_KIND = BillingKind.QUOTA_BASED

    async def fetch(self, bag: "CredentialBag") -> "UsageReport":
        accounts: "list[SubAccount]" = []

        token = claude_token(bag)
        if token:
            try:
                usage, reset_at = await fetch_seven_day_window(self._client, token)
            except (ProviderError, httpx.HTTPError) as exc:
                logger.warning(
                    "antigravity_account_error", account="claude", error=str(exc)
                )
            else:
                remaining = 100 - usage
                accounts.append(
                    SubAccount(
                        index=len(accounts),
                        label=hour_countdown("Claude", reset_at),
                        remaining=remaining,
                        entitlement=100,
                        remaining_percent=remaining,
                    )
                )

        if has_gemini_credentials(bag):
            try:
                quota = await fetch_gemini_quota(gemini_session(self._client, bag))
            except (ProviderError, httpx.HTTPError) as exc:
                logger.warning(
                    "antigravity_account_error", account="gemini", error=str(exc)
                )
            else:
                accounts.append(
                    SubAccount(
                        index=len(accounts),
                        label=hour_countdown("Gemini", quota.reset_at),
                        remaining=quota.remaining,
                        entitlement=100,
                        remaining_percent=quota.remaining,
                        model_breakdown={"used": 100 - quota.remaining},
                    )
                )

        if not accounts:
            raise ProviderError(
                "no Antigravity accounts found (missing anthropic/gemini tokens)"
            )

        return UsageReport(
            name=self.NAME,
            billing_kind=self.BILLING_KIND,
            accounts=accounts,
        )
