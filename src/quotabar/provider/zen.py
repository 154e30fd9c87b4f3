import datetime
from typing import Any

from quotabar.credentials import CredentialBag
from quotabar.errors import ProviderError
from quotabar.models import BillingKind, UsageReport
from quotabar.provider.base import HTTPProvider, check_status, parse_json

ZEN_MODEL_USAGE_URL = "https://api.z.ai/api/monitor/usage/model-usage"


def find_zen_token(bag: "CredentialBag") -> "str":
    """
    prefers the token read from the opencode database, then a "zen" or
    "opencode" object in auth.json.
    """
    return (
        bag.zen_token
        or bag.get_nested_field("zen", "access")
        or bag.get_nested_field("opencode", "access")
    )


def total_cost(data: "dict[str, Any]") -> "float":
    """
    reads the month-to-date cost: the "total" object when present,
    else the sum of the per-model rows, else a flat "cost".
    """
    total = (data.get("total") or {}).get("cost") or 0.0
    if total > 0:
        return float(total)

    rows = data.get("data")
    if isinstance(rows, list) and rows:
        return float(sum(row.get("cost") or 0.0 for row in rows))

    return float(data.get("cost") or 0.0)


class ZenProvider(HTTPProvider):
    """
    ZenProvider reports the month-to-date spend of an OpenCode Zen
    account.
    """

    NAME = "OpenCode Zen"
    BILLING_KIND = BillingKind.PAY_AS_YOU_GO

    async def fetch(self, bag: "CredentialBag") -> "UsageReport":
        token = find_zen_token(bag)
        if not token:
            raise ProviderError("no OpenCode Zen token found in database or auth.json")

        today = datetime.date.today()
        resp = await self._client.get(
            ZEN_MODEL_USAGE_URL,
            params={
                "start": today.replace(day=1).isoformat(),
                "end": today.isoformat(),
            },
            headers={"Authorization": f"Bearer {token}"},
        )
        check_status(resp, "zen")

        return UsageReport(
            name=self.NAME,
            billing_kind=self.BILLING_KIND,
            cost=total_cost(parse_json(resp, "zen")),
        )
