import httpx
import pytest
import respx

from quotabar.errors import ProviderError
from quotabar.provider.antigravity import (
    AntigravityProvider,
    claude_token,
    has_gemini_credentials,
)
from quotabar.provider.claude import CLAUDE_USAGE_URL
from quotabar.provider.gemini import GEMINI_QUOTA_URL
from quotabar.provider.oauth import GOOGLE_TOKEN_URL

CLAUDE_BODY = {"seven_day": {"utilization": 30, "resets_at": "2099-01-01T12:00:00Z"}}
GEMINI_BODY = {
    "buckets": [{"remainingFraction": 0.6, "resetTime": "2099-01-01T08:00:00Z"}]
}


class TestAntigravityCredentials:
    def test_either_identity_is_enough(self, make_bag) -> "None":
        claude_only = make_bag({"anthropic": {"access": "sk-ant"}})
        assert claude_token(claude_only) == "sk-ant"
        assert not has_gemini_credentials(claude_only)

        linked_only = make_bag(
            {"antigravity": {"client_id": "cid", "refresh_token": "rt"}}
        )
        assert claude_token(linked_only) == ""
        assert has_gemini_credentials(linked_only)


class TestAntigravityProviderFetch:
    @pytest.mark.asyncio
    @respx.mock
    async def test_both_accounts(self, make_bag) -> "None":
        respx.get(CLAUDE_USAGE_URL).mock(
            return_value=httpx.Response(200, json=CLAUDE_BODY)
        )
        respx.post(GEMINI_QUOTA_URL).mock(
            return_value=httpx.Response(200, json=GEMINI_BODY)
        )
        bag = make_bag(
            {"anthropic": {"access": "sk-ant"}, "gemini": {"access": "ya29"}}
        )

        report = await AntigravityProvider().fetch(bag)

        assert report.name == "Antigravity"
        assert report.remaining is None
        assert [a.index for a in report.accounts] == [0, 1]

        claude, gemini = report.accounts
        assert claude.label.startswith("Claude: in ")
        assert claude.remaining == 70
        assert claude.remaining_percent == 70
        assert gemini.label.startswith("Gemini: in ")
        assert gemini.remaining == 60
        assert gemini.model_breakdown == {"used": 40}

    @pytest.mark.asyncio
    @respx.mock
    async def test_failed_account_is_left_out(self, make_bag) -> "None":
        respx.get(CLAUDE_USAGE_URL).mock(return_value=httpx.Response(500))
        respx.post(GEMINI_QUOTA_URL).mock(
            return_value=httpx.Response(200, json=GEMINI_BODY)
        )
        bag = make_bag(
            {"anthropic": {"access": "sk-ant"}, "gemini": {"access": "ya29"}}
        )

        report = await AntigravityProvider().fetch(bag)

        assert len(report.accounts) == 1
        assert report.accounts[0].index == 0
        assert report.accounts[0].label.startswith("Gemini")

    @pytest.mark.asyncio
    @respx.mock
    async def test_gemini_via_refresh_token(self, make_bag) -> "None":
        token_route = respx.post(GOOGLE_TOKEN_URL).mock(
            return_value=httpx.Response(200, json={"access_token": "minted"})
        )
        quota_route = respx.post(GEMINI_QUOTA_URL).mock(
            return_value=httpx.Response(200, json=GEMINI_BODY)
        )
        bag = make_bag({"antigravity": {"client_id": "cid", "refresh_token": "rt"}})

        report = await AntigravityProvider().fetch(bag)

        assert token_route.call_count == 1
        assert quota_route.calls.last.request.headers["Authorization"] == (
            "Bearer minted"
        )
        assert len(report.accounts) == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_account_succeeds(self, make_bag) -> "None":
        respx.get(CLAUDE_USAGE_URL).mock(return_value=httpx.Response(401))
        bag = make_bag({"anthropic": {"access": "sk-ant"}})

        with pytest.raises(ProviderError, match="no Antigravity accounts"):
            await AntigravityProvider().fetch(bag)

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_gemini_bucket_keeps_claude(self, make_bag) -> "None":
        respx.get(CLAUDE_USAGE_URL).mock(
            return_value=httpx.Response(200, json=CLAUDE_BODY)
        )
        respx.post(GEMINI_QUOTA_URL).mock(
            return_value=httpx.Response(
                200, json={"buckets": [{"remainingFraction": None}]}
            )
        )
        bag = make_bag(
            {"anthropic": {"access": "sk-ant"}, "gemini": {"access": "ya29"}}
        )

        report = await AntigravityProvider().fetch(bag)

        assert [a.label.split(":")[0] for a in report.accounts] == ["Claude"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_claude_window_keeps_gemini(self, make_bag) -> "None":
        respx.get(CLAUDE_USAGE_URL).mock(
            return_value=httpx.Response(200, json={"seven_day": "n/a"})
        )
        respx.post(GEMINI_QUOTA_URL).mock(
            return_value=httpx.Response(200, json=GEMINI_BODY)
        )
        bag = make_bag(
            {"anthropic": {"access": "sk-ant"}, "gemini": {"access": "ya29"}}
        )

        report = await AntigravityProvider().fetch(bag)

        assert [a.label.split(":")[0] for a in report.accounts] == ["Gemini"]
        assert report.accounts[0].index == 0
