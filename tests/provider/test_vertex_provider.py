import datetime

import google.auth.exceptions
import httpx
import pytest
import respx

from quotabar.errors import ProviderError
from quotabar.models import BillingKind
from quotabar.provider.vertex import HISTORY_DAYS, MONITORING_BASE_URL, VertexProvider

SERIES_URL = f"{MONITORING_BASE_URL}/projects/my-project/timeSeries"


class FakeCredentials:
    def __init__(self, valid: "bool" = True) -> "None":
        self.valid = valid
        self.token = "ya29.fake"
        self.quota_project_id = None
        self.refreshed = False

    def refresh(self, request) -> "None":
        self.refreshed = True
        self.valid = True


def _loader(credentials, project_id="my-project"):
    return lambda: (credentials, project_id)


def _point(value: "int", end_time: "str" = "") -> "dict":
    return {"interval": {"endTime": end_time}, "value": {"int64Value": str(value)}}


class TestVertexProviderFetch:
    @pytest.mark.asyncio
    @respx.mock
    async def test_sums_month_to_date_tokens(self, make_bag) -> "None":
        route = respx.get(SERIES_URL).mock(
            side_effect=[
                httpx.Response(
                    200,
                    json={
                        "timeSeries": [{"points": [_point(1000), _point(250)]}],
                        "nextPageToken": "page-2",
                    },
                ),
                httpx.Response(200, json={"timeSeries": [{"points": [_point(5)]}]}),
            ]
        )
        provider = VertexProvider(credentials_loader=_loader(FakeCredentials()))

        report = await provider.fetch(make_bag({}))

        assert report.billing_kind == BillingKind.TOKENS_BASED
        assert report.tokens_used == 1255
        assert report.refresh_label == "Monthly"
        assert route.call_count == 2
        assert route.calls.last.request.url.params["pageToken"] == "page-2"
        auth = route.calls.last.request.headers["Authorization"]
        assert auth == "Bearer ya29.fake"

    @pytest.mark.asyncio
    @respx.mock
    async def test_monitoring_error_reports_zero(self, make_bag) -> "None":
        respx.get(SERIES_URL).mock(return_value=httpx.Response(403))
        provider = VertexProvider(credentials_loader=_loader(FakeCredentials()))

        report = await provider.fetch(make_bag({}))

        assert report.tokens_used == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_refreshes_invalid_credentials(self, make_bag) -> "None":
        respx.get(SERIES_URL).mock(return_value=httpx.Response(200, json={}))
        credentials = FakeCredentials(valid=False)
        provider = VertexProvider(credentials_loader=_loader(credentials))

        await provider.fetch(make_bag({}))

        assert credentials.refreshed

    @pytest.mark.asyncio
    @respx.mock
    async def test_falls_back_to_quota_project(self, make_bag) -> "None":
        route = respx.get(SERIES_URL).mock(return_value=httpx.Response(200, json={}))
        credentials = FakeCredentials()
        credentials.quota_project_id = "my-project"
        provider = VertexProvider(credentials_loader=_loader(credentials, None))

        await provider.fetch(make_bag({}))

        assert route.called

    @pytest.mark.asyncio
    async def test_missing_default_credentials(self, make_bag) -> "None":
        def _fail():
            raise google.auth.exceptions.DefaultCredentialsError("none")

        provider = VertexProvider(credentials_loader=_fail)

        with pytest.raises(ProviderError, match="default GCP credentials"):
            await provider.fetch(make_bag({}))

    @pytest.mark.asyncio
    async def test_missing_project(self, make_bag) -> "None":
        provider = VertexProvider(
            credentials_loader=_loader(FakeCredentials(), None)
        )

        with pytest.raises(ProviderError, match="project id"):
            await provider.fetch(make_bag({}))


class TestVertexProviderHistory:
    @pytest.mark.asyncio
    @respx.mock
    async def test_daily_history_newest_first(self, make_bag) -> "None":
        today = datetime.datetime.now(datetime.timezone.utc).date()
        yesterday = today - datetime.timedelta(days=1)
        respx.get(SERIES_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "timeSeries": [
                        {
                            "points": [
                                _point(40, f"{today.isoformat()}T00:00:00Z"),
                                _point(10, f"{yesterday.isoformat()}T00:00:00Z"),
                                _point(5, f"{yesterday.isoformat()}T00:00:00Z"),
                            ]
                        }
                    ]
                },
            )
        )
        provider = VertexProvider(credentials_loader=_loader(FakeCredentials()))

        history = await provider.fetch_history(make_bag({}))

        assert len(history) == HISTORY_DAYS
        assert history[0].date == today.isoformat()
        assert history[0].included_requests == 40
        assert history[1].included_requests == 15
        assert all(day.included_requests == 0 for day in history[2:])
