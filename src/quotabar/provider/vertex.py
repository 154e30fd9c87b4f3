import asyncio
import datetime
from collections import defaultdict
from typing import Any, Callable

import google.auth
import google.auth.exceptions
import google.auth.transport.requests
import httpx
import structlog

from quotabar.credentials import CredentialBag
from quotabar.errors import ProviderError
from quotabar.models import BillingKind, DailyUsage, UsageReport
from quotabar.provider.base import HTTPProvider, check_status, parse_json

logger = structlog.get_logger()

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
MONITORING_BASE_URL = "https://monitoring.googleapis.com/v3"
TOKEN_COUNT_FILTER = (
    'metric.type="aiplatform.googleapis.com/generate_content/total_token_count"'
)

HISTORY_DAYS = 7
_MONTH_ALIGNMENT = "2592000s"
_DAY_ALIGNMENT = "86400s"

CredentialsLoader = Callable[[], "tuple[Any, str | None]"]


def load_default_credentials() -> "tuple[Any, str | None]":
    """
    discovers Google application default credentials (environment,
    gcloud user login, metadata server).
    """
    return google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])


def _rfc3339(ts: "datetime.datetime") -> "str":
    return ts.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class VertexProvider(HTTPProvider):
    """
    VertexProvider reports the tokens generated through Vertex AI this
    month, read from Cloud Monitoring with the machine's application
    default credentials. It also serves a seven day daily history.
    """

    NAME = "Vertex AI"
    BILLING_KIND = BillingKind.TOKENS_BASED

    def __init__(
        self,
        client: "httpx.AsyncClient | None" = None,
        credentials_loader: "CredentialsLoader" = load_default_credentials,
    ) -> "None":
        super().__init__(client)
        self._load_credentials = credentials_loader

    async def _authorize(self) -> "tuple[str, str]":
        """
        returns (access token, project id).
        """
        try:
            credentials, project_id = await asyncio.to_thread(self._load_credentials)
        except google.auth.exceptions.DefaultCredentialsError as exc:
            raise ProviderError(
                f"could not find default GCP credentials: {exc}"
            ) from exc

        # gcloud user credentials carry the project as quota project
        project_id = project_id or getattr(credentials, "quota_project_id", None)
        if not project_id:
            raise ProviderError("could not determine GCP project id from credentials")

        if not credentials.valid:
            request = google.auth.transport.requests.Request()
            try:
                await asyncio.to_thread(credentials.refresh, request)
            except google.auth.exceptions.RefreshError as exc:
                raise ProviderError(f"GCP credential refresh failed: {exc}") from exc

        return credentials.token, project_id

    async def _list_time_series(
        self,
        token: "str",
        project_id: "str",
        start: "datetime.datetime",
        end: "datetime.datetime",
        alignment: "str",
    ) -> "list[dict[str, Any]]":
        url = f"{MONITORING_BASE_URL}/projects/{project_id}/timeSeries"
        params = {
            "filter": TOKEN_COUNT_FILTER,
            "interval.startTime": _rfc3339(start),
            "interval.endTime": _rfc3339(end),
            "aggregation.alignmentPeriod": alignment,
            "aggregation.perSeriesAligner": "ALIGN_SUM",
            "aggregation.crossSeriesReducer": "REDUCE_SUM",
        }
        series: "list[dict[str, Any]]" = []
        page_token = ""

        while True:
            if page_token:
                params["pageToken"] = page_token

            resp = await self._client.get(
                url, params=params, headers={"Authorization": f"Bearer {token}"}
            )
            check_status(resp, "vertex")
            data = parse_json(resp, "vertex")
            series.extend(data.get("timeSeries") or [])

            page_token = data.get("nextPageToken") or ""
            if not page_token:
                break

        return series

    async def fetch(self, bag: "CredentialBag") -> "UsageReport":
        token, project_id = await self._authorize()

        now = datetime.datetime.now(datetime.timezone.utc)
        start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        total = 0
        try:
            series = await self._list_time_series(
                token, project_id, start_of_month, now, _MONTH_ALIGNMENT
            )
        except ProviderError as exc:
            # no data yet or restricted monitoring permissions
            logger.warning("vertex_usage_unavailable", error=str(exc))
            series = []

        for ts in series:
            for point in ts.get("points") or []:
                total += _point_value(point)

        return UsageReport(
            name=self.NAME,
            billing_kind=self.BILLING_KIND,
            tokens_used=total,
            refresh_label="Monthly",
        )

    async def fetch_history(self, bag: "CredentialBag") -> "list[DailyUsage]":
        """
        returns one entry per day for the last seven days, newest first.
        """
        token, project_id = await self._authorize()

        now = datetime.datetime.now(datetime.timezone.utc)
        series = await self._list_time_series(
            token,
            project_id,
            now - datetime.timedelta(days=HISTORY_DAYS),
            now,
            _DAY_ALIGNMENT,
        )

        per_day: "dict[str, float]" = defaultdict(float)
        for ts in series:
            for point in ts.get("points") or []:
                end_time = (point.get("interval") or {}).get("endTime") or ""
                per_day[end_time[:10]] += _point_value(point)

        today = now.date()
        return [
            DailyUsage(
                date=day.isoformat(),
                included_requests=per_day.get(day.isoformat(), 0.0),
            )
            for day in (
                today - datetime.timedelta(days=i) for i in range(HISTORY_DAYS)
            )
        ]


def _point_value(point: "dict[str, Any]") -> "int":
    # int64 values are encoded as JSON strings
    value = (point.get("value") or {}).get("int64Value", 0)
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
