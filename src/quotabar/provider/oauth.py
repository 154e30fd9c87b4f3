import enum
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from quotabar.credentials import CredentialBag
from quotabar.errors import TokenRefreshError

logger = structlog.get_logger()

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


class TokenState(enum.Enum):
    NEED_AUTH = "need_auth"
    AUTHORIZED = "authorized"
    EXPIRED = "expired"
    REFRESHING = "refreshing"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RefreshCredentials:
    """
    RefreshCredentials are the OAuth client and refresh token kept in
    the linked accounts file.
    """

    client_id: "str"
    client_secret: "str"
    refresh_token: "str"

    @classmethod
    def from_bag(cls, bag: "CredentialBag") -> "RefreshCredentials | None":
        linked = bag.linked_accounts

        def _get(name: "str") -> "str":
            value = linked.get(name)
            return value if isinstance(value, str) else ""

        client_id = _get("client_id")
        refresh_token = _get("refresh_token")
        if not client_id or not refresh_token:
            return None
        # public installed-app clients may have no secret
        return cls(client_id, _get("client_secret"), refresh_token)


class RefreshingSession:
    """
    RefreshingSession sends bearer-authenticated requests and walks the
    token through NEED_AUTH -> AUTHORIZED -> EXPIRED -> REFRESHING ->
    AUTHORIZED | FAILED.

    A request made without an access token refreshes first. A 401
    response triggers exactly one refresh and one retry; whatever the
    retry returns is final. Use one session per fetch call.
    """

    def __init__(
        self,
        client: "httpx.AsyncClient",
        access_token: "str" = "",
        refresh: "RefreshCredentials | None" = None,
        token_url: "str" = GOOGLE_TOKEN_URL,
    ) -> "None":
        self._client = client
        self._access_token = access_token
        self._refresh_creds = refresh
        self._token_url = token_url
        self._retried = False
        self.state: "TokenState" = TokenState.NEED_AUTH

    async def request(
        self, method: "str", url: "str", **kwargs: "Any"
    ) -> "httpx.Response":
        if self.state == TokenState.NEED_AUTH:
            if self._access_token:
                self.state = TokenState.AUTHORIZED
            else:
                await self._refresh()

        resp = await self._send(method, url, **kwargs)
        if resp.status_code != 401 or self._retried:
            return resp

        self._retried = True
        self.state = TokenState.EXPIRED
        logger.debug("oauth_token_expired", url=url)
        await self._refresh()
        return await self._send(method, url, **kwargs)

    async def _send(
        self, method: "str", url: "str", **kwargs: "Any"
    ) -> "httpx.Response":
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {self._access_token}"
        return await self._client.request(method, url, headers=headers, **kwargs)

    async def _refresh(self) -> "None":
        self.state = TokenState.REFRESHING
        creds = self._refresh_creds
        if creds is None:
            self.state = TokenState.FAILED
            raise TokenRefreshError(
                "missing client_id or refresh_token in linked accounts"
            )

        resp = await self._client.post(
            self._token_url,
            data={
                "grant_type": "refresh_token",
                "client_id": creds.client_id,
                "client_secret": creds.client_secret,
                "refresh_token": creds.refresh_token,
            },
        )
        if resp.status_code != 200:
            self.state = TokenState.FAILED
            raise TokenRefreshError(
                f"token refresh failed with status {resp.status_code}"
            )

        try:
            token = resp.json().get("access_token", "")
        except (ValueError, AttributeError):
            token = ""
        if not isinstance(token, str) or not token:
            self.state = TokenState.FAILED
            raise TokenRefreshError("token refresh returned no access_token")

        self._access_token = token
        self.state = TokenState.AUTHORIZED
        logger.debug("oauth_token_refreshed")
