"""
Remote catalog destination.

Records are upserted with ``POST`` and deleted with ``DELETE`` on the
catalog endpoint, with a JSON body::

    {"apiVersion": ..., "resourceType": ..., "name": ..., "data": {...}, "operation": "upsert"}

Authentication is a static bearer token or an OAuth2 client-credentials
flow whose token is cached until it expires.

Configuration comes from :class:`~catalogsync.core.settings.CatalogSettings`
(``CATALOG_ENDPOINT``, ``CATALOG_TOKEN``, ``CATALOG_CLIENT_ID``,
``CATALOG_CLIENT_SECRET``, ``CATALOG_AUTH_ENDPOINT``, ``CATALOG_TIMEOUT``).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator, Generator
from typing import Any

import httpx

from catalogsync import __version__
from catalogsync.core.errors import DeliveryError, ErrorCategory
from catalogsync.core.logging import get_logger
from catalogsync.core.settings import CatalogSettings
from catalogsync.destinations.protocol import DestinationData

log = get_logger(__name__)

USER_AGENT = f"catalog-sync/{__version__}"

# Refresh a little before the server-side expiry
_TOKEN_EXPIRY_LEEWAY = 30.0


class BearerTokenAuth(httpx.Auth):
    """Static ``Authorization: Bearer`` header."""

    def __init__(self, token: str):
        self._header = f"Bearer {token}"

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = self._header
        yield request


class ClientCredentialsAuth(httpx.Auth):
    """
    OAuth2 client-credentials flow.

    The access token is fetched on first use, cached until ``expires_in``
    elapses and fetched again once when the catalog answers 401.
    """

    requires_response_body = True

    def __init__(self, token_url: str, client_id: str, client_secret: str):
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._lock = asyncio.Lock()
        self._token: str | None = None
        self._expires_at = 0.0

    def _token_valid(self) -> bool:
        return self._token is not None and time.monotonic() < self._expires_at

    def _build_token_request(self) -> httpx.Request:
        return httpx.Request(
            "POST",
            self._token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            },
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
        )

    def _update_token(self, response: httpx.Response) -> None:
        if response.status_code != httpx.codes.OK:
            raise DeliveryError(
                "cannot obtain access token",
                status_code=response.status_code,
                category=ErrorCategory.AUTH,
            ).with_context(url=self._token_url)
        try:
            payload = response.json()
            token = payload["access_token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise DeliveryError(
                "invalid access token response", category=ErrorCategory.AUTH, cause=exc
            ).with_context(url=self._token_url) from exc

        expires_in = payload.get("expires_in")
        lifetime = float(expires_in) if isinstance(expires_in, (int, float)) else 3600.0
        self._token = token
        self._expires_at = time.monotonic() + max(lifetime - _TOKEN_EXPIRY_LEEWAY, 0.0)
        log.debug("catalog.token_refreshed", expires_in=lifetime)

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    def _authorize(self, request: httpx.Request) -> str:
        assert self._token is not None
        request.headers["Authorization"] = f"Bearer {self._token}"
        return self._token

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        async with self._lock:
            if not self._token_valid():
                token_response = yield self._build_token_request()
                self._update_token(token_response)
            used_token = self._authorize(request)

        response = yield request
        if response.status_code != httpx.codes.UNAUTHORIZED:
            return

        async with self._lock:
            # another request may have refreshed it already
            if self._token == used_token:
                self.invalidate()
                token_response = yield self._build_token_request()
                self._update_token(token_response)
            self._authorize(request)
        yield request

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("ClientCredentialsAuth only supports httpx.AsyncClient")


def build_auth(settings: CatalogSettings) -> httpx.Auth | None:
    if settings.token:
        return BearerTokenAuth(settings.token)
    if settings.uses_client_credentials:
        assert settings.client_id is not None and settings.client_secret is not None
        return ClientCredentialsAuth(settings.token_url, settings.client_id, settings.client_secret)
    return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return "unexpected error"
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return "unexpected error"


class CatalogDestination:
    """
    Deliver records to the remote catalog over HTTP.

    Args:
        settings: Endpoint and credentials; read from the environment when omitted
        client: Shared HTTP client; one is created (and owned) when omitted

    Raises:
        DestinationSetupError: settings read from the environment are invalid
    """

    def __init__(
        self,
        settings: CatalogSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings if settings is not None else CatalogSettings.load()
        self._auth = build_auth(self._settings)
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=self._settings.timeout)

    @property
    def endpoint(self) -> str:
        return self._settings.endpoint

    async def send_data(self, data: DestinationData) -> None:
        await self._request("POST", data)

    async def delete_data(self, data: DestinationData) -> None:
        await self._request("DELETE", data)

    async def _request(self, method: str, data: DestinationData) -> None:
        kwargs: dict[str, Any] = {
            "json": data.to_wire(),
            "headers": {"User-Agent": USER_AGENT, "Accept": "application/json"},
        }
        if self._auth is not None:
            kwargs["auth"] = self._auth

        log.debug("catalog.request", method=method, name=data.name, kind=data.kind)
        try:
            response = await self._client.request(method, self._settings.endpoint, **kwargs)
        except httpx.HTTPError as exc:
            raise DeliveryError(f"catalog: {exc}", cause=exc).with_context(
                url=self._settings.endpoint, identifier=data.name
            ) from exc

        if response.is_success:
            return

        if response.status_code in (httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN):
            message = "invalid token or insufficient permissions"
        else:
            message = _error_message(response)
        raise DeliveryError(message, status_code=response.status_code).with_context(
            url=self._settings.endpoint, identifier=data.name
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> CatalogDestination:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


__all__ = [
    "USER_AGENT",
    "BearerTokenAuth",
    "ClientCredentialsAuth",
    "CatalogDestination",
    "build_auth",
]
