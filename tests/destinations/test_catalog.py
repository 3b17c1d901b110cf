"""Tests for catalogsync.destinations.catalog.

The catalog API is simulated with ``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest

from catalogsync import __version__
from catalogsync.core.errors import DeliveryError, ErrorCategory
from catalogsync.core.settings import CatalogSettings
from catalogsync.destinations.catalog import CatalogDestination, ClientCredentialsAuth
from catalogsync.destinations.protocol import DestinationData

ENDPOINT = "https://catalog.example.com/api/items"
UPSERT = DestinationData("v1", "services", "api", {"owner": "me"})
DELETE = DestinationData("v1", "services", "api")


def _settings(**overrides) -> CatalogSettings:
    return CatalogSettings.load(endpoint=ENDPOINT, **overrides)


def _destination(handler, **overrides) -> CatalogDestination:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CatalogDestination(_settings(**overrides), client=client)


class TestRequests:
    @pytest.mark.asyncio
    async def test_upsert_posts_wire_body(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        await _destination(handler, token="secret").send_data(UPSERT)

        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == ENDPOINT
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.headers["User-Agent"] == f"catalog-sync/{__version__}"
        assert request.headers["Content-Type"] == "application/json"
        assert json.loads(request.content) == {
            "apiVersion": "v1",
            "resourceType": "services",
            "name": "api",
            "data": {"owner": "me"},
            "operation": "upsert",
        }

    @pytest.mark.asyncio
    async def test_delete_sends_delete_with_body(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={})

        await _destination(handler).delete_data(DELETE)

        assert requests[0].method == "DELETE"
        assert "Authorization" not in requests[0].headers
        assert json.loads(requests[0].content)["operation"] == "delete"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_failures(self, status):
        destination = _destination(lambda request: httpx.Response(status), token="bad")
        with pytest.raises(DeliveryError, match="invalid token or insufficient permissions") as exc_info:
            await destination.send_data(UPSERT)
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_server_message_is_used(self):
        destination = _destination(lambda request: httpx.Response(400, json={"message": "spec.owner is required"}))
        with pytest.raises(DeliveryError, match="spec.owner is required") as exc_info:
            await destination.send_data(UPSERT)
        assert exc_info.value.context.identifier == "api"
        assert exc_info.value.context.url == ENDPOINT

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [httpx.Response(500, text="oops"), httpx.Response(502, json={"error": "bad gateway"})],
    )
    async def test_unexpected_error(self, response):
        destination = _destination(lambda request: response)
        with pytest.raises(DeliveryError, match="unexpected error"):
            await destination.send_data(UPSERT)

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(DeliveryError, match="connection refused") as exc_info:
            await _destination(handler).send_data(UPSERT)
        assert isinstance(exc_info.value.cause, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_cancellation_is_not_an_error(self):
        started = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            started.set()
            await asyncio.Event().wait()
            return httpx.Response(204)

        task = asyncio.create_task(_destination(handler).send_data(UPSERT))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self):
        async with CatalogDestination(_settings(token="secret")) as destination:
            assert destination.endpoint == ENDPOINT
        assert destination._client.is_closed


class TestClientCredentials:
    @staticmethod
    def _catalog(token_responses, catalog_statuses):
        calls: list[httpx.Request] = []
        tokens = iter(token_responses)
        statuses = iter(catalog_statuses)

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if request.url.path == "/oauth/token":
                return next(tokens)
            return httpx.Response(next(statuses))

        return calls, handler

    @pytest.mark.asyncio
    async def test_token_is_fetched_once_and_reused(self):
        calls, handler = self._catalog(
            [httpx.Response(200, json={"access_token": "t1", "expires_in": 3600})],
            [204, 204],
        )
        destination = _destination(handler, client_id="id", client_secret="secret")

        await destination.send_data(UPSERT)
        await destination.delete_data(DELETE)

        assert [c.url.path for c in calls] == ["/oauth/token", "/api/items", "/api/items"]
        form = parse_qs(calls[0].content.decode())
        assert form == {"grant_type": ["client_credentials"], "client_id": ["id"], "client_secret": ["secret"]}
        assert calls[1].headers["Authorization"] == "Bearer t1"
        assert calls[2].headers["Authorization"] == "Bearer t1"

    @pytest.mark.asyncio
    async def test_token_refreshed_once_on_401(self):
        calls, handler = self._catalog(
            [
                httpx.Response(200, json={"access_token": "t1", "expires_in": 3600}),
                httpx.Response(200, json={"access_token": "t2", "expires_in": 3600}),
            ],
            [401, 204],
        )
        destination = _destination(handler, client_id="id", client_secret="secret")

        await destination.send_data(UPSERT)

        assert [c.url.path for c in calls] == ["/oauth/token", "/api/items", "/oauth/token", "/api/items"]
        assert calls[3].headers["Authorization"] == "Bearer t2"

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(self):
        calls, handler = self._catalog(
            [
                httpx.Response(200, json={"access_token": "t1", "expires_in": 10}),
                httpx.Response(200, json={"access_token": "t2", "expires_in": 3600}),
            ],
            [204, 204],
        )
        destination = _destination(handler, client_id="id", client_secret="secret")

        await destination.send_data(UPSERT)
        await destination.send_data(UPSERT)

        # lifetime shorter than the refresh leeway: every call fetches a token
        assert [c.url.path for c in calls].count("/oauth/token") == 2

    @pytest.mark.asyncio
    async def test_token_endpoint_failure(self):
        calls, handler = self._catalog([httpx.Response(400, json={"error": "invalid_client"})], [])
        destination = _destination(handler, client_id="id", client_secret="secret")

        with pytest.raises(DeliveryError, match="cannot obtain access token") as exc_info:
            await destination.send_data(UPSERT)
        assert exc_info.value.category == ErrorCategory.AUTH
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_custom_auth_endpoint(self):
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(str(request.url))
            if request.url.host == "auth.example.com":
                return httpx.Response(200, json={"access_token": "t1"})
            return httpx.Response(204)

        destination = _destination(
            handler, client_id="id", client_secret="secret", auth_endpoint="https://auth.example.com/token"
        )
        await destination.send_data(UPSERT)
        assert calls == ["https://auth.example.com/token", ENDPOINT]

    def test_sync_clients_are_rejected(self):
        auth = ClientCredentialsAuth("https://auth.example.com/token", "id", "secret")
        with pytest.raises(RuntimeError):
            next(auth.sync_auth_flow(httpx.Request("GET", ENDPOINT)))
