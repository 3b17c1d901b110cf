"""Webhook routes for webhook-capable sources.

Each :class:`~catalogsync.framework.sources.protocol.Webhook` becomes one
route. The handler receives the request headers and raw body; the route
answers ``204`` on success and ``500`` with a JSON error body otherwise.

Setup::

    webhooks = await collect_webhooks(integrations)
    app.include_router(build_webhook_router(webhooks))
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from catalogsync.core.errors import UnsupportedSourceError
from catalogsync.core.logging import get_logger
from catalogsync.framework.pipelines.integration import Integration
from catalogsync.framework.sources.protocol import Webhook

logger = get_logger(__name__)


# ── Models ───────────────────────────────────────────────────────────


class WebhookErrorResponse(BaseModel):
    """Body returned when a webhook handler fails."""

    statusCode: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "Internal Server Error"
    message: str = "error processing webhook message"


# ── Routes ───────────────────────────────────────────────────────────


def _endpoint(webhook: Webhook) -> Callable[[Request], Awaitable[Response]]:
    async def handle_webhook(request: Request) -> Response:
        body = await request.body()
        try:
            await webhook.handler(request.headers, body)
        except Exception as exc:
            logger.error(
                "webhook.handler_failed",
                method=webhook.method,
                path=webhook.path,
                error=str(exc),
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=WebhookErrorResponse().model_dump(),
            )
        logger.debug("webhook.processed", method=webhook.method, path=webhook.path)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return handle_webhook


def build_webhook_router(webhooks: Iterable[Webhook]) -> APIRouter:
    """One route per webhook, mounted at its own method and path."""
    router = APIRouter(tags=["webhooks"])
    for webhook in webhooks:
        router.add_api_route(
            webhook.path,
            _endpoint(webhook),
            methods=[webhook.method.upper()],
            status_code=status.HTTP_204_NO_CONTENT,
            responses={500: {"model": WebhookErrorResponse}},
            include_in_schema=True,
        )
        logger.info("webhook.route_added", method=webhook.method.upper(), path=webhook.path)
    return router


async def collect_webhooks(integrations: Iterable[Integration]) -> list[Webhook]:
    """Webhooks of every integration whose source exposes any."""
    webhooks: list[Webhook] = []
    for integration in integrations:
        try:
            webhooks.extend(await integration.webhooks())
        except UnsupportedSourceError:
            logger.debug("webhook.not_supported", integration=integration.name)
    return webhooks


__all__ = ["WebhookErrorResponse", "build_webhook_router", "collect_webhooks"]
