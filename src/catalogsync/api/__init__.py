"""HTTP surface: FastAPI routers."""

from catalogsync.api.webhooks import build_webhook_router, collect_webhooks

__all__ = ["build_webhook_router", "collect_webhooks"]
