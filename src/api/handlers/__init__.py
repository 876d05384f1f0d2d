"""Webhook event handlers for GitHub events."""

from .webhook_event_handlers import (
    dispatch_review_job,
    get_review_orchestrator,
    handle_webhook_event,
)

__all__ = ["dispatch_review_job", "get_review_orchestrator", "handle_webhook_event"]
