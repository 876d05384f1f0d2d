"""Handlers that connect parsed webhook events to the review orchestrator."""

import logging
from functools import lru_cache

from fastapi import HTTPException, status
from redis.exceptions import ConnectionError as RedisConnectionError

from src.models.events import (
    CommentEvent,
    IgnoredEvent,
    PingEvent,
    PullRequestEvent,
)
from src.models.review import EventOutcome, ReviewTrigger
from src.queue.config import enqueue_review
from src.services.review_orchestrator import ReviewOrchestrator

logger = logging.getLogger(__name__)


def handle_ping_event(event: PingEvent) -> EventOutcome:
    """Handle GitHub ping event (webhook setup verification)."""
    logger.info(f"Received ping event from GitHub: {event.zen or ''}")
    return EventOutcome(status="processed", message="pong")


def dispatch_review_job(trigger: ReviewTrigger) -> EventOutcome:
    """Queue a review cycle for the RQ worker."""
    try:
        job = enqueue_review(trigger)
    except RedisConnectionError as exc:
        logger.exception(
            "Redis unavailable while enqueuing review job for %s", trigger.describe()
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Queue backend unavailable",
        ) from exc

    logger.info(f"Queued background review for {trigger.describe()}")
    return EventOutcome(
        status="queued", message=f"review of {trigger.describe()} queued", job_id=job.id
    )


@lru_cache(maxsize=1)
def get_review_orchestrator() -> ReviewOrchestrator:
    """FastAPI dependency: orchestrator that hands reviews to the queue."""
    return ReviewOrchestrator(dispatcher=dispatch_review_job)


async def handle_webhook_event(
    event: PingEvent | PullRequestEvent | CommentEvent | IgnoredEvent,
    orchestrator: ReviewOrchestrator,
) -> EventOutcome:
    """Route one parsed event."""
    if isinstance(event, PingEvent):
        return handle_ping_event(event)
    if isinstance(event, IgnoredEvent):
        logger.info(f"Ignoring event type {event.event_type}: {event.reason}")
        return EventOutcome(status="ignored", message=event.reason)

    logger.info(
        f"Received {event.kind} {event.action} event for "
        f"{event.owner}/{event.repo}#{event.pr_number}"
    )
    return await orchestrator.handle_event(event)
