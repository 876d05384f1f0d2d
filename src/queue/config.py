"""Redis-backed queue configuration for review and reconciliation jobs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from redis import Redis
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job

from src.config.settings import settings
from src.models.review import ReviewTrigger

logger = logging.getLogger(__name__)

JOB_TIMEOUT_SECONDS = settings.worker_job_timeout
DEFAULT_PRIORITY = "default"
RECONCILIATION_JOB_PREFIX = "reconcile-pull-requests"
# Jobs in these states already cover a trigger
ACTIVE_JOB_STATES = {"queued", "started", "deferred", "scheduled"}

# Explicit comment requests jump ahead of description triggers
PRIORITY_MAPPING: Mapping[str, str] = {
    "comment": "high",
    "description": DEFAULT_PRIORITY,
    "reconcile": "low",
}

# Single Redis connection used by all queues
if settings.redis_url:
    redis_connection = Redis.from_url(settings.redis_url, socket_timeout=5)
else:
    redis_connection = Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        socket_timeout=5,
    )
redis_conn = redis_connection  # alias for worker script imports

# Queue order matters: RQ workers drain earlier queues first
_queues: dict[str, Queue] = {
    priority: Queue(f"reviews:{priority}", connection=redis_connection)
    for priority in ("high", DEFAULT_PRIORITY, "low")
}

review_queue = _queues[DEFAULT_PRIORITY]


def get_all_queues() -> list[Queue]:
    """Return all configured queues, highest priority first."""
    return list(_queues.values())


def _sanitize_repo(repo_name: str) -> str:
    """Return a Redis-safe repo identifier for job ids (Redis keys disallow ':')."""
    return repo_name.replace(":", "-").replace("/", "__")


def _job_id(trigger: ReviewTrigger) -> str:
    """Build a deterministic job id so queued duplicates of a trigger collapse."""
    safe_repo = _sanitize_repo(f"{trigger.owner}/{trigger.repo}")
    source = "description" if trigger.comment_id is None else f"comment-{trigger.comment_id}"
    return f"review-{safe_repo}-pr-{trigger.pr_number}-{source}"


def _fetch_existing_job(job_id: str) -> Job | None:
    """Attempt to fetch an existing job by id without raising."""
    try:
        return Job.fetch(job_id, connection=redis_connection)
    except NoSuchJobError:
        return None


def _active_job(job_id: str) -> Job | None:
    existing_job = _fetch_existing_job(job_id)
    if existing_job is None:
        return None
    status = existing_job.get_status(refresh=True)
    return existing_job if status in ACTIVE_JOB_STATES else None


def run_review_job(
    owner: str,
    repo: str,
    pr_number: int,
    comment_id: int | None = None,
    comment_type: str = "issue_comment",
) -> dict[str, Any]:
    """RQ job entrypoint that runs one review cycle."""
    logger.info(
        "Starting review job for %s/%s#%s (comment=%s)", owner, repo, pr_number, comment_id
    )
    # Deferred import keeps queue config lightweight for non-worker processes
    from src.services.review_orchestrator import ReviewOrchestrator

    outcome = asyncio.run(
        ReviewOrchestrator().check_single_pull_request(
            owner, repo, pr_number, comment_id, comment_type
        )
    )
    logger.info(
        "Finished review job for %s/%s#%s: %s", owner, repo, pr_number, outcome.status
    )
    return outcome.model_dump()


def enqueue_review(trigger: ReviewTrigger, priority: str | None = None) -> Job:
    """Enqueue a review job with deduplication, priority and timeout.

    - Deduplicates per trigger using a deterministic job id.
    - Routes comment triggers to the high priority queue.
    - No automatic retries: the tracker is untouched on failure, so the next
      webhook delivery or poll pass re-triggers the review.
    """
    job_id = _job_id(trigger)
    queue = _queues.get(priority or PRIORITY_MAPPING[trigger.kind], review_queue)

    existing_job = _active_job(job_id)
    if existing_job is not None:
        logger.info("Skipping duplicate review job for %s", trigger.describe())
        return existing_job

    logger.info(
        "Enqueuing review job for %s on queue '%s'", trigger.describe(), queue.name
    )
    return queue.enqueue(
        run_review_job,
        trigger.owner,
        trigger.repo,
        trigger.pr_number,
        trigger.comment_id,
        trigger.comment_type,
        job_id=job_id,
        job_timeout=JOB_TIMEOUT_SECONDS,
        description=f"review {trigger.describe()}",
    )


def run_reconciliation_job(reschedule: bool = True) -> dict[str, Any]:
    """RQ job entrypoint for one poll reconciliation pass."""
    from src.services.review_orchestrator import ReviewOrchestrator

    try:
        result = asyncio.run(ReviewOrchestrator().check_existing_pull_requests())
    finally:
        if reschedule:
            schedule_reconciliation()
    return result.model_dump()


def schedule_reconciliation(delay_seconds: int | None = None) -> Job | None:
    """Schedule the next reconciliation pass unless one is already pending."""
    delay = settings.poll_interval_seconds if delay_seconds is None else delay_seconds
    if delay <= 0:
        logger.info("Poll reconciliation disabled (poll_interval_seconds=%s)", delay)
        return None

    queue = _queues[PRIORITY_MAPPING["reconcile"]]
    pending = [
        job_id
        for job_id in [*queue.scheduled_job_registry.get_job_ids(), *queue.get_job_ids()]
        if job_id.startswith(RECONCILIATION_JOB_PREFIX)
    ]
    if pending:
        logger.debug("Reconciliation already pending (job=%s)", pending[0])
        return _fetch_existing_job(pending[0])

    # One id per due time so the running pass can schedule its successor
    due = datetime.now(timezone.utc) + timedelta(seconds=delay)
    logger.info("Scheduling reconciliation in %ss", delay)
    return queue.enqueue_in(
        timedelta(seconds=delay),
        run_reconciliation_job,
        job_id=f"{RECONCILIATION_JOB_PREFIX}-{int(due.timestamp())}",
        job_timeout=JOB_TIMEOUT_SECONDS,
        description="poll reconciliation",
    )
