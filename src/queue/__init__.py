"""Queue package for background review processing."""

from .config import (
    enqueue_review,
    redis_connection,
    review_queue,
    run_reconciliation_job,
    run_review_job,
    schedule_reconciliation,
)

__all__ = [
    "enqueue_review",
    "redis_connection",
    "review_queue",
    "run_review_job",
    "run_reconciliation_job",
    "schedule_reconciliation",
]
