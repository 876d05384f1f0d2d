"""GitHub webhook handlers."""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from rq import Worker
from rq.exceptions import NoSuchJobError
from rq.job import Job
from rq.registry import FailedJobRegistry, FinishedJobRegistry, StartedJobRegistry
from sqlalchemy.orm import Session

from src.api.handlers.webhook_event_handlers import (
    get_review_orchestrator,
    handle_webhook_event,
)
from src.database.db import get_db
from src.models.events import parse_webhook_event, repository_identity
from src.queue.config import get_all_queues, redis_conn
from src.services.repository_registry import RepositoryRegistry
from src.services.review_orchestrator import ReviewOrchestrator
from src.utils.signature import verify_signature

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhook", tags=["webhooks"])


@router.get("/queue/status")
async def queue_status() -> dict[str, int]:
    """Return aggregate queue metrics across all priority lanes."""
    totals = {"queued": 0, "started": 0, "finished": 0, "failed": 0}
    for queue in get_all_queues():
        totals["queued"] += queue.count
        totals["started"] += len(StartedJobRegistry(queue=queue))
        totals["finished"] += len(FinishedJobRegistry(queue=queue))
        totals["failed"] += len(FailedJobRegistry(queue=queue))

    return {**totals, "active_workers": len(Worker.all(connection=redis_conn))}


@router.get("/queue/job/{job_id}")
async def queue_job(job_id: str) -> dict[str, Any]:
    """Return details for a specific queued job."""
    try:
        job = Job.fetch(job_id, connection=redis_conn)
    except NoSuchJobError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Job not found"
        ) from err

    status_value = job.get_status(refresh=True)
    latest_result = job.latest_result()
    latest_return = (
        getattr(latest_result, "return_value", None) if latest_result else None
    )
    latest_traceback = (
        getattr(latest_result, "exc_string", None) if latest_result else None
    )
    return {
        "job_id": job.id,
        "status": status_value,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "ended_at": job.ended_at.isoformat() if job.ended_at else None,
        "result": latest_return if status_value == "finished" else None,
        "exc_info": latest_traceback if status_value == "failed" else None,
    }


def validate_signature(
    body: bytes,
    payload: dict[str, Any],
    signature: str | None,
    db: Session,
) -> None:
    """
    Validate a GitHub webhook signature with the repository's own secret.

    Args:
        body: Raw request body, exactly as received
        payload: Decoded body, used only to find the repository
        signature: X-Hub-Signature-256 or X-Hub-Signature header value
        db: Database session

    Raises:
        HTTPException: 401 if the repository, secret or signature is unusable
    """
    identity = repository_identity(payload)
    secret = RepositoryRegistry(db).get_webhook_secret(*identity) if identity else None

    if not verify_signature(body, signature, secret):
        repo_name = "/".join(identity) if identity else "unknown repository"
        logger.warning(
            f"Rejected webhook for {repo_name}: "
            f"{'missing signature' if not signature else 'signature mismatch or no secret'}"
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )


@router.post("/github")
async def github_webhook(
    request: Request,
    x_github_event: str | None = Header(None, alias="X-GitHub-Event"),
    x_hub_signature: str | None = Header(None, alias="X-Hub-Signature"),
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
    db: Session = Depends(get_db),
    orchestrator: ReviewOrchestrator = Depends(get_review_orchestrator),
) -> dict[str, str | None]:
    """
    Handle GitHub webhook events.

    Returns:
        The outcome status and message; 200 for handled and ignored events

    Raises:
        HTTPException: 401 on signature failure, 500 on unexpected errors
    """
    # Signatures are computed over the raw bytes, never a re-encoded payload
    body = await request.body()
    try:
        payload: dict[str, Any] = json.loads(body)
    except ValueError as err:
        logger.warning("Rejected webhook with a non-JSON body")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        ) from err
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    validate_signature(body, payload, x_hub_signature_256 or x_hub_signature, db)

    event = parse_webhook_event(x_github_event, payload)
    try:
        outcome = await handle_webhook_event(event, orchestrator)
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception(f"Unexpected error handling {x_github_event} webhook")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal error while processing webhook",
        ) from exc

    return {"message": outcome.message, "status": outcome.status, "job_id": outcome.job_id}
