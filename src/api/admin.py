"""Operator endpoints for triggering reviews by hand."""

import hmac
import logging
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from src.config.settings import settings
from src.models.github_types import CommentType
from src.models.review import ReconciliationResult, RepositoryTestResult, ReviewOutcome
from src.services.review_orchestrator import ReviewOrchestrator

logger = logging.getLogger(__name__)


def require_admin_token(authorization: str | None = Header(None)) -> None:
    """Check the bearer token sent to /admin routes."""
    expected = settings.admin_api_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API token not configured",
        )

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(
        token.strip().encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("Rejected admin request with missing or invalid token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
            headers={"WWW-Authenticate": "Bearer"},
        )


@lru_cache(maxsize=1)
def get_admin_orchestrator() -> ReviewOrchestrator:
    """FastAPI dependency: orchestrator that reviews inline."""
    return ReviewOrchestrator()


router = APIRouter(
    prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_token)]
)


@router.post("/pulls/{owner}/{repo}/{number}/check")
async def check_pull_request(
    owner: str,
    repo: str,
    number: int,
    comment_id: int | None = Query(None, description="Review this comment instead"),
    comment_type: CommentType = Query("issue_comment"),
    orchestrator: ReviewOrchestrator = Depends(get_admin_orchestrator),
) -> ReviewOutcome:
    """Run one review cycle now."""
    logger.info(f"Manual review requested for {owner}/{repo}#{number}")
    return await orchestrator.check_single_pull_request(
        owner, repo, number, comment_id, comment_type
    )


@router.post("/reconcile")
async def reconcile(
    orchestrator: ReviewOrchestrator = Depends(get_admin_orchestrator),
) -> ReconciliationResult:
    """Run a full poll reconciliation pass now."""
    logger.info("Manual reconciliation requested")
    return await orchestrator.check_existing_pull_requests()


@router.post("/repositories/{repository_id}/test")
async def test_repository(
    repository_id: int,
    orchestrator: ReviewOrchestrator = Depends(get_admin_orchestrator),
) -> RepositoryTestResult:
    """Check connectivity to one configured repository."""
    try:
        return await orchestrator.test_repository(repository_id)
    except LookupError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(err)
        ) from err


@router.get("/pulls/{owner}/{repo}/{number}/history")
async def review_history(
    owner: str,
    repo: str,
    number: int,
    orchestrator: ReviewOrchestrator = Depends(get_admin_orchestrator),
) -> dict[str, Any]:
    """Return the tracker state of one pull request."""
    return orchestrator.get_review_history(owner, repo, number)
