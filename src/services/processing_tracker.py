"""Idempotency ledger for review triggers.

One `PullRequestTracker` row per pull request records which triggers were
already reviewed. Mutations lock the row (or create it through an insert
guarded by the unique constraint) so concurrent writers do not lose
updates. The caller owns the transaction and commits.
"""

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.models.tracker import PullRequestTracker

logger = logging.getLogger(__name__)


class ProcessingTracker:
    """Query and update the per pull request processing ledger."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _select(self, owner: str, repo: str, pr_number: int):
        return select(PullRequestTracker).where(
            func.lower(PullRequestTracker.owner) == owner.lower(),
            func.lower(PullRequestTracker.repo) == repo.lower(),
            PullRequestTracker.pull_request_id == pr_number,
        )

    def get_record(
        self, owner: str, repo: str, pr_number: int
    ) -> PullRequestTracker | None:
        """Return the tracker row for a pull request, if one exists."""
        return self.session.scalars(self._select(owner, repo, pr_number)).first()

    def _lock_record(
        self, owner: str, repo: str, pr_number: int
    ) -> PullRequestTracker | None:
        stmt = self._select(owner, repo, pr_number).with_for_update()
        return self.session.scalars(stmt).first()

    def _get_or_create_locked(
        self, owner: str, repo: str, pr_number: int, repository_id: int
    ) -> PullRequestTracker:
        """Return the locked row for a pull request, creating it if needed."""
        record = self._lock_record(owner, repo, pr_number)
        if record is not None:
            return record

        try:
            with self.session.begin_nested():
                record = PullRequestTracker(
                    repository_id=repository_id,
                    owner=owner,
                    repo=repo,
                    pull_request_id=pr_number,
                    description_processed=False,
                    processed_comment_ids=[],
                    review_count=0,
                    review_history=[],
                    ai_review_comment_ids=[],
                )
                self.session.add(record)
                self.session.flush()
            logger.debug(f"Created tracker record for {owner}/{repo}#{pr_number}")
            return record
        except IntegrityError:
            # Another writer created the row first
            logger.info(
                f"Tracker record for {owner}/{repo}#{pr_number} created concurrently, reusing it"
            )
            record = self._lock_record(owner, repo, pr_number)
            if record is None:
                raise
            return record

    def is_description_processed(self, owner: str, repo: str, pr_number: int) -> bool:
        """Check whether the PR description already triggered a review."""
        record = self.get_record(owner, repo, pr_number)
        return bool(record and record.description_processed)

    def is_comment_processed(
        self, owner: str, repo: str, pr_number: int, comment_id: int
    ) -> bool:
        """Check whether a comment already triggered a review."""
        record = self.get_record(owner, repo, pr_number)
        return bool(record and record.has_processed_comment(comment_id))

    def mark_description_processed(
        self, owner: str, repo: str, pr_number: int, repository_id: int
    ) -> PullRequestTracker:
        """Record a completed review triggered by the PR description."""
        record = self._get_or_create_locked(owner, repo, pr_number, repository_id)
        record.description_processed = True
        record.record_review("description")
        self.session.flush()
        logger.info(
            f"Marked description of {owner}/{repo}#{pr_number} processed "
            f"(review #{record.review_count})"
        )
        return record

    def mark_comment_processed(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        comment_id: int,
        repository_id: int,
    ) -> PullRequestTracker:
        """Record a completed review triggered by a comment."""
        record = self._get_or_create_locked(owner, repo, pr_number, repository_id)
        record.record_review("comment", comment_id)
        self.session.flush()
        logger.info(
            f"Marked comment {comment_id} on {owner}/{repo}#{pr_number} processed "
            f"(review #{record.review_count})"
        )
        return record

    def record_posted_review_comment(
        self, owner: str, repo: str, pr_number: int, comment_id: int
    ) -> None:
        """Remember the ID of a review comment the orchestrator posted."""
        record = self._lock_record(owner, repo, pr_number)
        if record is None:
            logger.warning(
                f"No tracker record for {owner}/{repo}#{pr_number}; "
                f"cannot record review comment {comment_id}"
            )
            return
        record.add_ai_review_comment(comment_id)
        self.session.flush()

    def get_review_history(
        self, owner: str, repo: str, pr_number: int
    ) -> list[dict[str, Any]]:
        """Return the review history entries for a pull request, oldest first."""
        record = self.get_record(owner, repo, pr_number)
        return list(record.review_history or []) if record else []

    def latest_review_comment_id(
        self, owner: str, repo: str, pr_number: int
    ) -> int | None:
        """Return the ID of the newest review comment posted, if any."""
        record = self.get_record(owner, repo, pr_number)
        if record is None or not record.ai_review_comment_ids:
            return None
        return record.ai_review_comment_ids[-1]
