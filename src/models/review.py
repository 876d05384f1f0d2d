"""Value types describing review triggers and their outcomes."""

from typing import Literal

from pydantic import BaseModel, Field

from src.models.github_types import CommentType

ReviewStatus = Literal["processed", "skipped", "ineligible", "not_found", "failed"]
EventStatus = Literal[
    "processed", "queued", "skipped", "ignored", "ineligible", "not_found", "failed"
]


class ReviewTrigger(BaseModel):
    """One thing that can request a review: a PR description or a comment."""

    owner: str
    repo: str
    pr_number: int
    comment_id: int | None = None
    comment_type: CommentType = "issue_comment"

    @property
    def kind(self) -> Literal["description", "comment"]:
        """Return which part of the PR requested the review."""
        return "description" if self.comment_id is None else "comment"

    @property
    def pr_key(self) -> str:
        """Human-readable key used for logging and locking."""
        return f"{self.owner}/{self.repo}#{self.pr_number}"

    def describe(self) -> str:
        """Return a log-friendly description of the trigger."""
        if self.comment_id is None:
            return f"{self.pr_key} (description)"
        return f"{self.pr_key} (comment {self.comment_id})"


class ReviewOutcome(BaseModel):
    """Result of one review cycle."""

    status: ReviewStatus
    message: str = ""
    posted_comment_ids: list[int] = Field(default_factory=list)
    is_re_review: bool = False

    @property
    def processed(self) -> bool:
        """Check if a review was posted and recorded."""
        return self.status == "processed"


class EventOutcome(BaseModel):
    """Result of handling one webhook event."""

    status: EventStatus
    message: str = ""
    job_id: str | None = None


class ReconciliationResult(BaseModel):
    """Counters for one poll reconciliation pass."""

    repositories: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    elapsed_seconds: float = 0.0

    def merge(self, other: "ReconciliationResult") -> None:
        """Add another pass' counters into this one."""
        self.repositories += other.repositories
        self.processed += other.processed
        self.skipped += other.skipped
        self.failed += other.failed


class RepositoryTestResult(BaseModel):
    """Connectivity check for one configured repository."""

    repository: str
    connected: bool = False
    pull_requests: int = 0
    mentions: list[int] = Field(default_factory=list)
    message: str = ""
