"""SQLAlchemy model for the per pull request processing ledger."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.models.repository import Base


class PullRequestTracker(Base):
    """
    Idempotency ledger entry for one pull request.

    Records whether the description was reviewed, which trigger comments
    were handled, how many review cycles completed and which comments the
    orchestrator posted itself.
    """

    __tablename__ = "github_pull_request_trackers"
    __table_args__ = (
        UniqueConstraint(
            "owner",
            "repo",
            "pull_request_id",
            name="uq_github_pull_request_trackers_pr",
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    repository_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("github_repositories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # GitHub identifiers
    owner: Mapped[str] = mapped_column(String(255), nullable=False)
    repo: Mapped[str] = mapped_column(String(255), nullable=False)
    pull_request_id: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Pull request number"
    )

    # Processing state
    description_processed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    processed_comment_ids: Mapped[list[int]] = mapped_column(
        JSON, nullable=False, default=lambda: []
    )
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Structure: [{"date": iso8601, "trigger": "description"|"comment", "comment_id": int?}, ...]
    review_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=lambda: []
    )
    ai_review_comment_ids: Mapped[list[int]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [],
        comment="IDs of review comments posted by the orchestrator, oldest first",
    )

    # Timestamps
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_review_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<PullRequestTracker(id={self.id}, "
            f"pr={self.owner}/{self.repo}#{self.pull_request_id}, "
            f"description_processed={self.description_processed}, "
            f"reviews={self.review_count})>"
        )

    def has_processed_comment(self, comment_id: int) -> bool:
        """Check whether a trigger comment was already handled."""
        return comment_id in (self.processed_comment_ids or [])

    def record_review(self, trigger: str, comment_id: int | None = None) -> None:
        """
        Append one completed review cycle to the history.

        Args:
            trigger: Either 'description' or 'comment'
            comment_id: ID of the triggering comment (comment triggers only)
        """
        now = datetime.now(timezone.utc)
        entry: dict[str, Any] = {"date": now.isoformat(), "trigger": trigger}
        if comment_id is not None:
            entry["comment_id"] = comment_id

        # Re-assign lists so SQLAlchemy detects the change on JSON columns
        history = list(self.review_history or [])
        history.append(entry)
        self.review_history = history

        if comment_id is not None and not self.has_processed_comment(comment_id):
            self.processed_comment_ids = [*(self.processed_comment_ids or []), comment_id]

        self.review_count = len(history)
        self.processed_at = now
        self.last_review_at = now

    def add_ai_review_comment(self, comment_id: int) -> None:
        """Remember a comment the orchestrator posted."""
        if comment_id in (self.ai_review_comment_ids or []):
            return
        self.ai_review_comment_ids = [*(self.ai_review_comment_ids or []), comment_id]
