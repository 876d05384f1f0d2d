"""GitHub-specific type definitions."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

CommentType = Literal["issue_comment", "review_comment"]


class PullRequestInfo(BaseModel):
    """Pull request fields the orchestrator relies on."""

    number: int
    title: str = ""
    body: str = ""
    state: str = "open"
    author: str | None = None
    html_url: str | None = None
    head_ref: str | None = None
    base_ref: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        """Check if the pull request is still open.

        Returns:
            True if state is "open"
        """
        return self.state == "open"


class CommentInfo(BaseModel):
    """A pull request comment (conversation or inline review comment)."""

    id: int
    body: str = ""
    comment_type: CommentType = "issue_comment"
    author: str | None = None
    author_type: str | None = None
    created_at: datetime | None = None
    html_url: str | None = None

    @property
    def is_bot(self) -> bool:
        """Check if the comment was written by a bot account."""
        return self.author_type == "Bot"


class FileDiff(BaseModel):
    """File diff information from a pull request.

    Represents changes to a single file in a PR, including the diff patch
    and metadata about additions/deletions.
    """

    filename: str
    status: str = "modified"
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: str = ""
    previous_filename: str | None = None

    @property
    def is_deleted_file(self) -> bool:
        """Check if this file was deleted.

        Returns:
            True if the file status is "removed"
        """
        return self.status == "removed"


class RepositoryInfo(BaseModel):
    """Minimal repository metadata used by connectivity checks."""

    full_name: str
    private: bool = False
    default_branch: str | None = None
    open_issues_count: int = 0
    topics: list[str] = Field(default_factory=list)
