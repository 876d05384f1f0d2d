"""Typed GitHub webhook events.

Webhook payloads are parsed once into a closed set of event models. Event
types the orchestrator does not understand become an `IgnoredEvent`
instead of falling through an `if`/`elif` chain.
"""

import logging
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from src.models.github_types import CommentType

logger = logging.getLogger(__name__)

# Pull request actions that may carry a review request in the description
PULL_REQUEST_REVIEW_ACTIONS = frozenset({"opened", "reopened", "edited", "synchronize"})
COMMENT_REVIEW_ACTIONS = frozenset({"created"})


class PingEvent(BaseModel):
    """Webhook setup verification."""

    kind: Literal["ping"] = "ping"
    zen: str | None = None


class PullRequestEvent(BaseModel):
    """A `pull_request` event; its description may request a review."""

    kind: Literal["pull_request"] = "pull_request"
    action: str
    owner: str
    repo: str
    pr_number: int
    body: str = ""
    state: str = "open"

    @property
    def is_review_relevant(self) -> bool:
        """Check if the action can start a description review."""
        return self.action in PULL_REQUEST_REVIEW_ACTIONS and self.state == "open"


class CommentEvent(BaseModel):
    """An `issue_comment` (on a PR) or `pull_request_review_comment` event."""

    kind: Literal["comment"] = "comment"
    action: str
    owner: str
    repo: str
    pr_number: int
    comment_id: int
    body: str = ""
    comment_type: CommentType = "issue_comment"
    author: str | None = None
    author_type: str | None = None

    @property
    def is_review_relevant(self) -> bool:
        """Only newly created comments can request a review."""
        return self.action in COMMENT_REVIEW_ACTIONS


class IgnoredEvent(BaseModel):
    """Any event the orchestrator does not act on."""

    kind: Literal["ignored"] = "ignored"
    event_type: str | None = None
    reason: str = "unsupported event"


WebhookEvent = Annotated[
    PingEvent | PullRequestEvent | CommentEvent | IgnoredEvent,
    Field(discriminator="kind"),
]


def repository_identity(payload: dict[str, Any]) -> tuple[str, str] | None:
    """Return (owner, name) of the payload's repository, if present."""
    repository = payload.get("repository") or {}
    owner = (repository.get("owner") or {}).get("login")
    name = repository.get("name")
    if owner and name:
        return owner, name

    full_name = repository.get("full_name") or ""
    if full_name.count("/") == 1:
        owner, name = full_name.split("/")
        if owner and name:
            return owner, name
    return None


def parse_webhook_event(
    event_type: str | None, payload: dict[str, Any]
) -> PingEvent | PullRequestEvent | CommentEvent | IgnoredEvent:
    """
    Convert a raw webhook envelope into a typed event.

    Args:
        event_type: Value of the X-GitHub-Event header
        payload: Decoded JSON body

    Returns:
        One of the event models; malformed or unsupported payloads map to
        IgnoredEvent with a reason.
    """
    if event_type == "ping":
        return PingEvent(zen=payload.get("zen"))

    if event_type not in {"pull_request", "issue_comment", "pull_request_review_comment"}:
        return IgnoredEvent(event_type=event_type, reason=f"event {event_type} not supported")

    identity = repository_identity(payload)
    if identity is None:
        return IgnoredEvent(event_type=event_type, reason="repository missing from payload")
    owner, repo = identity
    action = payload.get("action") or ""

    if event_type == "pull_request":
        pr_data = payload.get("pull_request") or {}
        pr_number = pr_data.get("number") or payload.get("number")
        if not pr_number:
            return IgnoredEvent(event_type=event_type, reason="pull request number missing")
        return PullRequestEvent(
            action=action,
            owner=owner,
            repo=repo,
            pr_number=pr_number,
            body=pr_data.get("body") or "",
            state=pr_data.get("state") or "open",
        )

    comment = payload.get("comment") or {}
    if event_type == "issue_comment":
        issue = payload.get("issue") or {}
        if "pull_request" not in issue:
            return IgnoredEvent(event_type=event_type, reason="issue comment not on a pull request")
        pr_number = issue.get("number")
        comment_type: CommentType = "issue_comment"
    else:
        pr_number = (payload.get("pull_request") or {}).get("number")
        comment_type = "review_comment"

    comment_id = comment.get("id")
    if not pr_number or not comment_id:
        return IgnoredEvent(event_type=event_type, reason="comment payload incomplete")

    user = comment.get("user") or {}
    return CommentEvent(
        action=action,
        owner=owner,
        repo=repo,
        pr_number=pr_number,
        comment_id=comment_id,
        body=comment.get("body") or "",
        comment_type=comment_type,
        author=user.get("login"),
        author_type=user.get("type"),
    )
