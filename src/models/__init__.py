"""Data models for the pull request review orchestrator."""

from .events import (
    CommentEvent,
    IgnoredEvent,
    PingEvent,
    PullRequestEvent,
    parse_webhook_event,
)
from .feedback import (
    EvaluationResult,
    ExtractedFeedback,
    ReviewRequest,
    ReviewResult,
)
from .github_types import CommentInfo, FileDiff, PullRequestInfo, RepositoryInfo
from .repository import Base, RepositoryConfig
from .review import (
    EventOutcome,
    ReconciliationResult,
    RepositoryTestResult,
    ReviewOutcome,
    ReviewTrigger,
)
from .tracker import PullRequestTracker

__all__ = [
    "Base",
    "RepositoryConfig",
    "PullRequestTracker",
    "PullRequestInfo",
    "CommentInfo",
    "FileDiff",
    "RepositoryInfo",
    "ExtractedFeedback",
    "EvaluationResult",
    "ReviewRequest",
    "ReviewResult",
    "PingEvent",
    "PullRequestEvent",
    "CommentEvent",
    "IgnoredEvent",
    "parse_webhook_event",
    "ReviewTrigger",
    "ReviewOutcome",
    "EventOutcome",
    "ReconciliationResult",
    "RepositoryTestResult",
]
