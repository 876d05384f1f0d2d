"""Services for review orchestration and external API interactions."""

from src.services.github_client import (
    GitHubClient,
    GitHubClientError,
    GitHubNotFoundError,
    GitHubTransientError,
)
from src.services.mention_detector import MentionDetector
from src.services.processing_tracker import ProcessingTracker
from src.services.repository_registry import RepositoryRegistry
from src.services.review_orchestrator import ReviewOrchestrator

__all__ = [
    "GitHubClient",
    "GitHubClientError",
    "GitHubNotFoundError",
    "GitHubTransientError",
    "MentionDetector",
    "ProcessingTracker",
    "RepositoryRegistry",
    "ReviewOrchestrator",
]
