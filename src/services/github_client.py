"""GitHub REST client used by the review orchestrator.

A `GitHubClient` is built per repository from that repository's access
token; no client state is shared between repositories. Every PyGithub
failure surfaces as a typed `GitHubClientError` so callers can tell a
missing resource apart from a transient failure.
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from github import Auth, Github, GithubException, RateLimitExceededException

from src.config.settings import settings
from src.models.github_types import (
    CommentInfo,
    CommentType,
    FileDiff,
    PullRequestInfo,
    RepositoryInfo,
)
from src.utils.comment_splitter import split_comment_body

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class GitHubClientError(Exception):
    """Base class for GitHub API failures."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
        # Parts of a split comment already posted when the error occurred
        self.posted_comment_ids: list[int] = []


class GitHubNotFoundError(GitHubClientError):
    """The requested resource does not exist (404/410)."""


class GitHubTransientError(GitHubClientError):
    """Network failures, timeouts, 5xx, rate limits and other API errors."""


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_comment(comment: Any, comment_type: CommentType) -> CommentInfo:
    user = getattr(comment, "user", None)
    return CommentInfo(
        id=comment.id,
        body=comment.body or "",
        comment_type=comment_type,
        author=getattr(user, "login", None),
        author_type=getattr(user, "type", None),
        created_at=_aware(comment.created_at),
        html_url=getattr(comment, "html_url", None),
    )


def _to_pull_request(pr: Any) -> PullRequestInfo:
    return PullRequestInfo(
        number=pr.number,
        title=pr.title or "",
        body=pr.body or "",
        state=pr.state,
        author=getattr(pr.user, "login", None),
        html_url=pr.html_url,
        head_ref=getattr(pr.head, "ref", None),
        base_ref=getattr(pr.base, "ref", None),
        created_at=_aware(pr.created_at),
        updated_at=_aware(pr.updated_at),
    )


class GitHubClient:
    """Narrow wrapper around PyGithub for one repository credential."""

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str | None = None,
        timeout: int | None = None,
        comment_max_length: int | None = None,
        comment_part_delay: float | None = None,
        rate_limit_threshold: int | None = None,
        rate_limit_max_wait: float | None = None,
        github: Github | None = None,
    ) -> None:
        if not access_token:
            raise ValueError("GitHubClient requires an access token")

        self._github = github or Github(
            auth=Auth.Token(access_token),
            base_url=base_url or settings.github_api_url,
            timeout=timeout or settings.github_request_timeout,
            per_page=100,
        )
        self.comment_max_length = comment_max_length or settings.comment_max_length
        self.comment_part_delay = (
            settings.comment_part_delay_seconds
            if comment_part_delay is None
            else comment_part_delay
        )
        self.rate_limit_threshold = (
            settings.github_rate_limit_threshold
            if rate_limit_threshold is None
            else rate_limit_threshold
        )
        self.rate_limit_max_wait = (
            settings.github_rate_limit_max_wait_seconds
            if rate_limit_max_wait is None
            else rate_limit_max_wait
        )

    def _call(self, description: str, func: Callable[[], T]) -> T:
        """Run one API interaction, translating PyGithub errors."""
        try:
            result = func()
        except RateLimitExceededException as e:
            logger.warning(f"GitHub rate limit exceeded while trying to {description}")
            raise GitHubTransientError(
                f"Rate limit exceeded: {description}", status=e.status
            ) from e
        except GithubException as e:
            if e.status in (404, 410):
                raise GitHubNotFoundError(
                    f"Not found: {description}", status=e.status
                ) from e
            logger.warning(f"GitHub API error {e.status} while trying to {description}")
            raise GitHubTransientError(
                f"GitHub API error {e.status}: {description}", status=e.status
            ) from e
        except OSError as e:
            # requests' connection and timeout errors derive from OSError
            logger.warning(f"Network error while trying to {description}: {e}")
            raise GitHubTransientError(f"Network error: {description}") from e

        self._observe_rate_limit()
        return result

    def _observe_rate_limit(self) -> None:
        """Log the remaining budget and wait for the reset when it runs low."""
        remaining, limit = self._github.rate_limiting
        if remaining < 0:
            return
        logger.debug(f"GitHub rate limit: {remaining}/{limit} remaining")
        if remaining >= self.rate_limit_threshold:
            return

        reset_at = self._github.rate_limiting_resettime
        wait = min(max(reset_at - time.time(), 0.0), self.rate_limit_max_wait)
        logger.warning(
            f"GitHub rate limit low ({remaining}/{limit}); waiting {wait:.0f}s for reset"
        )
        if wait > 0:
            time.sleep(wait)

    def _repo(self, owner: str, repo: str) -> Any:
        return self._github.get_repo(f"{owner}/{repo}", lazy=True)

    def get_repository_info(self, owner: str, repo: str) -> RepositoryInfo:
        """Fetch repository metadata (also used as a connectivity check)."""

        def fetch() -> RepositoryInfo:
            repository = self._github.get_repo(f"{owner}/{repo}")
            return RepositoryInfo(
                full_name=repository.full_name,
                private=bool(repository.private),
                default_branch=repository.default_branch,
                open_issues_count=repository.open_issues_count or 0,
                topics=list(repository.topics or []),
            )

        return self._call(f"fetch repository {owner}/{repo}", fetch)

    def get_pull_request(self, owner: str, repo: str, pr_number: int) -> PullRequestInfo:
        """Fetch one pull request."""
        return self._call(
            f"fetch {owner}/{repo}#{pr_number}",
            lambda: _to_pull_request(self._repo(owner, repo).get_pull(pr_number)),
        )

    def list_open_pull_requests(self, owner: str, repo: str) -> list[PullRequestInfo]:
        """List open pull requests, most recently updated first."""

        def fetch() -> list[PullRequestInfo]:
            pulls = self._repo(owner, repo).get_pulls(
                state="open", sort="updated", direction="desc"
            )
            return [_to_pull_request(pr) for pr in pulls]

        pull_requests = self._call(f"list open pull requests of {owner}/{repo}", fetch)
        return sorted(
            pull_requests, key=lambda pr: pr.updated_at or _EPOCH, reverse=True
        )

    def list_comments(self, owner: str, repo: str, pr_number: int) -> list[CommentInfo]:
        """
        List conversation and inline review comments of a pull request.

        Returns:
            Both kinds merged, newest first, each tagged with its type
        """

        def fetch() -> list[CommentInfo]:
            pr = self._repo(owner, repo).get_pull(pr_number)
            comments = [_to_comment(c, "issue_comment") for c in pr.get_issue_comments()]
            comments += [
                _to_comment(c, "review_comment") for c in pr.get_review_comments()
            ]
            return comments

        comments = self._call(f"list comments of {owner}/{repo}#{pr_number}", fetch)
        return sorted(
            comments, key=lambda c: (c.created_at or _EPOCH, c.id), reverse=True
        )

    def get_comment(
        self,
        owner: str,
        repo: str,
        comment_id: int,
        comment_type: CommentType = "issue_comment",
    ) -> CommentInfo:
        """Fetch a single comment by ID."""

        def fetch() -> CommentInfo:
            repository = self._repo(owner, repo)
            if comment_type == "review_comment":
                return _to_comment(repository.get_pulls_comment(comment_id), comment_type)
            return _to_comment(repository.get_issue_comment(comment_id), comment_type)

        return self._call(f"fetch comment {comment_id} in {owner}/{repo}", fetch)

    def get_pull_request_diff(self, owner: str, repo: str, pr_number: int) -> list[FileDiff]:
        """List the files changed by a pull request with their patches."""

        def fetch() -> list[FileDiff]:
            pr = self._repo(owner, repo).get_pull(pr_number)
            return [
                FileDiff(
                    filename=f.filename,
                    status=f.status,
                    additions=f.additions,
                    deletions=f.deletions,
                    changes=f.changes,
                    patch=f.patch or "",
                    previous_filename=getattr(f, "previous_filename", None),
                )
                for f in pr.get_files()
            ]

        return self._call(f"fetch diff of {owner}/{repo}#{pr_number}", fetch)

    def post_comment(
        self, owner: str, repo: str, pr_number: int, body: str
    ) -> list[CommentInfo]:
        """
        Post a conversation comment, splitting oversized bodies.

        Args:
            owner: Repository owner
            repo: Repository name
            pr_number: Pull request number
            body: Markdown body

        Returns:
            The posted comments in order; a single element unless split
        """
        parts = split_comment_body(body, self.comment_max_length)
        if len(parts) > 1:
            logger.info(
                f"Comment for {owner}/{repo}#{pr_number} is {len(body)} characters, "
                f"posting in {len(parts)} parts"
            )

        pr = self._call(
            f"fetch {owner}/{repo}#{pr_number}",
            lambda: self._repo(owner, repo).get_pull(pr_number),
        )
        posted: list[CommentInfo] = []
        for index, part in enumerate(parts, start=1):
            if index > 1 and self.comment_part_delay > 0:
                time.sleep(self.comment_part_delay)
            try:
                comment = self._call(
                    f"post comment part {index}/{len(parts)} on {owner}/{repo}#{pr_number}",
                    lambda part=part: pr.create_issue_comment(part),
                )
            except GitHubClientError as e:
                if posted:
                    e.posted_comment_ids = [c.id for c in posted]
                    logger.warning(
                        f"Posting part {index}/{len(parts)} on {owner}/{repo}#{pr_number} failed; "
                        f"orphaned partial review comments: {e.posted_comment_ids}"
                    )
                raise
            posted.append(_to_comment(comment, "issue_comment"))

        logger.info(
            f"Posted {len(posted)} comment(s) on {owner}/{repo}#{pr_number}: "
            f"{[c.id for c in posted]}"
        )
        return posted
