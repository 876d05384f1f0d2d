"""Review orchestration: decide, review, post and record.

Webhook events and the periodic poll both end in
`ReviewOrchestrator.check_single_pull_request`, so one idempotency gate
(the processing tracker) covers every path. A review cycle for one pull
request runs under a per pull request lock:

    eligibility -> live PR state -> re-review context -> AI review
    -> compose -> post -> mark processed and record posted comment IDs

Any failure before posting leaves the tracker untouched, so the next
webhook delivery or poll pass retries the same work.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from sqlalchemy.orm import Session

from src.config.settings import settings
from src.models.events import CommentEvent, IgnoredEvent, PingEvent, PullRequestEvent
from src.models.feedback import ExtractedFeedback, ReviewRequest, ReviewResult
from src.models.github_types import CommentInfo, PullRequestInfo
from src.models.repository import RepositoryConfig
from src.models.review import (
    EventOutcome,
    ReconciliationResult,
    RepositoryTestResult,
    ReviewOutcome,
    ReviewTrigger,
)
from src.services.comment_composer import compose_review_comment
from src.services.feedback_extractor import (
    extract_feedback,
    is_continuation_part,
    join_comment_parts,
)
from src.services.github_client import (
    GitHubClient,
    GitHubClientError,
    GitHubNotFoundError,
    GitHubTransientError,
)
from src.services.mention_detector import MentionDetector
from src.services.processing_tracker import ProcessingTracker
from src.services.progress_evaluator import evaluate_improvements
from src.services.repository_registry import RepositoryRegistry
from src.utils.comment_state import has_review_marker
from src.utils.filters import render_diff, select_reviewable_diffs

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionFactory = Callable[[], Session]
ClientFactory = Callable[[RepositoryConfig], GitHubClient]
Reviewer = Callable[[ReviewRequest], Awaitable[ReviewResult]]
Dispatcher = Callable[[ReviewTrigger], EventOutcome]

AnyEvent = PingEvent | PullRequestEvent | CommentEvent | IgnoredEvent


def default_client_factory(repository: RepositoryConfig) -> GitHubClient:
    """Build a GitHub client from the repository's own access token."""
    if not repository.has_credentials:
        raise ValueError(f"Repository {repository.full_name} has no access token")
    return GitHubClient(repository.access_token)  # type: ignore[arg-type]


async def default_reviewer(request: ReviewRequest) -> ReviewResult:
    """Run the pydantic-ai review agent."""
    # Deferred import keeps the model client out of processes that never review
    from src.agents.code_reviewer import run_code_review

    return await run_code_review(request)


def is_own_comment(
    comment_id: int | None,
    author: str | None,
    author_type: str | None,
    body: str | None,
    ai_comment_ids: list[int] | None = None,
) -> bool:
    """Check whether a comment was written by the orchestrator or another bot."""
    if author_type == "Bot":
        return True
    if settings.github_bot_login and author and author.lower() == settings.github_bot_login.lower():
        return True
    if comment_id is not None and comment_id in (ai_comment_ids or []):
        return True
    return has_review_marker(body) or is_continuation_part(body)


class ReviewOrchestrator:
    """Turns review triggers into posted reviews, exactly once per trigger."""

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        client_factory: ClientFactory | None = None,
        reviewer: Reviewer | None = None,
        mention_detector: MentionDetector | None = None,
        dispatcher: Dispatcher | None = None,
    ) -> None:
        if session_factory is None:
            from src.database.db import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory
        self.client_factory = client_factory or default_client_factory
        self.reviewer = reviewer or default_reviewer
        self.mention_detector = mention_detector or MentionDetector()
        self.dispatcher = dispatcher
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @staticmethod
    async def _call(func: Callable[..., T], *args: Any) -> T:
        """Run a blocking GitHub client call off the event loop."""
        return await asyncio.to_thread(func, *args)

    @asynccontextmanager
    async def _pull_request_lock(self, key: str) -> AsyncIterator[None]:
        """Serialise review cycles of one pull request; idle locks are dropped."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def _canonical_name(self, owner: str, repo: str) -> tuple[str, str]:
        """Return owner and name as stored in the registry, if registered."""
        with self.session_factory() as session:
            repository = RepositoryRegistry(session).find(owner, repo)
            if repository is None:
                return owner, repo
            return repository.owner, repository.name

    # ------------------------------------------------------------------
    # Webhook path
    # ------------------------------------------------------------------

    def triage(self, event: AnyEvent) -> ReviewTrigger | EventOutcome:
        """
        Decide whether an event should start a review, without remote calls.

        Args:
            event: A parsed webhook event

        Returns:
            The trigger to review, or the outcome explaining why not
        """
        if isinstance(event, PingEvent):
            return EventOutcome(status="processed", message="pong")
        if isinstance(event, IgnoredEvent):
            return EventOutcome(status="ignored", message=event.reason)

        if not event.is_review_relevant:
            return EventOutcome(
                status="ignored", message=f"action '{event.action}' does not trigger reviews"
            )

        if isinstance(event, CommentEvent):
            if is_own_comment(event.comment_id, event.author, event.author_type, event.body):
                return EventOutcome(status="ignored", message="comment written by a bot")
            trigger = ReviewTrigger(
                owner=event.owner,
                repo=event.repo,
                pr_number=event.pr_number,
                comment_id=event.comment_id,
                comment_type=event.comment_type,
            )
        else:
            trigger = ReviewTrigger(owner=event.owner, repo=event.repo, pr_number=event.pr_number)

        if not self.mention_detector.has_mention(event.body):
            return EventOutcome(status="ignored", message="no review mention")

        with self.session_factory() as session:
            tracker = ProcessingTracker(session)
            if self._already_processed(tracker, trigger):
                logger.info(f"Trigger {trigger.describe()} already processed, skipping")
                return EventOutcome(status="skipped", message="already processed")

            repository = RepositoryRegistry(session).find(trigger.owner, trigger.repo)
            if repository is None or not repository.is_eligible:
                logger.info(f"Repository {trigger.owner}/{trigger.repo} not eligible for reviews")
                return EventOutcome(status="ineligible", message="repository not eligible")

        return trigger

    async def handle_event(self, event: AnyEvent) -> EventOutcome:
        """Triage an event and run (or dispatch) the review it requests."""
        decision = self.triage(event)
        if isinstance(decision, EventOutcome):
            logger.debug(f"Event {event.kind} not reviewed: {decision.status} ({decision.message})")
            return decision

        if self.dispatcher is not None:
            return self.dispatcher(decision)

        outcome = await self.check_single_pull_request(
            decision.owner,
            decision.repo,
            decision.pr_number,
            decision.comment_id,
            decision.comment_type,
        )
        return EventOutcome(status=outcome.status, message=outcome.message)

    # ------------------------------------------------------------------
    # Review cycle
    # ------------------------------------------------------------------

    @staticmethod
    def _already_processed(tracker: ProcessingTracker, trigger: ReviewTrigger) -> bool:
        if trigger.comment_id is None:
            return tracker.is_description_processed(trigger.owner, trigger.repo, trigger.pr_number)
        return tracker.is_comment_processed(
            trigger.owner, trigger.repo, trigger.pr_number, trigger.comment_id
        )

    async def check_single_pull_request(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        comment_id: int | None = None,
        comment_type: str = "issue_comment",
    ) -> ReviewOutcome:
        """
        Run one review cycle for a pull request trigger.

        Args:
            owner: Repository owner
            repo: Repository name
            pr_number: Pull request number
            comment_id: Triggering comment, or None for the description
            comment_type: "issue_comment" or "review_comment"

        Returns:
            The cycle outcome; the tracker is only updated when processed
        """
        # Webhook payloads may differ in case from the registry row
        owner, repo = self._canonical_name(owner, repo)
        trigger = ReviewTrigger(
            owner=owner,
            repo=repo,
            pr_number=pr_number,
            comment_id=comment_id,
            comment_type=comment_type,
        )
        async with self._pull_request_lock(trigger.pr_key):
            return await self._run_review_cycle(trigger)

    async def _run_review_cycle(self, trigger: ReviewTrigger) -> ReviewOutcome:
        owner, repo, pr_number = trigger.owner, trigger.repo, trigger.pr_number

        with self.session_factory() as session:
            tracker = ProcessingTracker(session)
            if self._already_processed(tracker, trigger):
                logger.info(f"Trigger {trigger.describe()} already processed, skipping")
                return ReviewOutcome(status="skipped", message="already processed")

            repository = RepositoryRegistry(session).find(owner, repo)
            if repository is None or not repository.is_eligible:
                logger.info(f"Repository {owner}/{repo} not eligible, skipping {trigger.describe()}")
                return ReviewOutcome(status="ineligible", message="repository not eligible")

            record = tracker.get_record(owner, repo, pr_number)
            review_count = record.review_count if record else 0
            ai_comment_ids = list(record.ai_review_comment_ids or []) if record else []
            if trigger.comment_id is not None and trigger.comment_id in ai_comment_ids:
                return ReviewOutcome(status="skipped", message="comment is an AI review")

            repository_id = repository.id
            client = self.client_factory(repository)

        is_re_review = review_count > 0
        logger.info(
            f"Starting {'re-review' if is_re_review else 'review'} of {trigger.describe()}"
        )

        try:
            pr = await self._call(client.get_pull_request, owner, repo, pr_number)
            if not pr.is_open:
                logger.info(f"{trigger.pr_key} is {pr.state}, aborting review")
                return ReviewOutcome(status="skipped", message=f"pull request is {pr.state}")

            trigger_text = pr.body
            if trigger.comment_id is not None:
                comment = await self._call(
                    client.get_comment, owner, repo, trigger.comment_id, trigger.comment_type
                )
                if is_own_comment(
                    comment.id, comment.author, comment.author_type, comment.body, ai_comment_ids
                ):
                    return ReviewOutcome(status="skipped", message="comment written by a bot")
                trigger_text = comment.body

            previous_feedback: list[ExtractedFeedback] = []
            previous_body: str | None = None
            if is_re_review:
                previous_body = await self._load_previous_review(client, trigger, ai_comment_ids)
                previous_feedback = extract_feedback(previous_body)
                logger.info(
                    f"Recovered {len(previous_feedback)} previous feedback items for {trigger.pr_key}"
                )

            request = await self._build_request(
                client, pr, trigger, trigger_text, review_count, previous_feedback, previous_body
            )
            result = await self.reviewer(request)

            evaluations = []
            if is_re_review and previous_feedback:
                evaluations = evaluate_improvements(
                    previous_feedback, result.strength_texts(), result.issue_texts()
                )
            body = compose_review_comment(
                result, review_number=review_count + 1, evaluations=evaluations
            )
            posted = await self._call(client.post_comment, owner, repo, pr_number, body)
        except GitHubNotFoundError as e:
            logger.warning(f"Review of {trigger.describe()} stopped: {e}")
            return ReviewOutcome(status="not_found", message=str(e))
        except GitHubTransientError as e:
            logger.warning(f"Review of {trigger.describe()} failed, will retry on next trigger: {e}")
            return ReviewOutcome(status="failed", message=str(e))
        except Exception as e:
            logger.exception(f"Review of {trigger.describe()} failed")
            return ReviewOutcome(status="failed", message=f"review failed: {type(e).__name__}")

        posted_ids = [c.id for c in posted]
        try:
            with self.session_factory() as session:
                tracker = ProcessingTracker(session)
                if trigger.comment_id is None:
                    tracker.mark_description_processed(owner, repo, pr_number, repository_id)
                else:
                    tracker.mark_comment_processed(
                        owner, repo, pr_number, trigger.comment_id, repository_id
                    )
                for posted_id in posted_ids:
                    tracker.record_posted_review_comment(owner, repo, pr_number, posted_id)
                session.commit()
        except Exception:
            logger.exception(
                f"Posted review {posted_ids} for {trigger.describe()} but could not record it"
            )
            return ReviewOutcome(
                status="failed",
                message="review posted but tracker update failed",
                posted_comment_ids=posted_ids,
                is_re_review=is_re_review,
            )

        logger.info(f"Completed review of {trigger.describe()}, posted {posted_ids}")
        return ReviewOutcome(
            status="processed",
            message="review posted",
            posted_comment_ids=posted_ids,
            is_re_review=is_re_review,
        )

    async def _build_request(
        self,
        client: GitHubClient,
        pr: PullRequestInfo,
        trigger: ReviewTrigger,
        trigger_text: str,
        review_count: int,
        previous_feedback: list[ExtractedFeedback],
        previous_body: str | None,
    ) -> ReviewRequest:
        diffs = await self._call(
            client.get_pull_request_diff, trigger.owner, trigger.repo, trigger.pr_number
        )
        selected = select_reviewable_diffs(diffs, settings.max_files_per_review)
        logger.debug(f"Selected {len(selected)}/{len(diffs)} files of {trigger.pr_key}")
        return ReviewRequest(
            owner=trigger.owner,
            repo=trigger.repo,
            pr_number=trigger.pr_number,
            title=pr.title,
            description=pr.body,
            author=pr.author,
            diff=render_diff(selected, settings.max_patch_chars),
            changed_files=[d.filename for d in selected],
            trigger_text=trigger_text,
            is_re_review=review_count > 0,
            review_number=review_count + 1,
            previous_feedback=previous_feedback,
            previous_comment_body=previous_body,
        )

    async def _load_previous_review(
        self, client: GitHubClient, trigger: ReviewTrigger, ai_comment_ids: list[int]
    ) -> str | None:
        """Return the body of the latest posted review, split parts joined."""
        owner, repo = trigger.owner, trigger.repo
        bodies: list[str] = []
        try:
            for comment_id in reversed(ai_comment_ids):
                comment = await self._call(client.get_comment, owner, repo, comment_id)
                bodies.insert(0, comment.body)
                if not is_continuation_part(comment.body):
                    break
        except GitHubNotFoundError:
            logger.warning(f"Recorded review comment of {trigger.pr_key} no longer exists")
            bodies = []
        if bodies:
            return join_comment_parts(bodies)

        # No usable recorded ID: look for the newest comment carrying the marker
        comments = await self._call(client.list_comments, owner, repo, trigger.pr_number)
        return self._find_latest_review(comments)

    @staticmethod
    def _find_latest_review(comments: list[CommentInfo]) -> str | None:
        """Find the newest review in a newest-first comment list."""
        for index, comment in enumerate(comments):
            if comment.comment_type != "issue_comment" or not has_review_marker(comment.body):
                continue
            bodies = [comment.body]
            # Continuation parts were posted after the first part
            for newer in reversed(comments[:index]):
                if not is_continuation_part(newer.body):
                    break
                bodies.append(newer.body)
            return join_comment_parts(bodies)
        return None

    # ------------------------------------------------------------------
    # Poll reconciliation
    # ------------------------------------------------------------------

    async def check_existing_pull_requests(self) -> ReconciliationResult:
        """
        Reconcile every pollable repository with the tracker.

        Repositories may run concurrently; pull requests of one repository
        run sequentially. At most one trigger is attempted per pull request.
        """
        started = time.monotonic()
        with self.session_factory() as session:
            repositories = RepositoryRegistry(session).list_pollable()

        logger.info(f"Starting reconciliation over {len(repositories)} repositories")
        semaphore = asyncio.Semaphore(max(1, settings.poll_repository_concurrency))

        async def reconcile(repository: RepositoryConfig) -> ReconciliationResult:
            async with semaphore:
                return await self._reconcile_repository(repository)

        totals = ReconciliationResult()
        for partial in await asyncio.gather(*(reconcile(r) for r in repositories)):
            totals.merge(partial)
        totals.elapsed_seconds = round(time.monotonic() - started, 3)

        logger.info(
            f"Reconciliation finished: {totals.processed} processed, {totals.skipped} skipped, "
            f"{totals.failed} failed in {totals.elapsed_seconds}s"
        )
        return totals

    async def _reconcile_repository(self, repository: RepositoryConfig) -> ReconciliationResult:
        result = ReconciliationResult(repositories=1)
        owner, name = repository.owner, repository.name
        try:
            client = self.client_factory(repository)
            pull_requests = await self._call(client.list_open_pull_requests, owner, name)
        except (GitHubClientError, ValueError) as e:
            logger.warning(f"Could not list pull requests of {owner}/{name}: {e}")
            result.failed += 1
            return result

        for pr in pull_requests:
            result.merge(await self._reconcile_pull_request(client, owner, name, pr))
        return result

    async def _reconcile_pull_request(
        self, client: GitHubClient, owner: str, repo: str, pr: PullRequestInfo
    ) -> ReconciliationResult:
        result = ReconciliationResult()
        with self.session_factory() as session:
            record = ProcessingTracker(session).get_record(owner, repo, pr.number)
            description_processed = bool(record and record.description_processed)
            processed_ids = set(record.processed_comment_ids or []) if record else set()
            ai_comment_ids = list(record.ai_review_comment_ids or []) if record else []

        if self.mention_detector.has_mention(pr.body):
            if description_processed:
                result.skipped += 1
            else:
                outcome = await self.check_single_pull_request(owner, repo, pr.number)
                self._tally(result, outcome)
                return result

        try:
            comments = await self._call(client.list_comments, owner, repo, pr.number)
        except GitHubClientError as e:
            logger.warning(f"Could not list comments of {owner}/{repo}#{pr.number}: {e}")
            result.failed += 1
            return result

        for comment in comments:
            if is_own_comment(
                comment.id, comment.author, comment.author_type, comment.body, ai_comment_ids
            ):
                continue
            if not self.mention_detector.has_mention(comment.body):
                continue
            if comment.id in processed_ids:
                result.skipped += 1
                continue
            outcome = await self.check_single_pull_request(
                owner, repo, pr.number, comment.id, comment.comment_type
            )
            self._tally(result, outcome)
            break
        return result

    @staticmethod
    def _tally(result: ReconciliationResult, outcome: ReviewOutcome) -> None:
        if outcome.status == "processed":
            result.processed += 1
        elif outcome.status == "failed":
            result.failed += 1
        else:
            result.skipped += 1

    # ------------------------------------------------------------------
    # Operator helpers
    # ------------------------------------------------------------------

    async def test_repository(self, repository_id: int) -> RepositoryTestResult:
        """Check connectivity to a repository and list PRs requesting a review."""
        with self.session_factory() as session:
            repository = RepositoryRegistry(session).get(repository_id)
            if repository is None:
                raise LookupError(f"Repository {repository_id} not found")
            name = repository.full_name
            if not repository.has_credentials:
                return RepositoryTestResult(repository=name, message="no access token configured")
            client = self.client_factory(repository)
            owner, repo = repository.owner, repository.name

        try:
            await self._call(client.get_repository_info, owner, repo)
            pull_requests = await self._call(client.list_open_pull_requests, owner, repo)
            mentions = []
            for pr in pull_requests:
                if self.mention_detector.has_mention(pr.body):
                    mentions.append(pr.number)
                    continue
                comments = await self._call(client.list_comments, owner, repo, pr.number)
                if any(
                    self.mention_detector.has_mention(c.body)
                    and not is_own_comment(c.id, c.author, c.author_type, c.body)
                    for c in comments
                ):
                    mentions.append(pr.number)
        except GitHubClientError as e:
            logger.warning(f"Connectivity test for {name} failed: {e}")
            return RepositoryTestResult(repository=name, message=str(e))

        return RepositoryTestResult(
            repository=name,
            connected=True,
            pull_requests=len(pull_requests),
            mentions=mentions,
            message="ok",
        )

    def get_review_history(self, owner: str, repo: str, pr_number: int) -> dict[str, Any]:
        """Return the tracker state of one pull request."""
        with self.session_factory() as session:
            record = ProcessingTracker(session).get_record(owner, repo, pr_number)
            if record is None:
                return {"tracked": False, "review_count": 0, "review_history": []}
            return {
                "tracked": True,
                "description_processed": record.description_processed,
                "processed_comment_ids": list(record.processed_comment_ids or []),
                "review_count": record.review_count,
                "review_history": list(record.review_history or []),
                "ai_review_comment_ids": list(record.ai_review_comment_ids or []),
                "last_review_at": (
                    record.last_review_at.isoformat() if record.last_review_at else None
                ),
            }
