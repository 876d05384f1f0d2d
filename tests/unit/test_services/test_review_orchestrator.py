"""Unit tests for the review orchestrator."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from src.models.events import parse_webhook_event
from src.models.feedback import ExtractedFeedback, ReviewRequest, ReviewResult
from src.models.github_types import CommentInfo, FileDiff, PullRequestInfo, RepositoryInfo
from src.models.repository import RepositoryConfig
from src.models.review import EventOutcome
from src.models.tracker import PullRequestTracker
from src.services.comment_composer import PROGRESS_HEADING
from src.services.github_client import GitHubNotFoundError, GitHubTransientError
from src.services.mention_detector import MentionDetector
from src.services.processing_tracker import ProcessingTracker
from src.services.review_orchestrator import ReviewOrchestrator, is_own_comment
from src.utils.comment_splitter import part_banner
from src.utils.comment_state import AI_REVIEW_MARKER

BASE_TIME = datetime(2024, 6, 1, tzinfo=timezone.utc)


class FakeGitHubClient:
    """In-memory stand-in for GitHubClient."""

    def __init__(self) -> None:
        self.pull_requests: dict[int, PullRequestInfo] = {}
        self.comments: dict[int, list[CommentInfo]] = {}
        self.posted: list[tuple[int, str]] = []
        self.post_error: Exception | None = None
        self.split_parts = 1
        self.next_id = 1000

    def add_pull_request(self, number: int, body: str = "", state: str = "open") -> None:
        self.pull_requests[number] = PullRequestInfo(
            number=number,
            title=f"Feature {number}",
            body=body,
            state=state,
            author="dev",
            updated_at=BASE_TIME + timedelta(minutes=number),
        )
        self.comments.setdefault(number, [])

    def add_comment(
        self, pr_number: int, comment_id: int, body: str, author: str = "dev", author_type: str = "User"
    ) -> CommentInfo:
        comment = CommentInfo(
            id=comment_id,
            body=body,
            author=author,
            author_type=author_type,
            created_at=BASE_TIME + timedelta(seconds=comment_id),
        )
        self.comments.setdefault(pr_number, []).append(comment)
        return comment

    def get_repository_info(self, owner, repo):
        return RepositoryInfo(full_name=f"{owner}/{repo}")

    def get_pull_request(self, owner, repo, pr_number):
        if pr_number not in self.pull_requests:
            raise GitHubNotFoundError(f"Not found: {owner}/{repo}#{pr_number}", status=404)
        return self.pull_requests[pr_number]

    def list_open_pull_requests(self, owner, repo):
        return [pr for pr in self.pull_requests.values() if pr.is_open]

    def list_comments(self, owner, repo, pr_number):
        return sorted(self.comments.get(pr_number, []), key=lambda c: c.id, reverse=True)

    def get_comment(self, owner, repo, comment_id, comment_type="issue_comment"):
        for comments in self.comments.values():
            for comment in comments:
                if comment.id == comment_id:
                    return comment
        raise GitHubNotFoundError(f"Not found: comment {comment_id}", status=404)

    def get_pull_request_diff(self, owner, repo, pr_number):
        return [FileDiff(filename="src/auth.py", additions=2, patch="+hash(password)")]

    def post_comment(self, owner, repo, pr_number, body):
        if self.post_error is not None:
            raise self.post_error
        size = -(-len(body) // self.split_parts)
        chunks = [body[start : start + size] for start in range(0, len(body), size)]
        posted = []
        for index, chunk in enumerate(chunks, start=1):
            part = chunk if index == 1 else part_banner(index, len(chunks)) + chunk
            self.next_id += 1
            posted.append(
                self.add_comment(
                    pr_number, self.next_id, part, author="review-bot", author_type="Bot"
                )
            )
        self.posted.append((pr_number, body))
        return posted


class FakeReviewer:
    """Records review requests and returns queued results."""

    def __init__(self, *results: ReviewResult) -> None:
        self.results = list(results)
        self.requests: list[ReviewRequest] = []
        self.error: Exception | None = None

    async def __call__(self, request: ReviewRequest) -> ReviewResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.results:
            return self.results.pop(0)
        return ReviewResult(summary="Looks fine.")


FIRST_REVIEW = ReviewResult(
    summary="Authentication change.",
    feedbacks=[
        ExtractedFeedback(
            feedback_type="strength", category="readability", point="Clear function names"
        ),
        ExtractedFeedback(
            feedback_type="improvement",
            category="security",
            point="Passwords stored in plaintext",
            suggestion="Hash passwords with bcrypt",
        ),
    ],
)

SECOND_REVIEW = ReviewResult(
    summary="Follow-up.",
    feedbacks=[
        ExtractedFeedback(
            feedback_type="strength", category="security", point="Passwords are hashed"
        )
    ],
    current_strengths=["Password hashing implemented via bcrypt"],
)


@pytest.fixture
def github() -> FakeGitHubClient:
    return FakeGitHubClient()


@pytest.fixture
def reviewer() -> FakeReviewer:
    return FakeReviewer(FIRST_REVIEW, SECOND_REVIEW)


@pytest.fixture
def orchestrator(session_factory, repository, github, reviewer) -> ReviewOrchestrator:
    return ReviewOrchestrator(
        session_factory=session_factory,
        client_factory=lambda repo: github,
        reviewer=reviewer,
        mention_detector=MentionDetector(trigger_token="@codereview", aliases_enabled=True),
    )


def _record(session_factory, pr_number: int = 1) -> PullRequestTracker | None:
    with session_factory() as session:
        record = ProcessingTracker(session).get_record("acme", "widgets", pr_number)
        if record is not None:
            session.expunge(record)
        return record


def _pull_request_payload(action: str = "opened", body: str = "@codereview please") -> dict:
    return {
        "action": action,
        "number": 1,
        "pull_request": {"number": 1, "state": "open", "body": body},
        "repository": {"name": "widgets", "owner": {"login": "acme"}, "full_name": "acme/widgets"},
    }


def _comment_payload(comment_id: int, body: str, user_type: str = "User") -> dict:
    return {
        "action": "created",
        "issue": {"number": 1, "pull_request": {"url": "https://api.github.com/x"}},
        "comment": {"id": comment_id, "body": body, "user": {"login": "dev", "type": user_type}},
        "repository": {"name": "widgets", "owner": {"login": "acme"}},
    }


class TestWebhookFlow:
    """Events arriving through handle_event."""

    @pytest.mark.asyncio
    async def test_opened_pull_request_is_reviewed_once(
        self, orchestrator, github, session_factory
    ) -> None:
        github.add_pull_request(1, body="@codereview please")
        event = parse_webhook_event("pull_request", _pull_request_payload())

        first = await orchestrator.handle_event(event)

        assert first.status == "processed"
        assert len(github.posted) == 1
        record = _record(session_factory)
        assert record.description_processed is True
        assert record.review_count == 1
        assert record.ai_review_comment_ids == [1001]

        # Redelivery of the same webhook
        second = await orchestrator.handle_event(event)

        assert second.status == "skipped"
        assert len(github.posted) == 1
        again = _record(session_factory)
        assert again.review_count == 1
        assert again.review_history == record.review_history
        with session_factory() as session:
            assert session.scalar(select(func.count()).select_from(PullRequestTracker)) == 1

    @pytest.mark.asyncio
    async def test_irrelevant_action_is_ignored(self, orchestrator, github) -> None:
        github.add_pull_request(1, body="@codereview")
        event = parse_webhook_event("pull_request", _pull_request_payload(action="closed"))

        outcome = await orchestrator.handle_event(event)

        assert outcome.status == "ignored"
        assert github.posted == []

    @pytest.mark.asyncio
    async def test_missing_mention_is_ignored(self, orchestrator, github) -> None:
        github.add_pull_request(1, body="Adds login")
        event = parse_webhook_event("pull_request", _pull_request_payload(body="Adds login"))

        outcome = await orchestrator.handle_event(event)

        assert outcome.status == "ignored"
        assert github.posted == []

    @pytest.mark.asyncio
    async def test_bot_comment_is_ignored(self, orchestrator, github) -> None:
        github.add_pull_request(1)
        event = parse_webhook_event(
            "issue_comment", _comment_payload(50, "@codereview", user_type="Bot")
        )

        outcome = await orchestrator.handle_event(event)

        assert outcome.status == "ignored"

    @pytest.mark.asyncio
    async def test_own_review_comment_is_ignored(self, orchestrator, github) -> None:
        github.add_pull_request(1)
        body = f"{AI_REVIEW_MARKER}\nComment @codereview to request another review."
        event = parse_webhook_event("issue_comment", _comment_payload(51, body))

        outcome = await orchestrator.handle_event(event)

        assert outcome.status == "ignored"
        assert github.posted == []

    @pytest.mark.asyncio
    async def test_dispatcher_receives_trigger(self, orchestrator, github) -> None:
        dispatched = []

        def dispatcher(trigger):
            dispatched.append(trigger)
            return EventOutcome(status="queued", job_id="job-1")

        orchestrator.dispatcher = dispatcher
        github.add_pull_request(1)
        github.add_comment(1, 52, "@codereview")
        event = parse_webhook_event("issue_comment", _comment_payload(52, "@codereview"))

        outcome = await orchestrator.handle_event(event)

        assert outcome.status == "queued"
        assert outcome.job_id == "job-1"
        assert dispatched[0].comment_id == 52
        assert github.posted == []

    @pytest.mark.asyncio
    async def test_ineligible_repository(self, orchestrator, github, session_factory) -> None:
        with session_factory() as session:
            repo = session.scalars(select(RepositoryConfig)).one()
            repo.allow_auto_review = False
            session.commit()
        github.add_pull_request(1, body="@codereview")
        event = parse_webhook_event("pull_request", _pull_request_payload())

        outcome = await orchestrator.handle_event(event)

        assert outcome.status == "ineligible"
        assert github.posted == []
        assert _record(session_factory) is None


class TestReviewCycle:
    """Tests for check_single_pull_request."""

    @pytest.mark.asyncio
    async def test_comment_trigger_processed_once(
        self, orchestrator, github, session_factory
    ) -> None:
        github.add_pull_request(1)
        github.add_comment(1, 55, "@codereview have a look")

        first = await orchestrator.check_single_pull_request("acme", "widgets", 1, 55)
        second = await orchestrator.check_single_pull_request("acme", "widgets", 1, 55)

        assert first.status == "processed"
        assert second.status == "skipped"
        assert len(github.posted) == 1
        record = _record(session_factory)
        assert record.processed_comment_ids == [55]
        assert record.description_processed is False

    @pytest.mark.asyncio
    async def test_re_review_uses_previous_feedback(
        self, orchestrator, github, reviewer, session_factory
    ) -> None:
        github.add_pull_request(1, body="@codereview")
        await orchestrator.check_single_pull_request("acme", "widgets", 1)
        github.add_comment(1, 60, "@codereview fixed it")

        outcome = await orchestrator.check_single_pull_request("acme", "widgets", 1, 60)

        assert outcome.status == "processed"
        assert outcome.is_re_review is True
        request = reviewer.requests[1]
        assert request.is_re_review is True
        assert request.review_number == 2
        assert request.previous_feedback == FIRST_REVIEW.feedbacks
        body = github.posted[1][1]
        assert "Re-review #2" in body
        assert PROGRESS_HEADING in body
        assert "✅ **Improved** (Security): Passwords stored in plaintext" in body
        record = _record(session_factory)
        assert record.review_count == 2
        assert record.ai_review_comment_ids == [1001, 1002]

    @pytest.mark.asyncio
    async def test_re_review_finds_review_by_marker(
        self, orchestrator, github, reviewer
    ) -> None:
        github.add_pull_request(1, body="@codereview")
        await orchestrator.check_single_pull_request("acme", "widgets", 1)
        # The recorded comment is gone, but an equivalent review is still listed
        original = github.comments[1].pop()
        github.add_comment(1, 900, original.body, author="review-bot", author_type="Bot")
        github.add_comment(1, 61, "@codereview again")

        await orchestrator.check_single_pull_request("acme", "widgets", 1, 61)

        assert reviewer.requests[1].previous_feedback == FIRST_REVIEW.feedbacks

    @pytest.mark.asyncio
    async def test_re_review_joins_recorded_split_review(
        self, orchestrator, github, reviewer, session_factory
    ) -> None:
        github.add_pull_request(1, body="@codereview")
        github.split_parts = 3
        await orchestrator.check_single_pull_request("acme", "widgets", 1)
        github.split_parts = 1
        assert _record(session_factory).ai_review_comment_ids == [1001, 1002, 1003]
        github.add_comment(1, 64, "@codereview again")

        outcome = await orchestrator.check_single_pull_request("acme", "widgets", 1, 64)

        assert outcome.status == "processed"
        assert reviewer.requests[1].previous_feedback == FIRST_REVIEW.feedbacks

    @pytest.mark.asyncio
    async def test_re_review_joins_split_review_found_by_marker(
        self, orchestrator, github, reviewer
    ) -> None:
        github.add_pull_request(1, body="@codereview")
        github.split_parts = 3
        await orchestrator.check_single_pull_request("acme", "widgets", 1)
        github.split_parts = 1
        # The recorded parts are gone; equivalent parts are listed under new IDs
        parts = [github.comments[1].pop() for _ in range(3)][::-1]
        for comment_id, part in zip((901, 902, 903), parts, strict=True):
            github.add_comment(1, comment_id, part.body, author="review-bot", author_type="Bot")
        github.add_comment(1, 65, "@codereview again")

        await orchestrator.check_single_pull_request("acme", "widgets", 1, 65)

        assert reviewer.requests[1].previous_feedback == FIRST_REVIEW.feedbacks

    @pytest.mark.asyncio
    async def test_idle_locks_are_released(self, orchestrator, github) -> None:
        github.add_pull_request(1, body="@codereview")

        outcomes = await asyncio.gather(
            orchestrator.check_single_pull_request("acme", "widgets", 1),
            orchestrator.check_single_pull_request("acme", "widgets", 1),
        )

        assert sorted(o.status for o in outcomes) == ["processed", "skipped"]
        assert len(github.posted) == 1
        assert orchestrator._locks == {}
        assert orchestrator._lock_users == {}

    @pytest.mark.asyncio
    async def test_re_review_without_recoverable_feedback(
        self, orchestrator, github, reviewer
    ) -> None:
        github.add_pull_request(1, body="@codereview")
        await orchestrator.check_single_pull_request("acme", "widgets", 1)
        github.comments[1].clear()
        github.add_comment(1, 62, "@codereview again")

        outcome = await orchestrator.check_single_pull_request("acme", "widgets", 1, 62)

        assert outcome.status == "processed"
        assert reviewer.requests[1].is_re_review is True
        assert reviewer.requests[1].previous_feedback == []

    @pytest.mark.asyncio
    async def test_missing_pull_request(self, orchestrator, github, session_factory) -> None:
        outcome = await orchestrator.check_single_pull_request("acme", "widgets", 404)

        assert outcome.status == "not_found"
        assert _record(session_factory, 404) is None

    @pytest.mark.asyncio
    async def test_closed_pull_request(self, orchestrator, github, reviewer) -> None:
        github.add_pull_request(1, body="@codereview", state="closed")

        outcome = await orchestrator.check_single_pull_request("acme", "widgets", 1)

        assert outcome.status == "skipped"
        assert reviewer.requests == []

    @pytest.mark.asyncio
    async def test_transient_failure_leaves_tracker_untouched(
        self, orchestrator, github, session_factory
    ) -> None:
        github.add_pull_request(1, body="@codereview")
        github.post_error = GitHubTransientError("GitHub API error 502", status=502)

        failed = await orchestrator.check_single_pull_request("acme", "widgets", 1)

        assert failed.status == "failed"
        assert _record(session_factory) is None

        # The next trigger retries the same work
        github.post_error = None
        retried = await orchestrator.check_single_pull_request("acme", "widgets", 1)

        assert retried.status == "processed"
        assert _record(session_factory).review_count == 1

    @pytest.mark.asyncio
    async def test_reviewer_failure(self, orchestrator, github, reviewer, session_factory) -> None:
        github.add_pull_request(1, body="@codereview")
        reviewer.error = RuntimeError("model unavailable")

        outcome = await orchestrator.check_single_pull_request("acme", "widgets", 1)

        assert outcome.status == "failed"
        assert github.posted == []
        assert _record(session_factory) is None

    @pytest.mark.asyncio
    async def test_bot_comment_never_reviewed(self, orchestrator, github) -> None:
        github.add_pull_request(1)
        github.add_comment(1, 63, "@codereview", author="ci", author_type="Bot")

        outcome = await orchestrator.check_single_pull_request("acme", "widgets", 1, 63)

        assert outcome.status == "skipped"
        assert github.posted == []

    @pytest.mark.asyncio
    async def test_unknown_repository(self, orchestrator, github) -> None:
        outcome = await orchestrator.check_single_pull_request("other", "repo", 1)

        assert outcome.status == "ineligible"


class TestReconciliation:
    """Tests for check_existing_pull_requests."""

    @pytest.mark.asyncio
    async def test_processed_description_is_skipped(self, orchestrator, github) -> None:
        github.add_pull_request(1, body="@codereview please")
        event = parse_webhook_event("pull_request", _pull_request_payload())
        await orchestrator.handle_event(event)

        result = await orchestrator.check_existing_pull_requests()

        assert result.repositories == 1
        assert result.processed == 0
        assert result.skipped == 1
        assert len(github.posted) == 1

    @pytest.mark.asyncio
    async def test_webhook_owner_case_matches_poll(
        self, orchestrator, github, session_factory
    ) -> None:
        github.add_pull_request(1, body="@codereview please")
        payload = _pull_request_payload()
        payload["repository"] = {
            "name": "Widgets",
            "owner": {"login": "Acme"},
            "full_name": "Acme/Widgets",
        }

        webhook = await orchestrator.handle_event(parse_webhook_event("pull_request", payload))
        result = await orchestrator.check_existing_pull_requests()

        assert webhook.status == "processed"
        assert result.processed == 0
        assert result.skipped == 1
        assert len(github.posted) == 1
        with session_factory() as session:
            record = session.scalars(select(PullRequestTracker)).one()
            assert (record.owner, record.repo) == ("acme", "widgets")

    @pytest.mark.asyncio
    async def test_one_trigger_per_pull_request_per_pass(
        self, orchestrator, github, session_factory
    ) -> None:
        github.add_pull_request(1)
        github.add_comment(1, 70, "@codereview first")
        github.add_comment(1, 71, "@codereview second")
        github.add_pull_request(2, body="@codereview")
        github.add_pull_request(3, body="no mention")

        first_pass = await orchestrator.check_existing_pull_requests()

        assert first_pass.processed == 2
        assert len(github.posted) == 2
        assert _record(session_factory, 1).processed_comment_ids == [71]

        second_pass = await orchestrator.check_existing_pull_requests()

        assert second_pass.processed == 1
        assert _record(session_factory, 1).processed_comment_ids == [71, 70]

    @pytest.mark.asyncio
    async def test_description_preferred_over_comments(
        self, orchestrator, github, session_factory
    ) -> None:
        github.add_pull_request(1, body="@codereview")
        github.add_comment(1, 72, "@codereview")

        result = await orchestrator.check_existing_pull_requests()

        assert result.processed == 1
        record = _record(session_factory)
        assert record.description_processed is True
        assert record.processed_comment_ids == []


class TestOperatorHelpers:
    """Tests for test_repository and get_review_history."""

    @pytest.mark.asyncio
    async def test_repository_connectivity(self, orchestrator, github, repository) -> None:
        github.add_pull_request(1, body="@codereview")
        github.add_pull_request(2)
        github.add_comment(2, 80, "@codereview")
        github.add_pull_request(3)

        result = await orchestrator.test_repository(repository.id)

        assert result.connected is True
        assert result.repository == "acme/widgets"
        assert result.pull_requests == 3
        assert sorted(result.mentions) == [1, 2]
        assert github.posted == []

    @pytest.mark.asyncio
    async def test_unknown_repository_raises(self, orchestrator) -> None:
        with pytest.raises(LookupError):
            await orchestrator.test_repository(9999)

    @pytest.mark.asyncio
    async def test_review_history(self, orchestrator, github) -> None:
        assert orchestrator.get_review_history("acme", "widgets", 1)["tracked"] is False

        github.add_pull_request(1, body="@codereview")
        await orchestrator.check_single_pull_request("acme", "widgets", 1)

        history = orchestrator.get_review_history("acme", "widgets", 1)
        assert history["tracked"] is True
        assert history["review_count"] == 1
        assert history["review_history"][0]["trigger"] == "description"


def test_is_own_comment() -> None:
    assert is_own_comment(1, "dependabot[bot]", "Bot", "@codereview") is True
    assert is_own_comment(1, "dev", "User", f"{AI_REVIEW_MARKER} text") is True
    assert is_own_comment(1, "dev", "User", "@codereview", ai_comment_ids=[1]) is True
    assert is_own_comment(1, "dev", "User", "@codereview") is False
