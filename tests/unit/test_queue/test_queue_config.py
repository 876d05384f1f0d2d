"""Unit tests for review job queueing."""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from src.models.review import ReconciliationResult, ReviewOutcome, ReviewTrigger
from src.queue import config
from src.services import review_orchestrator


class FakeQueue:
    def __init__(self, name: str, scheduled=None, queued=None) -> None:
        self.name = name
        self.enqueued: list[tuple[tuple, dict]] = []
        self.enqueued_in: list[tuple[timedelta, tuple, dict]] = []
        self.scheduled_job_registry = SimpleNamespace(get_job_ids=lambda: list(scheduled or []))
        self._queued = list(queued or [])

    def get_job_ids(self):
        return self._queued

    def enqueue(self, *args, **kwargs):
        self.enqueued.append((args, kwargs))
        return SimpleNamespace(id=kwargs.get("job_id"))

    def enqueue_in(self, delay, *args, **kwargs):
        self.enqueued_in.append((delay, args, kwargs))
        return SimpleNamespace(id=kwargs.get("job_id"))


@pytest.fixture
def fake_queues(monkeypatch) -> dict[str, FakeQueue]:
    queues = {name: FakeQueue(f"reviews:{name}") for name in ("high", "default", "low")}
    for name, queue in queues.items():
        monkeypatch.setitem(config._queues, name, queue)
    monkeypatch.setattr(config, "review_queue", queues["default"])
    return queues


def test_job_id_per_trigger() -> None:
    description = ReviewTrigger(owner="acme", repo="widgets", pr_number=7)
    comment = ReviewTrigger(owner="acme", repo="widgets", pr_number=7, comment_id=99)

    assert config._job_id(description) == "review-acme__widgets-pr-7-description"
    assert config._job_id(comment) == "review-acme__widgets-pr-7-comment-99"


def test_enqueue_review_routes_by_trigger_kind(monkeypatch, fake_queues) -> None:
    monkeypatch.setattr(config, "_active_job", lambda job_id: None)

    config.enqueue_review(ReviewTrigger(owner="acme", repo="widgets", pr_number=7))
    config.enqueue_review(
        ReviewTrigger(owner="acme", repo="widgets", pr_number=7, comment_id=99)
    )

    default_args, default_kwargs = fake_queues["default"].enqueued[0]
    assert default_args == (config.run_review_job, "acme", "widgets", 7, None, "issue_comment")
    assert default_kwargs["job_id"] == "review-acme__widgets-pr-7-description"
    assert default_kwargs["job_timeout"] == config.JOB_TIMEOUT_SECONDS

    high_args, _ = fake_queues["high"].enqueued[0]
    assert high_args[4] == 99


def test_enqueue_review_skips_active_duplicate(monkeypatch, fake_queues) -> None:
    existing = SimpleNamespace(id="review-acme__widgets-pr-7-description")
    monkeypatch.setattr(config, "_active_job", lambda job_id: existing)

    job = config.enqueue_review(ReviewTrigger(owner="acme", repo="widgets", pr_number=7))

    assert job is existing
    assert fake_queues["default"].enqueued == []


def test_active_job_ignores_finished_jobs(monkeypatch) -> None:
    finished = SimpleNamespace(get_status=lambda refresh=True: "finished")
    queued = SimpleNamespace(get_status=lambda refresh=True: "queued")

    monkeypatch.setattr(config, "_fetch_existing_job", lambda job_id: finished)
    assert config._active_job("job") is None

    monkeypatch.setattr(config, "_fetch_existing_job", lambda job_id: queued)
    assert config._active_job("job") is queued


def test_schedule_reconciliation(monkeypatch, fake_queues) -> None:
    job = config.schedule_reconciliation(delay_seconds=120)

    delay, args, kwargs = fake_queues["low"].enqueued_in[0]
    assert delay == timedelta(seconds=120)
    assert args == (config.run_reconciliation_job,)
    assert kwargs["job_id"].startswith(config.RECONCILIATION_JOB_PREFIX)
    assert job.id == kwargs["job_id"]


def test_schedule_reconciliation_disabled(fake_queues) -> None:
    assert config.schedule_reconciliation(delay_seconds=0) is None
    assert fake_queues["low"].enqueued_in == []


def test_schedule_reconciliation_keeps_pending_job(monkeypatch, fake_queues) -> None:
    pending_id = f"{config.RECONCILIATION_JOB_PREFIX}-1700000000"
    monkeypatch.setitem(
        config._queues, "low", FakeQueue("reviews:low", scheduled=[pending_id])
    )
    pending = SimpleNamespace(id=pending_id)
    monkeypatch.setattr(config, "_fetch_existing_job", lambda job_id: pending)

    assert config.schedule_reconciliation(delay_seconds=120) is pending
    assert config._queues["low"].enqueued_in == []


def test_run_review_job(monkeypatch) -> None:
    calls = []

    class FakeOrchestrator:
        async def check_single_pull_request(self, *args):
            calls.append(args)
            return ReviewOutcome(status="processed", posted_comment_ids=[5])

    monkeypatch.setattr(review_orchestrator, "ReviewOrchestrator", FakeOrchestrator)

    result = config.run_review_job("acme", "widgets", 7, 99, "review_comment")

    assert calls == [("acme", "widgets", 7, 99, "review_comment")]
    assert result["status"] == "processed"
    assert result["posted_comment_ids"] == [5]


def test_run_reconciliation_job_reschedules_after_failure(monkeypatch) -> None:
    scheduled = []

    class FailingOrchestrator:
        async def check_existing_pull_requests(self):
            raise RuntimeError("database down")

    monkeypatch.setattr(review_orchestrator, "ReviewOrchestrator", FailingOrchestrator)
    monkeypatch.setattr(config, "schedule_reconciliation", lambda: scheduled.append(True))

    with pytest.raises(RuntimeError):
        config.run_reconciliation_job()

    assert scheduled == [True]


def test_run_reconciliation_job_returns_counts(monkeypatch) -> None:
    class FakeOrchestrator:
        async def check_existing_pull_requests(self):
            return ReconciliationResult(repositories=2, processed=1, skipped=3)

    monkeypatch.setattr(review_orchestrator, "ReviewOrchestrator", FakeOrchestrator)

    result = config.run_reconciliation_job(reschedule=False)

    assert result["repositories"] == 2
    assert result["skipped"] == 3
