from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest

import pipeline.jobs as jobs_module
import pipeline.queue as queue_module
from db.models import (
    GoogleMapsPlace,
    InstagramHashtag,
    InstagramPost,
    Keyword,
    KeywordGoogleMapsAssignment,
    KeywordInstagramAssignment,
    KeywordScrapingJob,
)
from scrapers.apify import ActorRun
from scrapers.errors import ApifyError


class _FakeScalarResult:
    def __init__(self, items) -> None:
        self._items = items

    def all(self):
        return self._items


class _FakeExecuteResult:
    def __init__(self, item=None) -> None:
        self._item = item

    def scalar_one_or_none(self):
        return self._item

    def scalars(self):
        if isinstance(self._item, list):
            return _FakeScalarResult(self._item)
        return _FakeScalarResult([] if self._item is None else [self._item])


class _FakeSession:
    def __init__(self, *rows) -> None:
        self.rows: dict[tuple[type, int], object] = {(type(row), row.id): row for row in rows}
        self.added: list[object] = []
        self.execute_items: list[object] = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False
        self._next_id = 1000

    def get(self, model, key):
        return self.rows.get((model, key))

    def add(self, obj):
        if obj not in self.added:
            self.added.append(obj)

    def execute(self, _stmt):
        item = self.execute_items.pop(0) if self.execute_items else None
        return _FakeExecuteResult(item)

    def flush(self):
        for obj in self.added:
            if getattr(obj, "id", None) is None:
                obj.id = self._next_id
                self._next_id += 1
                self.rows[(type(obj), obj.id)] = obj

    def commit(self):
        self.flush()
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True

    def of_type(self, model) -> list:
        return [obj for obj in self.added if isinstance(obj, model)]


def _job(job_type: str = "instagram", *, keyword_id: int | None = None, **config) -> KeywordScrapingJob:
    return KeywordScrapingJob(
        id=1,
        keyword_id=keyword_id,
        job_type=job_type,
        job_priority=5,
        status="queued",
        results_count=0,
        retry_count=0,
        job_config={"target": "kopi", "max_results": 2, **config},
        job_results={},
        user_id=uuid4(),
        gmail="owner@midas.test",
    )


def _keyword(job: KeywordScrapingJob, text: str = "kopi") -> Keyword:
    return Keyword(id=job.keyword_id, keyword=text, status="active", user_id=job.user_id, gmail=job.gmail)


def _clock(monkeypatch, *moments: datetime) -> None:
    times = iter(moments)
    monkeypatch.setattr(jobs_module, "_utc_now", lambda: next(times))


def test_update_job_status_sets_timing(monkeypatch) -> None:
    started = datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
    _clock(monkeypatch, started, started + timedelta(seconds=5), started + timedelta(seconds=42))
    job = _job()
    session = _FakeSession(job)

    jobs_module.update_job_status(session, 1, "running")
    jobs_module.update_job_status(session, 1, "running")
    jobs_module.update_job_status(session, 1, "completed", results_count=3)

    assert job.started_at == started
    assert job.completed_at == started + timedelta(seconds=42)
    assert job.actual_duration == 42
    assert job.results_count == 3


def test_update_job_status_cancel_has_no_duration() -> None:
    job = _job()
    session = _FakeSession(job)

    jobs_module.update_job_status(session, 1, "cancelled")

    assert job.completed_at is not None
    assert job.actual_duration is None


def test_update_job_status_missing_job() -> None:
    with pytest.raises(RuntimeError):
        jobs_module.update_job_status(_FakeSession(), 99, "running")


def test_scrape_instagram_job_stores_posts_and_assignments(monkeypatch) -> None:
    job = _job(keyword_id=7)
    keyword = _keyword(job)
    session = _FakeSession(job, keyword)
    captured: dict = {}

    def _fake_run_actor(config, run_input):
        captured["run_input"] = run_input
        return ActorRun(
            run_id="run-1",
            status="SUCCEEDED",
            dataset_id="ds-1",
            items=[
                {"id": "111", "shortCode": "A1", "hashtags": ["kopi"], "likesCount": 10, "type": "Image"},
                {"id": "222", "shortCode": "B2", "caption": "Best KOPI in town", "type": "Video"},
                {"error": "not_found", "url": "https://www.instagram.com/p/x/"},
            ],
        )

    monkeypatch.setattr(jobs_module, "SessionLocal", lambda: session)
    monkeypatch.setattr(jobs_module, "load_apify_config", lambda: SimpleNamespace())
    monkeypatch.setattr(jobs_module, "run_actor", _fake_run_actor)

    result = jobs_module.scrape_instagram_job(1)

    assert result == {"job_id": 1, "results_count": 2}
    assert captured["run_input"]["directUrls"] == ["https://www.instagram.com/explore/tags/kopi/"]
    assert captured["run_input"]["resultsLimit"] == 2
    posts = session.of_type(InstagramPost)
    assert [post.instagram_id for post in posts] == ["111", "222"]
    hashtag = session.of_type(InstagramHashtag)[0]
    assert all(post.hashtag_id == hashtag.id for post in posts)
    assignments = session.of_type(KeywordInstagramAssignment)
    assert [item.confidence_score for item in assignments] == [1.0, 0.8]
    assert all(item.assignment_type == "automatic" for item in assignments)
    assert job.status == "completed"
    assert job.results_count == 2
    assert job.external_job_id == "run-1"
    assert job.job_results["assignments_created"] == 2
    assert session.closed is True


def test_scrape_instagram_job_collapses_repeated_items(monkeypatch) -> None:
    job = _job(keyword_id=7)
    session = _FakeSession(job, _keyword(job))
    item = {"id": "111", "shortCode": "A1", "hashtags": ["kopi"], "likesCount": 10, "type": "Image"}

    monkeypatch.setattr(jobs_module, "SessionLocal", lambda: session)
    monkeypatch.setattr(jobs_module, "load_apify_config", lambda: SimpleNamespace())
    monkeypatch.setattr(
        jobs_module,
        "run_actor",
        lambda config, run_input: ActorRun(
            run_id="run-2",
            status="SUCCEEDED",
            dataset_id="ds-2",
            items=[item, {**item, "likesCount": 12}],
        ),
    )

    result = jobs_module.scrape_instagram_job(1)

    assert result == {"job_id": 1, "results_count": 1}
    posts = session.of_type(InstagramPost)
    assert len(posts) == 1
    assert posts[0].likes_count == 12
    assert len(session.of_type(KeywordInstagramAssignment)) == 1
    assert job.job_results["post_ids"] == [posts[0].id]


def test_scrape_instagram_job_failure_marks_job_failed(monkeypatch) -> None:
    job = _job()
    session = _FakeSession(job)

    def _failing_run_actor(config, run_input):
        raise ApifyError(
            code="upstream_rate_limited",
            message="upstream rate limited (429)",
            provider="apify",
            retryable=True,
            status_code=429,
        )

    monkeypatch.setattr(jobs_module, "SessionLocal", lambda: session)
    monkeypatch.setattr(jobs_module, "load_apify_config", lambda: SimpleNamespace())
    monkeypatch.setattr(jobs_module, "run_actor", _failing_run_actor)

    with pytest.raises(ApifyError):
        jobs_module.scrape_instagram_job(1)

    assert job.status == "failed"
    assert job.error_code == "upstream_rate_limited"
    assert "429" in job.error_message
    assert job.retry_count == 1
    assert job.completed_at is not None
    assert session.rollbacks == 1


def test_scrape_job_unexpected_error_is_internal(monkeypatch) -> None:
    job = _job()
    session = _FakeSession(job)

    def _missing_token():
        raise RuntimeError("APIFY_API_TOKEN is not set")

    monkeypatch.setattr(jobs_module, "SessionLocal", lambda: session)
    monkeypatch.setattr(jobs_module, "load_apify_config", _missing_token)

    with pytest.raises(RuntimeError):
        jobs_module.scrape_instagram_job(1)

    assert job.status == "failed"
    assert job.error_code == "internal_error"


def test_cancelled_job_is_skipped(monkeypatch) -> None:
    job = _job()
    job.status = "cancelled"
    session = _FakeSession(job)
    monkeypatch.setattr(jobs_module, "SessionLocal", lambda: session)
    monkeypatch.setattr(jobs_module, "run_actor", lambda *args: pytest.fail("actor must not run"))

    assert jobs_module.scrape_instagram_job(1) == {"job_id": 1, "status": "cancelled"}
    assert job.status == "cancelled"


def test_scrape_google_maps_job_stores_places(monkeypatch) -> None:
    job = _job("google_maps", keyword_id=7, target="coffee shop", coordinates={"lat": -6.2, "lng": 106.8})
    keyword = _keyword(job, "coffee shop")
    session = _FakeSession(job, keyword)
    captured: dict = {}

    def _fake_search(config, query, *, coordinates=None, max_results=20, session=None):
        captured.update(query=query, coordinates=coordinates, max_results=max_results)
        return "https://www.google.com/maps/search/coffee+shop/@-6.2,106.8,14z", [
            {"place_name": "Kopi Coffee Shop", "category": "Coffee shop", "meta": {}},
            {"place_name": "Warung Makan", "category": "Restaurant", "meta": {}},
        ]

    monkeypatch.setattr(jobs_module, "SessionLocal", lambda: session)
    monkeypatch.setattr(jobs_module, "load_google_maps_config", lambda: SimpleNamespace())
    monkeypatch.setattr(jobs_module, "search_places", _fake_search)

    result = jobs_module.scrape_google_maps_job(1)

    assert result["results_count"] == 2
    assert captured["query"] == "coffee shop"
    assert captured["coordinates"].lat == -6.2
    places = session.of_type(GoogleMapsPlace)
    assert len({place.scraping_session_id for place in places}) == 1
    assert places[0].meta["scraping_job_id"] == 1
    assignments = session.of_type(KeywordGoogleMapsAssignment)
    assert [item.relevance_score for item in assignments] == [1.0, 0.0]
    assert job.status == "completed"
    assert job.job_results["search_url"].startswith("https://www.google.com/maps/search/")


def test_relevance_score() -> None:
    row = {"place_name": "Kopi Kenangan", "category": "Coffee shop"}

    assert jobs_module.relevance_score("kopi coffee", row) == 1.0
    assert jobs_module.relevance_score("kopi bakery", row) == 0.5
    assert jobs_module.relevance_score("###", row) == 0.0


def test_mark_stale_jobs(monkeypatch) -> None:
    stale = _job()
    stale.status = "running"
    session = _FakeSession(stale)
    session.execute_items = [[stale]]

    marked = jobs_module.mark_stale_jobs(session, 30)

    assert marked == 1
    assert stale.status == "failed"
    assert stale.error_code == "stale_job"


def test_rq_on_failure_skips_terminal_rows(monkeypatch) -> None:
    job = _job()
    job.status = "completed"
    session = _FakeSession(job)
    monkeypatch.setattr(jobs_module, "SessionLocal", lambda: session)

    jobs_module.rq_on_failure(SimpleNamespace(args=[1]), None, RuntimeError, RuntimeError("boom"), None)

    assert job.status == "completed"
    assert session.commits == 0


def test_rq_on_failure_marks_running_row(monkeypatch) -> None:
    job = _job()
    job.status = "running"
    session = _FakeSession(job)
    monkeypatch.setattr(jobs_module, "SessionLocal", lambda: session)

    jobs_module.rq_on_failure(SimpleNamespace(args=[1]), None, TimeoutError, TimeoutError("job timeout"), None)

    assert job.status == "failed"
    assert job.error_code == "worker_error"
    assert session.commits == 1


class _FakeQueue:
    def __init__(self, fail_ids: set[int] | None = None, fail: bool = False) -> None:
        self.fail_ids = fail_ids or set()
        self.fail = fail
        self.calls: list[tuple] = []

    def enqueue(self, func, *args, **kwargs):
        if self.fail or args[0] in self.fail_ids:
            raise ConnectionError("redis down")
        self.calls.append((func, args, kwargs))
        return SimpleNamespace(id=kwargs["job_id"])


def test_enqueue_scraping_job_marks_queued() -> None:
    job = _job()
    job.status = "pending"
    session = _FakeSession(job)
    queue = _FakeQueue()

    rq_id = queue_module.enqueue_scraping_job(session, job, queue=queue)

    assert job.rq_id == rq_id
    assert job.status == "queued"
    func, args, kwargs = queue.calls[0]
    assert func is jobs_module.scrape_instagram_job
    assert args == (1,)
    assert kwargs["job_id"] == rq_id
    assert kwargs["on_failure"] is jobs_module.rq_on_failure
    assert session.commits == 1


def test_enqueue_commits_queued_before_worker_runs() -> None:
    job = _job()
    job.status = "pending"
    session = _FakeSession(job)
    seen: dict = {}

    class _InlineQueue:
        def enqueue(self, func, db_job_id, **kwargs):
            seen.update(status=job.status, commits=session.commits)
            jobs_module.update_job_status(session, db_job_id, "running")
            jobs_module.update_job_status(session, db_job_id, "completed", results_count=3)
            return SimpleNamespace(id=kwargs["job_id"])

    queue_module.enqueue_scraping_job(session, job, queue=_InlineQueue())

    assert seen == {"status": "queued", "commits": 1}
    assert job.status == "completed"
    assert job.completed_at is not None
    assert job.results_count == 3


def test_enqueue_scraping_job_failure_marks_failed() -> None:
    job = _job()
    job.status = "pending"
    session = _FakeSession(job)

    with pytest.raises(queue_module.QueueUnavailable):
        queue_module.enqueue_scraping_job(session, job, queue=_FakeQueue(fail=True))

    assert job.status == "failed"
    assert job.error_code == "queue_unavailable"
    assert session.commits == 2


def _pending_pair() -> tuple[KeywordScrapingJob, KeywordScrapingJob]:
    first = _job()
    first.status = "pending"
    second = _job("google_maps")
    second.id = 2
    second.status = "pending"
    return first, second


def test_dispatch_pending_jobs_commits_before_push(monkeypatch) -> None:
    first, second = _pending_pair()
    session = _FakeSession(first, second)
    session.execute_items = [[first, second]]
    queue = _FakeQueue()

    def _push_checks_commit(func, *args, **kwargs):
        assert session.commits == 1
        return _FakeQueue.enqueue(queue, func, *args, **kwargs)

    monkeypatch.setattr(queue, "enqueue", _push_checks_commit)
    monkeypatch.setattr(queue_module, "get_queue", lambda name=None: queue)

    result = queue_module.dispatch_pending_jobs(session, limit=5)

    assert result == {"dispatched": 2, "failed": 0, "job_ids": [1, 2]}
    assert queue.calls[1][0] is jobs_module.scrape_google_maps_job
    assert first.status == second.status == "queued"
    assert session.commits == 1


def test_dispatch_pending_jobs_marks_failed_push(monkeypatch) -> None:
    first, second = _pending_pair()
    session = _FakeSession(first, second)
    session.execute_items = [[first, second]]
    monkeypatch.setattr(queue_module, "get_queue", lambda name=None: _FakeQueue(fail_ids={2}))

    result = queue_module.dispatch_pending_jobs(session, limit=5)

    assert result == {"dispatched": 1, "failed": 1, "job_ids": [1]}
    assert first.status == "queued"
    assert second.status == "failed"
    assert second.error_code == "queue_unavailable"
    assert session.commits == 2


def test_dispatch_with_nothing_pending(monkeypatch) -> None:
    session = _FakeSession()
    session.execute_items = [[]]
    monkeypatch.setattr(queue_module, "get_queue", lambda name=None: pytest.fail("queue must not be opened"))

    assert queue_module.dispatch_pending_jobs(session) == {"dispatched": 0, "failed": 0, "job_ids": []}
    assert session.commits == 0


def test_create_scraping_job_builds_pending_row() -> None:
    session = _FakeSession()
    user = SimpleNamespace(id=uuid4(), email="owner@midas.test")

    job = queue_module.create_scraping_job(
        session,
        user,
        job_type="instagram",
        target="#kopi",
        max_results=3,
        job_priority=42,
        source="bulk",
    )

    assert job.id == 1000
    assert job.status == "pending"
    assert job.job_priority == 10
    assert job.expected_results == 3
    assert job.job_config == {"target": "#kopi", "max_results": 3, "source": "bulk"}
