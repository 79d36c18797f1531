from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from fastapi import HTTPException

import api.main as api_main
from db.models import Keyword, KeywordScrapingJob
from pipeline.queue import QueueUnavailable


class _FakeSession:
    def __init__(self, keyword: Keyword | None = None, job: KeywordScrapingJob | None = None) -> None:
        self.keyword = keyword
        self.job = job
        self.added: list[object] = []
        self.commits = 0
        self.rollbacks = 0

    def get(self, model, key):
        if model is Keyword and self.keyword is not None and self.keyword.id == key:
            return self.keyword
        if model is KeywordScrapingJob and self.job is not None and self.job.id == key:
            return self.job
        return None

    def add(self, obj):
        if obj not in self.added:
            self.added.append(obj)

    def flush(self):
        for obj in self.added:
            if getattr(obj, "id", None) is None:
                obj.id = 42

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        return None


def _headers() -> dict:
    return {"x_user_id": str(uuid4()), "x_user_email": "agent@midas.test"}


def _queued(monkeypatch, fake_session: _FakeSession) -> list[KeywordScrapingJob]:
    enqueued: list[KeywordScrapingJob] = []

    def _fake_enqueue(_session, job, queue=None):
        job.status = "queued"
        job.rq_id = "rq-42"
        enqueued.append(job)
        return "rq-42"

    monkeypatch.setattr(api_main, "SessionLocal", lambda: fake_session)
    monkeypatch.setattr(api_main, "enqueue_scraping_job", _fake_enqueue)
    return enqueued


def test_scraping_requires_url(monkeypatch) -> None:
    _queued(monkeypatch, _FakeSession())

    with pytest.raises(HTTPException) as exc:
        api_main.start_scraping(request=api_main.ScrapingRequest(url="   "), **_headers())

    assert exc.value.status_code == 400
    assert exc.value.detail == "url_required"


def test_scraping_rejects_unknown_type(monkeypatch) -> None:
    _queued(monkeypatch, _FakeSession())

    with pytest.raises(HTTPException) as exc:
        api_main.start_scraping(
            request=api_main.ScrapingRequest(url="coffee", scrapingType="tiktok"),
            **_headers(),
        )

    assert exc.value.status_code == 400
    assert exc.value.detail == "invalid_scraping_type"


def test_scraping_rejects_invalid_instagram_target(monkeypatch) -> None:
    _queued(monkeypatch, _FakeSession())

    with pytest.raises(HTTPException) as exc:
        api_main.start_scraping(
            request=api_main.ScrapingRequest(url="not a hashtag!"),
            **_headers(),
        )

    assert exc.value.status_code == 400
    assert exc.value.detail == "invalid_url"


@pytest.mark.parametrize(
    "target",
    ["ftp://example.com/menu", "javascript:alert(1)", "file:///etc/passwd", "data:text/html,hi", "https://"],
)
def test_google_maps_rejects_non_http_urls(monkeypatch, target) -> None:
    enqueued = _queued(monkeypatch, _FakeSession())

    with pytest.raises(HTTPException) as exc:
        api_main.start_scraping(
            request=api_main.ScrapingRequest(url=target, scrapingType="google-maps"),
            **_headers(),
        )

    assert exc.value.status_code == 400
    assert exc.value.detail == "invalid_url"
    assert enqueued == []


@pytest.mark.parametrize("target", ["coffee shop jakarta", "https://www.google.com/maps/search/kopi"])
def test_google_maps_accepts_queries_and_http_urls(monkeypatch, target) -> None:
    enqueued = _queued(monkeypatch, _FakeSession())

    api_main.start_scraping(
        request=api_main.ScrapingRequest(url=target, scrapingType="google-maps"),
        **_headers(),
    )

    assert enqueued[0].job_config["target"] == target


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("abc", 1), (-3, 1), (0, 1), (2.5, 1), (None, 1), (True, 1), ("7", 7), (5, 5), (10_000, 200)],
)
def test_scraping_coerces_max_results(monkeypatch, raw, expected) -> None:
    fake_session = _FakeSession()
    enqueued = _queued(monkeypatch, fake_session)

    payload = api_main.start_scraping(
        request=api_main.ScrapingRequest(url="#kopi", maxResults=raw),
        **_headers(),
    )

    assert payload["success"] is True
    assert enqueued[0].job_config["max_results"] == expected
    assert payload["job"]["expected_results"] == expected


def test_scraping_defaults_to_instagram_and_queues_job(monkeypatch) -> None:
    fake_session = _FakeSession()
    enqueued = _queued(monkeypatch, fake_session)
    headers = _headers()

    payload = api_main.start_scraping(
        request=api_main.ScrapingRequest(url="https://www.instagram.com/p/abc123/"),
        **headers,
    )

    job = enqueued[0]
    assert job.job_type == "instagram"
    assert job.status == "queued"
    assert str(job.user_id) == headers["x_user_id"]
    assert job.gmail == "agent@midas.test"
    assert job.job_config["source"] == "api"
    assert payload["job"]["id"] == 42
    assert payload["job"]["status"] == "queued"
    assert fake_session.commits == 1


def test_scraping_google_maps_keeps_coordinates(monkeypatch) -> None:
    fake_session = _FakeSession()
    enqueued = _queued(monkeypatch, fake_session)

    api_main.start_scraping(
        request=api_main.ScrapingRequest(
            url="coffee shop",
            scrapingType="google-maps",
            coordinates={"lat": -6.2, "lng": 106.8},
        ),
        **_headers(),
    )

    job = enqueued[0]
    assert job.job_type == "google_maps"
    assert job.job_config["coordinates"] == {"lat": -6.2, "lng": 106.8}
    assert job.job_config["target"] == "coffee shop"


def test_scraping_falls_back_to_body_user(monkeypatch) -> None:
    enqueued = _queued(monkeypatch, _FakeSession())
    user_id = uuid4()

    api_main.start_scraping(
        request=api_main.ScrapingRequest(url="kopi", userid=str(user_id), userEmail="body@midas.test"),
        x_user_id=None,
        x_user_email=None,
    )

    assert enqueued[0].user_id == user_id
    assert enqueued[0].gmail == "body@midas.test"


def test_scraping_without_user_is_unauthorized(monkeypatch) -> None:
    _queued(monkeypatch, _FakeSession())

    with pytest.raises(HTTPException) as exc:
        api_main.start_scraping(
            request=api_main.ScrapingRequest(url="kopi"),
            x_user_id=None,
            x_user_email=None,
        )

    assert exc.value.status_code == 401


def test_scraping_for_foreign_keyword_returns_404(monkeypatch) -> None:
    keyword = Keyword(id=9, keyword="kopi", user_id=uuid4(), gmail="x@y.z", status="active")
    _queued(monkeypatch, _FakeSession(keyword=keyword))

    with pytest.raises(HTTPException) as exc:
        api_main.start_scraping(
            request=api_main.ScrapingRequest(url="kopi", keywordId=9),
            **_headers(),
        )

    assert exc.value.status_code == 404


def test_scraping_queue_failure_returns_500(monkeypatch) -> None:
    fake_session = _FakeSession()

    def _failing_enqueue(_session, job, queue=None):
        job.status = "failed"
        job.error_code = "queue_unavailable"
        raise QueueUnavailable("connection refused")

    monkeypatch.setattr(api_main, "SessionLocal", lambda: fake_session)
    monkeypatch.setattr(api_main, "enqueue_scraping_job", _failing_enqueue)

    with pytest.raises(HTTPException) as exc:
        api_main.start_scraping(request=api_main.ScrapingRequest(url="kopi"), **_headers())

    assert exc.value.status_code == 500
    assert exc.value.detail == "queue_unavailable"
    job = fake_session.added[0]
    assert job.status == "failed"


def test_get_scraping_job_is_scoped_to_owner(monkeypatch) -> None:
    owner_id = uuid4()
    job = KeywordScrapingJob(
        id=7,
        job_type="instagram",
        status="running",
        user_id=owner_id,
        gmail="owner@midas.test",
        created_at=datetime(2026, 3, 1, tzinfo=UTC),
    )
    monkeypatch.setattr(api_main, "SessionLocal", lambda: _FakeSession(job=job))

    owner = api_main.UserContext(id=owner_id, email="owner@midas.test")
    assert api_main.get_scraping_job(job_id=7, user=owner)["status"] == "running"

    with pytest.raises(HTTPException) as exc:
        api_main.get_scraping_job(job_id=7, user=api_main.UserContext(id=uuid4(), email="x@y.z"))
    assert exc.value.status_code == 404


def test_cancel_scraping_job(monkeypatch) -> None:
    owner_id = uuid4()
    job = KeywordScrapingJob(id=8, job_type="instagram", status="pending", user_id=owner_id, gmail="o@m.t")
    fake_session = _FakeSession(job=job)
    monkeypatch.setattr(api_main, "SessionLocal", lambda: fake_session)
    owner = api_main.UserContext(id=owner_id, email="o@m.t")

    payload = api_main.cancel_scraping_job(job_id=8, user=owner)

    assert payload["status"] == "cancelled"
    assert job.completed_at is not None
    assert fake_session.commits == 1

    with pytest.raises(HTTPException) as exc:
        api_main.cancel_scraping_job(job_id=8, user=owner)
    assert exc.value.status_code == 409
