from __future__ import annotations

from datetime import UTC, date, datetime
from uuid import uuid4

import pytest

import analytics.compute as compute_module
from db.models import Keyword, KeywordAnalytics
from keywords import KeywordNotFound


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
        return _FakeScalarResult(self._item or [])


class _FakeSession:
    def __init__(self, keywords: list[Keyword]) -> None:
        self.keywords = {keyword.id: keyword for keyword in keywords}
        self.execute_items: list[object] = []
        self.added: list[object] = []

    def get(self, model, key):
        if model is Keyword:
            return self.keywords.get(key)
        return None

    def execute(self, _stmt):
        item = self.execute_items.pop(0) if self.execute_items else None
        return _FakeExecuteResult(item)

    def add(self, obj):
        if obj not in self.added:
            self.added.append(obj)


def _keyword(keyword_id: int = 1, *, deleted: bool = False) -> Keyword:
    return Keyword(
        id=keyword_id,
        keyword=f"kopi{keyword_id}",
        status="active",
        user_id=uuid4(),
        gmail="owner@midas.test",
        deleted_at=datetime(2026, 1, 1, tzinfo=UTC) if deleted else None,
    )


@pytest.fixture
def fixed_metrics(monkeypatch):
    calls: list[tuple] = []

    def _instagram(session, keyword_id, start, end):
        calls.append(("instagram", keyword_id, start, end))
        return {
            "instagram_posts_count": 4,
            "instagram_avg_likes": 25.5,
            "instagram_avg_comments": 3.0,
            "instagram_total_engagement": 114,
        }

    def _google_maps(session, keyword_id, start, end):
        calls.append(("google_maps", keyword_id, start, end))
        return {
            "google_maps_places_count": 2,
            "google_maps_avg_rating": 4.4,
            "google_maps_total_reviews": 310,
        }

    def _jobs(session, keyword_id, start, end):
        calls.append(("jobs", keyword_id, start, end))
        return {
            "total_scraping_jobs": 3,
            "successful_scraping_jobs": 2,
            "failed_scraping_jobs": 1,
            "avg_job_duration": 41.5,
        }

    monkeypatch.setattr(compute_module, "instagram_metrics", _instagram)
    monkeypatch.setattr(compute_module, "google_maps_metrics", _google_maps)
    monkeypatch.setattr(compute_module, "job_metrics", _jobs)
    return calls


def test_compute_inserts_new_row(fixed_metrics) -> None:
    keyword = _keyword()
    session = _FakeSession([keyword])

    row = compute_module.compute_keyword_analytics(session, 1, date(2026, 3, 1), date(2026, 3, 7), "weekly")

    assert session.added == [row]
    assert row.keyword_id == 1
    assert row.user_id == keyword.user_id
    assert row.period_type == "weekly"
    assert row.instagram_posts_count == 4
    assert row.google_maps_avg_rating == 4.4
    assert row.successful_scraping_jobs == 2
    assert row.avg_job_duration == 41.5
    assert {call[0] for call in fixed_metrics} == {"instagram", "google_maps", "jobs"}


def test_compute_updates_existing_row(fixed_metrics) -> None:
    keyword = _keyword()
    existing = KeywordAnalytics(
        id=77,
        keyword_id=1,
        period_start=date(2026, 3, 1),
        period_end=date(2026, 3, 1),
        period_type="daily",
        instagram_posts_count=1,
        user_id=keyword.user_id,
    )
    session = _FakeSession([keyword])
    session.execute_items = [existing]

    row = compute_module.compute_keyword_analytics(session, 1, date(2026, 3, 1), date(2026, 3, 1))

    assert row is existing
    assert row.id == 77
    assert row.instagram_posts_count == 4
    assert row.updated_at is not None


@pytest.mark.parametrize(
    ("start", "end", "period_type"),
    [
        (date(2026, 3, 2), date(2026, 3, 1), "daily"),
        (date(2026, 3, 1), date(2026, 3, 1), "yearly"),
    ],
)
def test_compute_rejects_bad_period(fixed_metrics, start, end, period_type) -> None:
    with pytest.raises(ValueError):
        compute_module.compute_keyword_analytics(_FakeSession([_keyword()]), 1, start, end, period_type)
    assert fixed_metrics == []


def test_compute_for_missing_or_deleted_keyword(fixed_metrics) -> None:
    session = _FakeSession([_keyword(2, deleted=True)])

    with pytest.raises(KeywordNotFound):
        compute_module.compute_keyword_analytics(session, 1, date(2026, 3, 1), date(2026, 3, 1))
    with pytest.raises(KeywordNotFound):
        compute_module.compute_keyword_analytics(session, 2, date(2026, 3, 1), date(2026, 3, 1))


def test_bounds_cover_whole_days() -> None:
    start, end = compute_module._bounds(date(2026, 3, 1), date(2026, 3, 7))

    assert start == datetime(2026, 3, 1, tzinfo=UTC)
    assert end == datetime(2026, 3, 8, tzinfo=UTC)


def test_batch_computes_previous_day_for_active_keywords(fixed_metrics) -> None:
    session = _FakeSession([_keyword(1), _keyword(2)])
    session.execute_items = [[1, 2]]

    result = compute_module.batch_compute_daily_analytics(session, date(2026, 3, 5))

    assert result["processed"] == 2
    assert result["day"] == "2026-03-05"
    assert len(session.added) == 2
    assert all(row.period_start == row.period_end == date(2026, 3, 5) for row in session.added)
