from __future__ import annotations

import pytest

from scrapers.apify import ApifyConfig, build_run_input, load_apify_config, normalize_post, run_actor
from scrapers.errors import ApifyError


class _FakeActor:
    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.calls: list[dict] = []

    def call(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class _FakeDataset:
    def __init__(self, items) -> None:
        self.items = items

    def iterate_items(self):
        yield from self.items


class _FakeApifyClient:
    def __init__(self, outcome, items=()) -> None:
        self.token = None
        self.actor_id = None
        self.dataset_id = None
        self._actor = _FakeActor(outcome)
        self._items = list(items)

    def __call__(self, token):
        self.token = token
        return self

    def actor(self, actor_id):
        self.actor_id = actor_id
        return self._actor

    def dataset(self, dataset_id):
        self.dataset_id = dataset_id
        return _FakeDataset(self._items)


class _HttpError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"http {status_code}")
        self.status_code = status_code


CONFIG = ApifyConfig(api_token="token-1", actor_id="apify/instagram-scraper", timeout_s=120)


def test_build_run_input_for_hashtag_and_url() -> None:
    assert build_run_input("#kopi_susu", 5) == {
        "directUrls": ["https://www.instagram.com/explore/tags/kopi_susu/"],
        "resultsType": "posts",
        "resultsLimit": 5,
        "addParentData": False,
    }
    url_input = build_run_input(" https://www.instagram.com/p/abc/ ", 0)
    assert url_input["directUrls"] == ["https://www.instagram.com/p/abc/"]
    assert url_input["resultsLimit"] == 1


def test_build_run_input_rejects_invalid_keyword() -> None:
    with pytest.raises(ValueError):
        build_run_input("kopi susu!", 1)


def test_load_apify_config_requires_token(monkeypatch) -> None:
    monkeypatch.delenv("APIFY_API_TOKEN", raising=False)
    with pytest.raises(RuntimeError):
        load_apify_config()

    monkeypatch.setenv("APIFY_API_TOKEN", " secret ")
    monkeypatch.setenv("APIFY_TIMEOUT_S", "not-a-number")
    config = load_apify_config()
    assert config.api_token == "secret"
    assert config.actor_id == "apify/instagram-scraper"
    assert config.timeout_s == 300


def test_run_actor_reads_dataset_items() -> None:
    client = _FakeApifyClient(
        {"id": "run-9", "status": "SUCCEEDED", "defaultDatasetId": "ds-9"},
        items=[{"id": "1"}, {"id": "2"}],
    )

    run = run_actor(CONFIG, {"directUrls": ["x"]}, client_factory=client)

    assert client.token == "token-1"
    assert client.actor_id == "apify/instagram-scraper"
    assert client.dataset_id == "ds-9"
    assert client._actor.calls[0]["timeout_secs"] == 120
    assert run.run_id == "run-9"
    assert [item["id"] for item in run.items] == ["1", "2"]


def test_run_actor_failed_status_raises() -> None:
    client = _FakeApifyClient({"id": "run-3", "status": "FAILED", "defaultDatasetId": "ds-3"})

    with pytest.raises(ApifyError) as exc:
        run_actor(CONFIG, {}, client_factory=client)

    assert exc.value.code == "actor_run_failed"
    assert exc.value.retryable is False
    assert client.dataset_id is None


def test_run_actor_classifies_http_errors() -> None:
    with pytest.raises(ApifyError) as exc:
        run_actor(CONFIG, {}, client_factory=_FakeApifyClient(_HttpError(429)))
    assert exc.value.code == "upstream_rate_limited"
    assert exc.value.retryable is True
    assert exc.value.status_code == 429

    with pytest.raises(ApifyError) as exc:
        run_actor(CONFIG, {}, client_factory=_FakeApifyClient(_HttpError(401)))
    assert exc.value.code == "upstream_auth"

    with pytest.raises(ApifyError) as exc:
        run_actor(CONFIG, {}, client_factory=_FakeApifyClient(ConnectionError("reset")))
    assert exc.value.code == "actor_call_failed"


def test_normalize_post_maps_fields() -> None:
    values = normalize_post(
        {
            "id": 3141,
            "shortCode": "Cx1",
            "url": "https://www.instagram.com/p/Cx1/",
            "type": "Sidecar",
            "caption": "kopi pagi",
            "timestamp": "2026-03-01T08:30:00.000Z",
            "likesCount": "12",
            "commentsCount": None,
            "videoViewCount": 7,
            "ownerId": 99,
            "hashtags": ["kopi", "pagi"],
        }
    )

    assert values["instagram_id"] == "3141"
    assert values["post_type"] == "Sidecar"
    assert values["posted_at"].year == 2026
    assert values["likes_count"] == 12
    assert values["comments_count"] == 0
    assert values["video_play_count"] == 7
    assert values["owner_id"] == "99"
    assert values["hashtags"] == ["kopi", "pagi"]


def test_normalize_post_skips_errors_and_unknown_types() -> None:
    assert normalize_post({"error": "restricted", "id": "1"}) is None
    assert normalize_post({"shortCode": "x"}) is None
    assert normalize_post({"id": "1", "type": "Clip", "productType": "clips"})["post_type"] == "Reel"
    assert normalize_post({"id": "1", "type": "Story"})["post_type"] is None
