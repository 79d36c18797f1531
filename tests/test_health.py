from __future__ import annotations

import json

import pytest
from fastapi import HTTPException

import api.main as api_main


def test_health_reports_configuration(monkeypatch) -> None:
    monkeypatch.setattr(api_main, "database_configured", lambda: True)

    response = api_main.health()
    payload = json.loads(response.body)

    assert response.status_code == 200
    assert payload["status"] == "healthy"
    assert payload["service"] == "MIDAS API"
    assert payload["checks"]["database"] == {"status": "configured", "url_configured": True}
    assert payload["checks"]["server"]["status"] == "running"
    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    assert response.headers["pragma"] == "no-cache"
    assert response.headers["expires"] == "0"


def test_health_without_database_url_is_still_healthy(monkeypatch) -> None:
    monkeypatch.setattr(api_main, "database_configured", lambda: False)

    payload = json.loads(api_main.health().body)

    assert payload["status"] == "healthy"
    assert payload["checks"]["database"]["status"] == "missing_config"


def test_operator_guard(monkeypatch) -> None:
    monkeypatch.delenv("OPERATOR_TOKEN", raising=False)
    monkeypatch.delenv("ALLOW_OPS_WITHOUT_TOKEN", raising=False)
    with pytest.raises(HTTPException) as exc:
        api_main._require_operator(x_operator_token=None)
    assert exc.value.status_code == 503

    monkeypatch.setenv("ALLOW_OPS_WITHOUT_TOKEN", "1")
    assert api_main._require_operator(x_operator_token=None) is None

    monkeypatch.setenv("OPERATOR_TOKEN", "s3cret")
    with pytest.raises(HTTPException) as exc:
        api_main._require_operator(x_operator_token="wrong")
    assert exc.value.status_code == 401
    assert api_main._require_operator(x_operator_token="s3cret") is None


class _BrokenSession:
    def __init__(self) -> None:
        self.closed = False

    def execute(self, _stmt):
        raise RuntimeError("connection refused")

    def close(self):
        self.closed = True


def test_system_status_reports_partial_failures(monkeypatch) -> None:
    session = _BrokenSession()
    monkeypatch.setattr(api_main, "SessionLocal", lambda: session)
    monkeypatch.setattr(
        api_main,
        "_worker_state",
        lambda: {"redis_ok": False, "online": False, "worker_count": 0, "queue_depth": None},
    )

    payload = api_main.system_status()

    statuses = {item["service"]: item["status"] for item in payload["service_status"]}
    assert statuses == {"api": "ok", "redis": "down", "worker": "down", "postgres": "down"}
    assert payload["partial_failures"] == ["postgres_unavailable:RuntimeError"]
    assert payload["repo_counts"]["keywords"]["total"] is None
    assert session.closed is True


def test_ops_cleanup_uses_stale_job_marker(monkeypatch) -> None:
    class _Session:
        commits = 0

        def commit(self):
            self.commits += 1

        def close(self):
            return None

    session = _Session()
    monkeypatch.setattr(api_main, "SessionLocal", lambda: session)
    monkeypatch.setattr(api_main, "mark_stale_jobs", lambda _session, older_min: 3 if older_min == 45 else 0)

    payload = api_main.ops_cleanup_jobs(request=api_main.CleanupRequest(older_min=45), _guard=None)

    assert payload == {"marked_failed": 3}
    assert session.commits == 1
