from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
import os
from typing import Any, Callable
from urllib.parse import urlsplit

from apify_client import ApifyClient

from config import env_int
from keywords.validation import validate_instagram_keyword

from .errors import ApifyError, classify_http_status


logger = logging.getLogger(__name__)

POST_TYPES = {"Image", "Video", "Sidecar", "Reel"}


@dataclass(frozen=True)
class ApifyConfig:
    api_token: str
    actor_id: str
    timeout_s: int
    memory_mbytes: int | None = None


@dataclass(frozen=True)
class ActorRun:
    run_id: str | None
    status: str
    dataset_id: str | None
    items: list[dict[str, Any]]


def load_apify_config() -> ApifyConfig:
    api_token = os.getenv("APIFY_API_TOKEN", "").strip()
    if not api_token:
        raise RuntimeError("APIFY_API_TOKEN is not set")
    memory = env_int("APIFY_MEMORY_MBYTES", 0)
    return ApifyConfig(
        api_token=api_token,
        actor_id=os.getenv("APIFY_INSTAGRAM_ACTOR", "apify/instagram-scraper").strip(),
        timeout_s=env_int("APIFY_TIMEOUT_S", 300),
        memory_mbytes=memory or None,
    )


def is_http_url(value: str) -> bool:
    parts = urlsplit(value.strip())
    return parts.scheme in {"http", "https"} and bool(parts.netloc)


def hashtag_url(tag: str) -> str:
    return f"https://www.instagram.com/explore/tags/{tag}/"


def build_run_input(target: str, max_results: int) -> dict[str, Any]:
    """Actor input for a hashtag/keyword or a direct Instagram URL."""
    if is_http_url(target):
        url = target.strip()
    else:
        url = hashtag_url(validate_instagram_keyword(target))
    return {
        "directUrls": [url],
        "resultsType": "posts",
        "resultsLimit": max(1, int(max_results)),
        "addParentData": False,
    }


def _as_dict(run: Any) -> dict[str, Any]:
    if run is None:
        return {}
    if isinstance(run, dict):
        return run
    if hasattr(run, "model_dump"):
        return run.model_dump(by_alias=True)
    return dict(run)


def run_actor(
    config: ApifyConfig,
    run_input: dict[str, Any],
    *,
    client_factory: Callable[[str], Any] = ApifyClient,
) -> ActorRun:
    client = client_factory(config.api_token)
    logger.info("Starting Apify actor %s for %s", config.actor_id, run_input.get("directUrls"))
    try:
        run = _as_dict(
            client.actor(config.actor_id).call(
                run_input=run_input,
                timeout_secs=config.timeout_s,
                memory_mbytes=config.memory_mbytes,
            )
        )
    except Exception as exc:
        status_code = getattr(exc, "status_code", None)
        if status_code is None:
            raise ApifyError(
                code="actor_call_failed",
                message=str(exc) or type(exc).__name__,
                provider="apify",
                retryable=True,
            ) from exc
        code, message, retryable = classify_http_status(int(status_code))
        raise ApifyError(
            code=code,
            message=message,
            provider="apify",
            retryable=retryable,
            status_code=int(status_code),
        ) from exc

    status = str(run.get("status") or "UNKNOWN")
    run_id = run.get("id")
    if status != "SUCCEEDED":
        raise ApifyError(
            code="actor_run_failed",
            message=f"Actor run {run_id} finished with status {status}",
            provider="apify",
            retryable=status in {"TIMED-OUT", "TIMING-OUT"},
        )

    dataset_id = run.get("defaultDatasetId")
    items: list[dict[str, Any]] = []
    if dataset_id:
        for item in client.dataset(dataset_id).iterate_items():
            items.append(item)
    logger.info("Apify run %s returned %s items", run_id, len(items))
    return ActorRun(run_id=run_id, status=status, dataset_id=dataset_id, items=items)


def _parse_timestamp(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _int_or_zero(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def normalize_post(item: dict[str, Any]) -> dict[str, Any] | None:
    """Map one dataset item to ``InstagramPost`` column values.

    Returns ``None`` for error items and items without an id.
    """
    if item.get("error") or not item.get("id"):
        return None
    post_type = item.get("type")
    if post_type not in POST_TYPES:
        post_type = "Reel" if item.get("productType") == "clips" else None
    play_count = item.get("videoPlayCount", item.get("videoViewCount"))
    return {
        "instagram_id": str(item["id"]),
        "short_code": item.get("shortCode"),
        "post_url": item.get("url"),
        "input_url": item.get("inputUrl"),
        "post_type": post_type,
        "caption": item.get("caption"),
        "posted_at": _parse_timestamp(item.get("timestamp")),
        "display_url": item.get("displayUrl"),
        "video_url": item.get("videoUrl"),
        "likes_count": _int_or_zero(item.get("likesCount")),
        "comments_count": _int_or_zero(item.get("commentsCount")),
        "video_play_count": _int_or_zero(play_count) if play_count is not None else None,
        "owner_id": str(item["ownerId"]) if item.get("ownerId") else None,
        "owner_username": item.get("ownerUsername"),
        "owner_full_name": item.get("ownerFullName"),
        "is_sponsored": bool(item.get("isSponsored")),
        "latest_comments": item.get("latestComments") or [],
        "hashtags": [str(tag) for tag in item.get("hashtags") or []],
    }
