from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import math
import os
import re
from typing import Any, Optional
from urllib.parse import quote_plus

import requests

from config import env_int

from .errors import GoogleMapsError, classify_http_status


logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0 Safari/537.36"
)


@dataclass(frozen=True)
class GoogleMapsConfig:
    proxy_url: str | None
    timeout_s: int
    language: str
    zoom: int


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


def load_google_maps_config() -> GoogleMapsConfig:
    proxy_url = os.getenv("GOOGLE_MAPS_PROXY_URL", "").strip() or None
    return GoogleMapsConfig(
        proxy_url=proxy_url,
        timeout_s=env_int("GOOGLE_MAPS_TIMEOUT_S", 30),
        language=os.getenv("GOOGLE_MAPS_LANGUAGE", "en").strip() or "en",
        zoom=env_int("GOOGLE_MAPS_ZOOM", 14),
    )


def safe_get(node: Any, *indices: int) -> Any:
    """Walk nested list indexes, returning None when any step is missing."""
    current = node
    for index in indices:
        if not isinstance(current, (list, tuple)):
            return None
        if index < 0 or index >= len(current):
            return None
        current = current[index]
    return current


def build_maps_search_url(
    query: str,
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    zoom: Optional[float] = None,
) -> str:
    encoded = quote_plus(query)
    if lat is not None and lon is not None:
        zoom_value = 15.0 if zoom is None or not math.isfinite(float(zoom)) else float(zoom)
        zoom_str = str(int(zoom_value)) if zoom_value.is_integer() else f"{zoom_value:.6g}"
        return f"https://www.google.com/maps/search/{encoded}/@{lat},{lon},{zoom_str}z"
    return f"https://www.google.com/maps/search/{encoded}"


def fetch_search_page(
    config: GoogleMapsConfig,
    url: str,
    *,
    session: requests.Session | None = None,
) -> str:
    http = session or requests.Session()
    proxies = None
    if config.proxy_url:
        proxies = {"http": config.proxy_url, "https": config.proxy_url}
    headers = {"User-Agent": USER_AGENT, "Accept-Language": config.language}
    try:
        response = http.get(
            url,
            headers=headers,
            params={"hl": config.language},
            proxies=proxies,
            timeout=config.timeout_s,
        )
    except requests.Timeout as exc:
        raise GoogleMapsError(
            code="upstream_timeout",
            message=f"request timeout after {config.timeout_s}s",
            provider="google_maps",
            retryable=True,
        ) from exc
    except requests.RequestException as exc:
        raise GoogleMapsError(
            code="upstream_unreachable",
            message=str(exc) or type(exc).__name__,
            provider="google_maps",
            retryable=True,
        ) from exc

    if response.status_code >= 400:
        code, message, retryable = classify_http_status(response.status_code)
        raise GoogleMapsError(
            code=code,
            message=message,
            provider="google_maps",
            retryable=retryable,
            status_code=response.status_code,
        )
    return response.text


def extract_app_state(page_source: str) -> Optional[list]:
    match = re.search(
        r"window\.APP_INITIALIZATION_STATE=(.*?);window\.APP_FLAGS",
        page_source,
        re.DOTALL,
    )
    if not match:
        return None
    try:
        raw = match.group(1).replace("\n", "").replace("undefined", "null")
        return json.loads(raw)
    except ValueError as exc:
        logger.debug("Failed to parse app state: %s", exc)
        return None


def parse_results_from_app_state(page_source: str) -> list[dict[str, Any]]:
    """Parse search results embedded in the page's initialization state."""
    state = extract_app_state(page_source)
    if not state:
        return []

    blob = safe_get(state, 3, 2)
    if not isinstance(blob, str):
        return []
    try:
        search_data = json.loads(blob.replace(")]}'\n", "", 1))
    except ValueError as exc:
        logger.debug("Failed to parse search data blob: %s", exc)
        return []

    entries = safe_get(search_data, 64) or []
    parsed: list[dict[str, Any]] = []
    for entry in entries:
        main = safe_get(entry, 1)
        if not isinstance(main, list):
            continue
        name = safe_get(main, 11) or safe_get(main, 12)
        if not name:
            continue

        cid = safe_get(main, 10)
        place_id = safe_get(main, 78)
        address_lines = safe_get(main, 2) or []
        address = (
            safe_get(main, 18)
            or safe_get(main, 39)
            or ", ".join(part for part in address_lines if part)
            or None
        )
        phone_info = safe_get(main, 178, 0)
        maps_url = None
        if place_id:
            maps_url = f"https://www.google.com/maps/place/?q=place_id:{place_id}"
        elif cid:
            maps_url = f"https://www.google.com/maps?cid={cid}"

        parsed.append(
            {
                "name": name,
                "place_id": place_id or cid,
                "maps_url": maps_url,
                "website": safe_get(main, 7, 0),
                "phone": safe_get(phone_info, 0),
                "address": address,
                "latitude": safe_get(main, 9, 2),
                "longitude": safe_get(main, 9, 3),
                "rating": safe_get(main, 4, 7),
                "reviews": safe_get(main, 4, 8),
                "price": safe_get(main, 4, 2) or safe_get(main, 4, 10),
                "categories": safe_get(main, 13) or [],
                "image_url": safe_get(main, 72, 0, 0, 6, 0),
            }
        )

    logger.info("Parsed %s results from app state", len(parsed))
    return parsed


def quality_score(result: dict[str, Any]) -> int:
    """Score 1..5 from how complete the contact data of a place is."""
    present = sum(
        1
        for key in ("address", "phone", "website", "rating", "categories")
        if result.get(key)
    )
    return max(1, present)


def _float_or_none(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def to_place_row(result: dict[str, Any], *, search_query: str, input_url: str) -> dict[str, Any]:
    rating = _float_or_none(result.get("rating"))
    if rating is not None:
        rating = max(0.0, min(5.0, rating))
    try:
        review_count = max(0, int(result.get("reviews") or 0))
    except (TypeError, ValueError):
        review_count = 0
    lat = _float_or_none(result.get("latitude"))
    lng = _float_or_none(result.get("longitude"))
    categories = [str(item) for item in result.get("categories") or [] if item]
    return {
        "place_id": str(result["place_id"]) if result.get("place_id") else None,
        "place_name": result["name"],
        "address": result.get("address"),
        "phone_number": result.get("phone"),
        "website": result.get("website"),
        "rating": rating,
        "review_count": review_count,
        "category": categories[0] if categories else None,
        "coordinates": {"lat": lat, "lng": lng} if lat is not None and lng is not None else None,
        "image_url": result.get("image_url"),
        "price_range": result.get("price"),
        "search_query": search_query,
        "input_url": result.get("maps_url") or input_url,
        "quality_score": quality_score(result),
        "meta": {"categories": categories},
    }


def search_places(
    config: GoogleMapsConfig,
    query: str,
    *,
    coordinates: Coordinates | None = None,
    max_results: int = 20,
    session: requests.Session | None = None,
) -> tuple[str, list[dict[str, Any]]]:
    """Fetch one search page and return ``(url, place rows)``."""
    if query.lower().startswith(("http://", "https://")):
        url = query
    elif coordinates is not None:
        url = build_maps_search_url(query, coordinates.lat, coordinates.lng, config.zoom)
    else:
        url = build_maps_search_url(query)
    page = fetch_search_page(config, url, session=session)
    results = parse_results_from_app_state(page)
    if not results and "APP_INITIALIZATION_STATE" not in page:
        raise GoogleMapsError(
            code="unexpected_response",
            message="search page did not contain result state",
            provider="google_maps",
        )
    rows = [to_place_row(result, search_query=query, input_url=url) for result in results]
    return url, rows[: max(1, max_results)]
