from __future__ import annotations

import re
from typing import Any, Iterable, Literal


KEYWORD_PATTERN = re.compile(r"^[\w\s\-#@]+$")
INSTAGRAM_KEYWORD_PATTERN = re.compile(r"^[a-zA-Z0-9_]+$")
MAX_KEYWORD_LENGTH = 255

Difficulty = Literal["easy", "medium", "hard"]


def sanitize_keyword(keyword: str) -> str:
    """Normalize free text into the comparable keyword form.

    Lower-cases, collapses runs of whitespace and drops characters outside
    the keyword alphabet (word characters, spaces, ``-``, ``#`` and ``@``).
    """
    collapsed = re.sub(r"\s+", " ", keyword.strip().lower())
    return re.sub(r"[^\w\s\-#@]", "", collapsed)


def validate_keyword_text(value: str) -> str:
    trimmed = value.strip()
    if not trimmed:
        raise ValueError("Keyword cannot be empty")
    if len(trimmed) > MAX_KEYWORD_LENGTH:
        raise ValueError("Keyword too long")
    if not KEYWORD_PATTERN.match(trimmed):
        raise ValueError("Keyword contains invalid characters")
    return trimmed


def validate_instagram_keyword(keyword: str) -> str:
    """Return the hashtag form of ``keyword`` or raise ``ValueError``."""
    if not keyword or not keyword.strip():
        raise ValueError("Keyword cannot be empty")
    cleaned = keyword.strip()
    if cleaned.startswith("#"):
        cleaned = cleaned[1:]
    if not cleaned:
        raise ValueError("Keyword cannot be just a hashtag symbol")
    if not INSTAGRAM_KEYWORD_PATTERN.match(cleaned):
        raise ValueError("Keyword can only contain letters, numbers, and underscores")
    return cleaned


def calculate_keyword_difficulty(
    search_volume: int | None = None,
    competition_score: float | None = None,
) -> Difficulty:
    if search_volume is None or competition_score is None:
        return "medium"
    if search_volume < 1000 and competition_score < 0.3:
        return "easy"
    if search_volume > 10000 and competition_score > 0.7:
        return "hard"
    return "medium"


def calculate_priority_score(
    search_volume: int | None,
    competition_score: float | None,
    performance_metrics: dict[str, Any] | None,
) -> int:
    volume_score = min(40.0, (search_volume or 0) / 1000)
    competition_factor = 1.0 if competition_score is None else 2.0 - competition_score
    metrics = performance_metrics or {}
    try:
        ctr = float(metrics.get("ctr") or 0)
    except (TypeError, ValueError):
        ctr = 0.0
    performance_factor = 1.0 + ctr / 100
    score = volume_score * competition_factor * performance_factor
    return max(1, min(100, round(score)))


def priority_from_score(score: int) -> int:
    return max(1, min(5, score // 20 + 1))


def format_keyword_stats(keywords: Iterable[Any]) -> dict:
    by_status: dict[str, int] = {}
    by_priority: dict[int, int] = {}
    total = 0
    priority_sum = 0
    for row in keywords:
        total += 1
        status = getattr(row, "status", None) or "unknown"
        priority = getattr(row, "priority", None) or 1
        by_status[status] = by_status.get(status, 0) + 1
        by_priority[priority] = by_priority.get(priority, 0) + 1
        priority_sum += priority
    return {
        "total": total,
        "by_status": by_status,
        "by_priority": by_priority,
        "average_priority": (priority_sum / total) if total else 0,
    }
