from __future__ import annotations

from dataclasses import dataclass


@dataclass(eq=False)
class ScrapingError(Exception):
    code: str
    message: str
    provider: str
    retryable: bool = False
    status_code: int | None = None

    def __str__(self) -> str:
        return f"{self.code}({self.provider}): {self.message}"


class ApifyError(ScrapingError):
    pass


class GoogleMapsError(ScrapingError):
    pass


def classify_http_status(status_code: int) -> tuple[str, str, bool]:
    """Map an upstream HTTP status to ``(error_code, message, retryable)``."""
    if status_code in (401, 403):
        return "upstream_auth", f"access denied ({status_code})", False
    if status_code == 404:
        return "upstream_not_found", f"upstream endpoint not found ({status_code})", False
    if status_code == 429:
        return "upstream_rate_limited", f"upstream rate limited ({status_code})", True
    if status_code >= 500:
        return "upstream_unavailable", f"upstream server error ({status_code})", True
    return "upstream_error", f"upstream request failed ({status_code})", False
