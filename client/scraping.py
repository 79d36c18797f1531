from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Any, Callable, Optional, Sequence

import requests


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class ScrapingResponse:
    success: bool
    message: str
    data: Any = None
    error: Optional[str] = None
    partial: bool = False


@dataclass
class MidasClient:
    """Small HTTP client for the scraping endpoints of the API."""

    base_url: str
    user_id: str
    user_email: str
    timeout_s: float = 30.0
    session: requests.Session = field(default_factory=requests.Session)

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-User-Id": self.user_id,
            "X-User-Email": self.user_email,
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"

    @staticmethod
    def _error_detail(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            detail = body.get("message") or body.get("detail") or body.get("error")
            if detail:
                return str(detail)
        return f"HTTP {response.status_code}"

    def start_instagram_scraping(
        self,
        keyword: str,
        max_results: int = 1,
        keyword_id: int | None = None,
    ) -> ScrapingResponse:
        payload: dict[str, Any] = {
            "url": keyword,
            "maxResults": max_results or 1,
            "userEmail": self.user_email,
            "userid": self.user_id,
            "scrapingType": "instagram",
        }
        if keyword_id is not None:
            payload["keywordId"] = keyword_id
        try:
            response = self.session.post(
                self._url("/api/scraping"),
                json=payload,
                headers=self._headers(),
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            logger.warning("Instagram scraping request for %r failed: %s", keyword, exc)
            return ScrapingResponse(
                success=False,
                message="Failed to start Instagram scraping",
                error=str(exc) or type(exc).__name__,
            )
        if not response.ok:
            return ScrapingResponse(
                success=False,
                message="Failed to start Instagram scraping",
                error=self._error_detail(response),
            )
        return ScrapingResponse(
            success=True,
            message="Instagram scraping started successfully",
            data=response.json(),
        )

    def start_bulk_instagram_scraping(
        self,
        keywords: Sequence[str],
        max_results: int = 1,
        on_progress: ProgressCallback | None = None,
        delay_s: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> ScrapingResponse:
        """Start one scrape per keyword, one request at a time.

        Fails only when every request failed. Any partial failure still
        returns ``success=True`` with the failures listed in
        ``data["errors"]`` and ``partial`` set.
        """
        total = len(keywords)
        if total == 0:
            return ScrapingResponse(
                success=False,
                message="No keywords provided",
                error="keywords list is empty",
            )

        successful: list[dict[str, Any]] = []
        errors: list[str] = []
        for index, keyword in enumerate(keywords):
            if on_progress is not None:
                on_progress(index, total, keyword)
            result = self.start_instagram_scraping(keyword, max_results=max_results)
            if result.success:
                successful.append({"keyword": keyword, "result": result.data})
            else:
                errors.append(f"{keyword}: {result.error}")
            if index < total - 1 and delay_s > 0:
                sleep(delay_s)

        if on_progress is not None:
            on_progress(total, total, "Completed")

        if len(errors) == total:
            return ScrapingResponse(
                success=False,
                message="All scraping requests failed",
                error="; ".join(errors),
            )
        return ScrapingResponse(
            success=True,
            message=(
                f"Bulk scraping completed. {len(successful)} successful, {len(errors)} failed"
            ),
            data={
                "successful": successful,
                "errors": errors,
                "totalProcessed": total,
            },
            partial=bool(errors),
        )

    def get_job(self, job_id: int) -> dict[str, Any]:
        response = self.session.get(
            self._url(f"/api/scraping/jobs/{job_id}"),
            headers=self._headers(),
            timeout=self.timeout_s,
        )
        response.raise_for_status()
        return response.json()

    def wait_for_job(
        self,
        job_id: int,
        *,
        poll_interval_s: float = 5.0,
        timeout_s: float = 600.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> dict[str, Any]:
        waited = 0.0
        while True:
            job = self.get_job(job_id)
            if job.get("status") in {"completed", "failed", "cancelled"}:
                return job
            if waited >= timeout_s:
                raise TimeoutError(f"Scraping job {job_id} still {job.get('status')} after {timeout_s}s")
            sleep(poll_interval_s)
            waited += poll_interval_s
