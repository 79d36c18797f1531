from .errors import ApifyError, GoogleMapsError, ScrapingError, classify_http_status

__all__ = [
    "ApifyError",
    "GoogleMapsError",
    "ScrapingError",
    "classify_http_status",
]
