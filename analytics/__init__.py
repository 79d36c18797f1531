from .compute import batch_compute_daily_analytics, compute_keyword_analytics

__all__ = [
    "batch_compute_daily_analytics",
    "compute_keyword_analytics",
]
