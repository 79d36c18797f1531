from __future__ import annotations

from dataclasses import dataclass
import logging
import os


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SERVICE_NAME = "MIDAS API"
SERVICE_VERSION = "1.0.0"


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        logging.getLogger(__name__).warning("Invalid integer for %s=%r, using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class AppConfig:
    service_name: str
    version: str
    environment: str
    cors_origins: tuple[str, ...]
    log_level: str


def load_app_config() -> AppConfig:
    origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    return AppConfig(
        service_name=SERVICE_NAME,
        version=SERVICE_VERSION,
        environment=os.getenv("APP_ENV", "development").strip() or "development",
        cors_origins=tuple(origin.strip() for origin in origins.split(",") if origin.strip()),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


def configure_logging(level: str | None = None) -> None:
    resolved = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, resolved, logging.INFO), format=LOG_FORMAT)
