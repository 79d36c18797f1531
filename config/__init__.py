from .settings import (
    AppConfig,
    configure_logging,
    env_flag,
    env_int,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "configure_logging",
    "env_flag",
    "env_int",
    "load_app_config",
]
