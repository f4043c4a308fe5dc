"""
Settings loaded from environment variables.

DATABASE_PATH keeps its unprefixed name for compatibility with existing
deployments; everything else uses the TASK_TRACKER_ prefix.
"""

import logging
import os
from dataclasses import dataclass

ENV_PREFIX = "TASK_TRACKER"

logger = logging.getLogger(__name__)


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}; using {default}")
        return default


@dataclass(frozen=True)
class Settings:
    database_path: str = "task_tracker.db"
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            database_path=_env("DATABASE_PATH", defaults.database_path),
            host=_env(_k("HOST"), defaults.host),
            port=_env_int(_k("PORT"), defaults.port),
            log_level=_env(_k("LOG_LEVEL"), defaults.log_level).upper(),
            busy_timeout_ms=_env_int(_k("BUSY_TIMEOUT_MS"), defaults.busy_timeout_ms),
        )


def configure_logging(level: str) -> None:
    """Configure root logging once for CLI and server entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
