import os
import logging
from dataclasses import dataclass

from dotenv import load_dotenv

from classrecord.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Operational limits; each can be overridden from the environment
DEFAULT_ATTENDANCE_MAX_BATCH = 500
DEFAULT_ATTENDANCE_UPDATE_CHUNK = 50
DEFAULT_STORE_TIMEOUT_SECONDS = 12.0
DEFAULT_FANOUT_WORKERS = 4


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class EngineConfig:
    attendance_max_batch: int = DEFAULT_ATTENDANCE_MAX_BATCH
    attendance_update_chunk: int = DEFAULT_ATTENDANCE_UPDATE_CHUNK
    store_timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS
    fanout_workers: int = DEFAULT_FANOUT_WORKERS

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Read limits from the process environment and any .env file."""
        load_dotenv()
        config = cls(
            attendance_max_batch=_env_number(
                "ATTENDANCE_MAX_BATCH", DEFAULT_ATTENDANCE_MAX_BATCH, int
            ),
            attendance_update_chunk=_env_number(
                "ATTENDANCE_UPDATE_CHUNK", DEFAULT_ATTENDANCE_UPDATE_CHUNK, int
            ),
            store_timeout_seconds=_env_number(
                "STORE_TIMEOUT_SECONDS", DEFAULT_STORE_TIMEOUT_SECONDS, float
            ),
            fanout_workers=_env_number(
                "FANOUT_WORKERS", DEFAULT_FANOUT_WORKERS, int
            ),
        )
        logger.info(f"Engine limits loaded: {config}")
        return config
