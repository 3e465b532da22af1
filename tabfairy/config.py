"""Monitor configuration: defaults, environment overrides, explicit arguments."""

import logging
import os
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9222
DEFAULT_POLL_INTERVAL = 3.0  # seconds
DEFAULT_CACHE_TTL = 5.0  # seconds
DEFAULT_BATCH_SIZE = 5


def _from_env(name: str, parse: Callable[[str], Any], default: Any) -> Any:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return parse(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default!r}")
        return default


class MonitorConfig:
    """Resolved settings for one monitoring session.

    Each argument left as None falls back to its environment variable
    (CHROME_DEBUG_HOST, CHROME_DEBUG_PORT, TABFAIRY_POLL_INTERVAL,
    TABFAIRY_CACHE_TTL, TABFAIRY_BATCH_SIZE, TABFAIRY_SEED), then to the
    built-in default.
    """

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None,
                 polling_interval: Optional[float] = None,
                 cache_ttl: Optional[float] = None,
                 batch_size: Optional[int] = None,
                 seed: Optional[int] = None):
        self.host = host if host is not None else _from_env("CHROME_DEBUG_HOST", str, DEFAULT_HOST)
        self.port = port if port is not None else _from_env("CHROME_DEBUG_PORT", int, DEFAULT_PORT)
        self.polling_interval = (
            polling_interval if polling_interval is not None
            else _from_env("TABFAIRY_POLL_INTERVAL", float, DEFAULT_POLL_INTERVAL)
        )
        self.cache_ttl = (
            cache_ttl if cache_ttl is not None
            else _from_env("TABFAIRY_CACHE_TTL", float, DEFAULT_CACHE_TTL)
        )
        self.batch_size = (
            batch_size if batch_size is not None
            else _from_env("TABFAIRY_BATCH_SIZE", int, DEFAULT_BATCH_SIZE)
        )
        self.seed = seed if seed is not None else _from_env("TABFAIRY_SEED", int, None)
        self._validate()

    def _validate(self) -> None:
        if self.polling_interval <= 0:
            raise ValueError(f"polling_interval must be positive, got {self.polling_interval}")
        if self.cache_ttl < 0:
            raise ValueError(f"cache_ttl must not be negative, got {self.cache_ttl}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "pollingInterval": self.polling_interval,
            "cacheTTL": self.cache_ttl,
            "batchSize": self.batch_size,
            "seed": self.seed,
        }
