"""Configuration loading.

Settings come from environment variables (a ``.env`` file is loaded by the
entry point) with an optional JSON file at ~/.kaigo/config.json:

```json
{
  "client": {"base_url": "https://kaigo.example.jp", "timeout": 10, "floor": "2階"},
  "cache": {"placeholders_for_future": false, "utc_offset_hours": 9}
}
```

Environment variables win over the file.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .records.clock import DEFAULT_UTC_OFFSET_HOURS
from .records.kinds import KINDS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".kaigo" / "config.json"


@dataclass
class CacheConfig:
    """Configuration for the record cache.

    Attributes:
        placeholders_for_future: Synthesize empty records for days after today.
        utc_offset_hours: Facility wall-clock offset from UTC.
    """

    placeholders_for_future: bool = False
    utc_offset_hours: float = DEFAULT_UTC_OFFSET_HOURS

    def __post_init__(self) -> None:
        if not -12 <= self.utc_offset_hours <= 14:
            raise ValueError("utc_offset_hours must be between -12 and 14")


@dataclass
class ClientConfig:
    """Configuration for talking to the care-records server."""

    base_url: str = "http://localhost:5000"
    session_cookie: str | None = None
    timeout: float = 10.0
    kind: str = "medication"
    floor: str = "all"
    log_dir: Path | None = None
    telegram_token: str | None = None
    telegram_chat_id: str | None = None

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.kind not in KINDS:
            raise ValueError(f"Unknown record kind '{self.kind}'")
        if self.log_dir is None:
            self.log_dir = Path.home() / ".kaigo" / "logs"


def load_config(config_path: Path | None = None) -> tuple[ClientConfig, CacheConfig]:
    """Load configuration from the JSON file and the environment.

    Args:
        config_path: Path to config file. Uses DEFAULT_CONFIG_PATH if None.

    Returns:
        Client and cache configuration.
    """
    data = _read_file(config_path or DEFAULT_CONFIG_PATH)
    client_data = dict(data.get("client", {})) if isinstance(data.get("client"), dict) else {}
    cache_data = dict(data.get("cache", {})) if isinstance(data.get("cache"), dict) else {}

    env_client = {
        "base_url": os.getenv("KAIGO_BASE_URL"),
        "session_cookie": os.getenv("KAIGO_SESSION"),
        "timeout": os.getenv("KAIGO_TIMEOUT"),
        "kind": os.getenv("KAIGO_KIND"),
        "floor": os.getenv("KAIGO_FLOOR"),
        "log_dir": os.getenv("KAIGO_LOG_DIR"),
        "telegram_token": os.getenv("TELEGRAM_TOKEN"),
        "telegram_chat_id": os.getenv("TELEGRAM_CHAT_ID"),
    }
    client_data.update({k: v for k, v in env_client.items() if v})

    offset = os.getenv("KAIGO_UTC_OFFSET")
    if offset:
        cache_data["utc_offset_hours"] = offset

    return _parse_client(client_data), _parse_cache(cache_data)


def _read_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        return {}
    except OSError as e:
        logger.warning("Cannot read %s: %s. Using defaults.", path, e)
        return {}

    if not isinstance(data, dict):
        logger.warning("Config in %s is not an object. Using defaults.", path)
        return {}
    return data


def _parse_client(data: dict[str, Any]) -> ClientConfig:
    timeout = data.get("timeout", 10.0)
    try:
        timeout = float(timeout)
    except (TypeError, ValueError):
        logger.warning("Invalid timeout %r, using 10s", timeout)
        timeout = 10.0

    log_dir = data.get("log_dir")
    return ClientConfig(
        base_url=str(data.get("base_url", ClientConfig.base_url)),
        session_cookie=data.get("session_cookie"),
        timeout=timeout,
        kind=str(data.get("kind", ClientConfig.kind)),
        floor=str(data.get("floor", ClientConfig.floor)),
        log_dir=Path(log_dir).expanduser() if log_dir else None,
        telegram_token=data.get("telegram_token"),
        telegram_chat_id=data.get("telegram_chat_id"),
    )


def _parse_cache(data: dict[str, Any]) -> CacheConfig:
    offset = data.get("utc_offset_hours", DEFAULT_UTC_OFFSET_HOURS)
    try:
        offset = float(offset)
    except (TypeError, ValueError):
        logger.warning("Invalid utc_offset_hours %r, using %s", offset, DEFAULT_UTC_OFFSET_HOURS)
        offset = DEFAULT_UTC_OFFSET_HOURS

    future = data.get("placeholders_for_future", False)
    if not isinstance(future, bool):
        future = False

    return CacheConfig(placeholders_for_future=future, utc_offset_hours=offset)
