from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Optional

APP_VERSION = "1.0.0"

DEFAULT_REFRESH_INTERVAL_SECONDS = 60.0

SERVER_HOST = "0.0.0.0"
SERVER_PORT = int(os.getenv("PORT", "8000"))

SQLITE_SUFFIXES = (".db", ".sqlite", ".sqlite3")


class ConfigError(ValueError):
    """Raised when required settings are missing or out of range."""


@dataclass
class Settings:
    current_path: str = ""
    history_path: Optional[str] = None  # None = no history source
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL_SECONDS  # seconds
    refresh_log_path: str = ""          # JSONL log of refreshes; "" disables

    def validate(self) -> None:
        """Check settings before the refresh loop starts."""
        if not self.current_path:
            raise ConfigError("current data path is required (GASTRAK_CURRENT or --current)")
        if not math.isfinite(self.refresh_interval) or self.refresh_interval <= 0:
            raise ConfigError(f"refresh interval must be a positive number, got {self.refresh_interval}")


def settings_from_env() -> Settings:
    """Build Settings from GASTRAK_* environment variables."""
    interval = os.getenv("GASTRAK_REFRESH_INTERVAL", "")
    try:
        refresh_interval = float(interval) if interval else DEFAULT_REFRESH_INTERVAL_SECONDS
    except ValueError:
        raise ConfigError(f"GASTRAK_REFRESH_INTERVAL is not a number: {interval!r}") from None
    return Settings(
        current_path=os.getenv("GASTRAK_CURRENT", ""),
        history_path=os.getenv("GASTRAK_HISTORY", "") or None,
        refresh_interval=refresh_interval,
        refresh_log_path=os.getenv("REFRESH_LOG_FILE", ""),
    )
