"""Environment-driven configuration for the desk process."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .models import DeskSettings

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9093

# Settings field -> environment variable.
SETTINGS_ENV = {
    "smart_mode": "SMART_MODE",
    "smart_mode_min_pnl": "SMART_MODE_MIN_PNL",
    "trust_low_confidence": "TRUST_LOW_CONFIDENCE",
    "auto_mode": "AUTO_MODE",
    "entry_grace_seconds": "ENTRY_GRACE_SECONDS",
    "reversal_grace_seconds": "REVERSAL_GRACE_SECONDS",
    "max_pending_per_symbol": "MAX_PENDING_PER_SYMBOL",
    "pnl_poll_interval_seconds": "PNL_POLL_INTERVAL_SECONDS",
}


@dataclass(frozen=True)
class IngressConfig:
    """Where the HTTP/WebSocket ingress listens."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "info"

    def __post_init__(self) -> None:
        if not self.host.strip():
            raise ValueError("host must not be empty")
        if not 0 < self.port < 65536:
            raise ValueError("port must be between 1 and 65535")


def load_env_config(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    env = os.environ if environ is None else environ
    config = {field: env.get(name, "") for field, name in SETTINGS_ENV.items()}
    config.update(
        {
            "telegram_token": env.get("TELEGRAM_BOT_TOKEN", ""),
            "telegram_chat_id": env.get("TELEGRAM_CHAT_ID", ""),
            "telegram_proxy": env.get("TELEGRAM_PROXY", ""),
            "host": env.get("DESK_HOST", ""),
            "port": env.get("DESK_PORT", ""),
        }
    )
    return config


def settings_from_env(environ: Optional[Mapping[str, str]] = None) -> DeskSettings:
    config = load_env_config(environ)
    return DeskSettings.from_mapping({field: config[field] for field in SETTINGS_ENV})
