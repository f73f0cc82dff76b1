"""Client configuration values."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

BASE_DIR = Path.home() / ".afrobiz_connect"
API_BASE_URL = "https://api.afrobizconnect.com"
API_VERSION = "v1"
REQUEST_TIMEOUT_SECONDS = 10.0
WS_URL = "wss://api.afrobizconnect.com/ws"
RECONNECT_BASE_DELAY = 1.0
RECONNECT_MAX_DELAY = 30.0
RECONNECT_MAX_ATTEMPTS = 5
OUTBOX_LIMIT = 100
MESSAGES_PAGE_SIZE = 50


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return float(raw)


@dataclass
class ClientConfig:
    api_base_url: str = API_BASE_URL
    api_version: str = API_VERSION
    timeout: float = REQUEST_TIMEOUT_SECONDS
    ws_url: str = WS_URL
    reconnect_base_delay: float = RECONNECT_BASE_DELAY
    reconnect_max_delay: float = RECONNECT_MAX_DELAY
    reconnect_max_attempts: int = RECONNECT_MAX_ATTEMPTS
    outbox_limit: int = OUTBOX_LIMIT
    messages_page_size: int = MESSAGES_PAGE_SIZE
    typing_ttl: Optional[float] = None
    storage_file: Path = field(default_factory=lambda: BASE_DIR / "session.json")
    log_file: Path = field(default_factory=lambda: BASE_DIR / "client.log")

    @classmethod
    def from_env(cls) -> "ClientConfig":
        config = cls()
        config.api_base_url = os.getenv("AFROBIZ_API_URL", config.api_base_url)
        config.api_version = os.getenv("AFROBIZ_API_VERSION", config.api_version)
        config.timeout = _env_float("AFROBIZ_TIMEOUT", config.timeout)
        config.ws_url = os.getenv("AFROBIZ_WS_URL", config.ws_url)
        config.typing_ttl = _env_float("AFROBIZ_TYPING_TTL", config.typing_ttl)
        if os.getenv("AFROBIZ_STORAGE_FILE"):
            config.storage_file = Path(os.environ["AFROBIZ_STORAGE_FILE"]).expanduser()
        if os.getenv("AFROBIZ_LOG_FILE"):
            config.log_file = Path(os.environ["AFROBIZ_LOG_FILE"]).expanduser()
        return config
