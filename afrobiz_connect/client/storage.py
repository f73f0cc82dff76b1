"""Durable local storage for the session tokens, user record and app flags."""
import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .config import BASE_DIR
from .schemas import AuthTokens

STORAGE_FILE = BASE_DIR / "session.json"

ACCESS_TOKEN = "access_token"
REFRESH_TOKEN = "refresh_token"
TOKEN_EXPIRES_AT = "token_expires_at"
USER = "user"
FIRST_LAUNCH = "first_launch"
BIOMETRIC_ENABLED = "biometric_enabled"
SERVER_URL = "server_url"

# Clearing these keys is what "logged out" means.
SESSION_KEYS = (ACCESS_TOKEN, REFRESH_TOKEN, TOKEN_EXPIRES_AT, USER)


class SessionStorage:
    """Key/value state persisted as a single JSON document.

    Every write replaces the file atomically so a multi-key update (a rotated
    token pair, a sign-in) is never observed half-applied.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or STORAGE_FILE)

    def load_state(self) -> Dict[str, Any]:
        if self.path.exists():
            with self.path.open("r", encoding="utf-8") as f:
                return json.load(f)
        return {}

    def save_state(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".session-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        return self.load_state().get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, values: Dict[str, Any]) -> None:
        state = self.load_state()
        state.update(values)
        self.save_state(state)

    def remove_many(self, keys: Iterable[str]) -> None:
        state = self.load_state()
        for key in keys:
            state.pop(key, None)
        self.save_state(state)

    def store_tokens(self, tokens: AuthTokens, user: Optional[Dict[str, Any]] = None) -> None:
        """Replace the token pair (and optionally the user record) in one write."""
        values: Dict[str, Any] = {
            ACCESS_TOKEN: tokens.access_token,
            REFRESH_TOKEN: tokens.refresh_token,
            TOKEN_EXPIRES_AT: time.time() + tokens.expires_in if tokens.expires_in is not None else None,
        }
        if user is not None:
            values[USER] = user
        self.set_many(values)

    def clear_session(self) -> None:
        self.remove_many(SESSION_KEYS)

    def get_access_token(self) -> Optional[str]:
        return self.get(ACCESS_TOKEN)

    def get_refresh_token(self) -> Optional[str]:
        return self.get(REFRESH_TOKEN)

    def get_user(self) -> Optional[Dict[str, Any]]:
        return self.get(USER)
