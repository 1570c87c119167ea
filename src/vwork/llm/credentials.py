from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

from common.jsonio import load_json
from vwork.config import LLMConfig, get_vwork_home, resolve_secret
from vwork.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
}

# Refresh a stored token this many seconds before it actually expires.
EXPIRY_SKEW_S = 60


def backend_for_model(model: str) -> str:
    if "/" in model:
        return model.split("/", 1)[0].lower()
    lowered = model.lower()
    if lowered.startswith("claude"):
        return "anthropic"
    if lowered.startswith(("gpt", "o1", "o3", "o4")):
        return "openai"
    return lowered


@dataclass(frozen=True, slots=True)
class Credential:
    api_key: str | None
    source: str
    expires_at: float | None = None

    def expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or time.time()) >= self.expires_at - EXPIRY_SKEW_S


class CredentialCache:
    """Resolves the API credential for one provider instance.

    Precedence: stored token file ($VWORK_HOME/auth/<backend>.json), then
    ``llm.api_key_env``, then the backend's conventional env var.
    """

    def __init__(self, config: LLMConfig, model: str, auth_dir: Path | None = None):
        self.config = config
        self.model = model
        self.auth_dir = auth_dir or (get_vwork_home() / "auth")
        self._current: Credential | None = None
        self._stored_mtime: float | None = None

    @property
    def backend(self) -> str:
        return backend_for_model(self.model)

    @property
    def token_path(self) -> Path:
        return self.auth_dir / f"{self.backend}.json"

    def set_model(self, model: str) -> None:
        if backend_for_model(model) != self.backend:
            self._current = None
            self._stored_mtime = None
        self.model = model

    def refresh(self) -> Credential:
        stored = self._load_stored()
        if stored is not None:
            if stored.expired():
                raise ProviderError(
                    f"Stored {self.backend} token at {self.token_path} has expired; log in again"
                )
            self._current = stored
            return stored

        if self._current is not None and self._current.source != "stored":
            return self._current

        configured = resolve_secret(self.config.api_key_env)
        if configured:
            self._current = Credential(api_key=configured, source="config")
            return self._current

        env_name = DEFAULT_KEY_ENV.get(self.backend)
        env_value = os.environ.get(env_name) if env_name else None
        # litellm falls back to its own env lookup when api_key is None.
        self._current = Credential(api_key=env_value or None, source="env")
        return self._current

    def _load_stored(self) -> Credential | None:
        path = self.token_path
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            self._stored_mtime = None
            return None

        if (
            self._current is not None
            and self._current.source == "stored"
            and self._stored_mtime == mtime
        ):
            return self._current

        data = load_json(path)
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed token file {path}")
            return None

        key = data.get("access_token") or data.get("api_key")
        if not isinstance(key, str) or not key:
            logger.warning(f"Token file {path} has no access_token or api_key")
            return None

        expires_at = data.get("expires_at")
        self._stored_mtime = mtime
        logger.debug(f"Loaded {self.backend} credential from {path}")
        return Credential(
            api_key=key,
            source="stored",
            expires_at=float(expires_at) if isinstance(expires_at, (int, float)) else None,
        )
