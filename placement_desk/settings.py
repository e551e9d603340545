from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from placement_desk.errors import ConfigError

ENV_PREFIX = "PLACEMENT_DESK_"

DEFAULT_BATCH_SIZE = 50
DEFAULT_CONFIRM_THRESHOLD = 10
DEFAULT_TIMEOUT = 30
DEFAULT_STATE_DIR = Path.home() / ".placement-desk"


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{ENV_PREFIX}{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    api_url: str = ""
    api_key: str = ""
    access_token: str = ""
    state_dir: Path = DEFAULT_STATE_DIR
    batch_size: int = DEFAULT_BATCH_SIZE
    confirm_threshold: int = DEFAULT_CONFIRM_THRESHOLD
    timeout: int = DEFAULT_TIMEOUT
    role: str = ""
    department_id: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        environ = os.environ if environ is None else environ
        state_dir = environ.get(ENV_PREFIX + "STATE_DIR")
        return cls(
            api_url=environ.get(ENV_PREFIX + "API_URL", "").rstrip("/"),
            api_key=environ.get(ENV_PREFIX + "API_KEY", ""),
            access_token=environ.get(ENV_PREFIX + "ACCESS_TOKEN", ""),
            state_dir=Path(state_dir).expanduser() if state_dir else DEFAULT_STATE_DIR,
            batch_size=_env_int(environ, "BATCH_SIZE", DEFAULT_BATCH_SIZE),
            confirm_threshold=_env_int(environ, "CONFIRM_THRESHOLD", DEFAULT_CONFIRM_THRESHOLD),
            timeout=_env_int(environ, "TIMEOUT", DEFAULT_TIMEOUT),
            role=environ.get(ENV_PREFIX + "ROLE", "").strip(),
            department_id=environ.get(ENV_PREFIX + "DEPARTMENT_ID") or None,
        )

    def require_remote(self) -> None:
        if not self.api_url:
            raise ConfigError(f"{ENV_PREFIX}API_URL is not set")
        if not self.api_key:
            raise ConfigError(f"{ENV_PREFIX}API_KEY is not set")
