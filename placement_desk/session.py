"""Signed-in user context and the client-local persisted state file."""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from placement_desk.errors import ConfigError, RemoteError
from placement_desk.schema import EntitySchema
from placement_desk.settings import Settings
from placement_desk.store import RestStore

STATE_FILE = "state.json"


class Role(str, Enum):
    PLACEMENT_OFFICER = "placement_officer"
    DEPARTMENT_COORDINATOR = "department_coordinator"
    MANAGEMENT = "management"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Role"]:
        if not value:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            known = ", ".join(role.value for role in cls)
            raise ConfigError(f"Unknown role '{value}'. Known: {known}") from exc


class LocalState:
    """JSON key-value file; every ``set`` writes through to disk."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] = {}
        if self.path.exists():
            try:
                loaded = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                raise ConfigError(f"Could not read state file {self.path}: {exc}") from exc
            if isinstance(loaded, dict):
                self._data = loaded

    @classmethod
    def in_dir(cls, state_dir: Path) -> "LocalState":
        return cls(Path(state_dir) / STATE_FILE)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(self._data, indent=2, ensure_ascii=False, sort_keys=True),
            encoding="utf-8",
        )

    def clear(self) -> None:
        self._data = {}
        if self.path.exists():
            self.path.unlink()


class Session:
    def __init__(
        self,
        store: RestStore,
        *,
        user_id: Optional[str] = None,
        role: Optional[Role] = None,
        department_id: Optional[str] = None,
        department_code: Optional[str] = None,
        state: Optional[LocalState] = None,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.role = role
        self.department_id = department_id
        self.department_code = department_code
        self.state = state
        self._cache: dict[str, list] = {}

    @property
    def access_token(self) -> str:
        return self.store.access_token if self.store is not None else ""

    @property
    def active(self) -> bool:
        return self.store is not None

    @classmethod
    def from_settings(cls, settings: Settings, store: Optional[RestStore] = None) -> "Session":
        store = store or RestStore.from_settings(settings)
        return cls(
            store,
            role=Role.parse(settings.role),
            department_id=settings.department_id,
            department_code=settings.department_id,
            state=LocalState.in_dir(settings.state_dir),
        )

    @classmethod
    def sign_in(
        cls,
        settings: Settings,
        email: str,
        password: str,
        store: Optional[RestStore] = None,
    ) -> "Session":
        """Password sign-in, then resolve role and department from the profile tables."""
        store = store or RestStore.from_settings(settings)
        token = store.sign_in_with_password(email, password)
        access_token = token.get("access_token")
        user = token.get("user") or {}
        if not access_token or not user.get("id"):
            raise RemoteError("Sign-in response did not include a user session")
        store.set_access_token(access_token)

        user_id = str(user["id"])
        roles = store.select_in("user_roles", "user_id", [user_id])
        profiles = store.select_in("profiles", "id", [user_id])
        role = Role.parse(roles[0].get("role")) if roles else None
        profile = profiles[0] if profiles else {}
        department_id = profile.get("department_id") or settings.department_id
        department_code = profile.get("department_code") or profile.get("department")

        return cls(
            store,
            user_id=user_id,
            role=role,
            department_id=None if department_id is None else str(department_id),
            department_code=department_code,
            state=LocalState.in_dir(settings.state_dir),
        )

    def new_record_defaults(self, schema: EntitySchema) -> dict[str, Any]:
        """Values pre-filled on records this user creates by hand."""
        defaults: dict[str, Any] = {}
        if self.role is Role.DEPARTMENT_COORDINATOR and self.department_code and "department" in schema.keys:
            defaults["department"] = self.department_code
        return defaults

    def cached(self, key: str) -> Optional[list]:
        return self._cache.get(key)

    def remember(self, key: str, value: list) -> None:
        self._cache[key] = value

    def close(self) -> None:
        self._cache.clear()
        self.user_id = None
        self.role = None
        self.department_id = None
        self.department_code = None
        if self.store is not None:
            self.store.close()
            self.store = None
