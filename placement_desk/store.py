"""
store.py - thin CRUD + RPC wrapper over the supabase client.

Every call builds one PostgREST query with ``client.table(...)`` or
``client.rpc(...)`` and executes it. Backend errors and transport failures
become ``RemoteError`` carrying the backend's message and, where the backend
reports one, an HTTP-style status. Schema lives on the server; this wrapper
only moves rows.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

import httpx
from supabase import AuthError, Client, ClientOptions, PostgrestAPIError, SupabaseException, create_client

from placement_desk.errors import ConfigError, RemoteError
from placement_desk.settings import Settings


def api_status(exc: PostgrestAPIError) -> Optional[int]:
    """PostgREST codes are SQLSTATEs or ``PGRST...``; only three-digit ones are HTTP statuses."""
    code = str(getattr(exc, "code", "") or "")
    if len(code) == 3 and code.isdigit():
        return int(code)
    return None


def api_message(exc: PostgrestAPIError) -> str:
    for attr in ("message", "details", "hint"):
        value = getattr(exc, attr, None)
        if value:
            return str(value)
    return str(exc) or "Backend request failed"


class RestStore:
    def __init__(self, client: Client, *, api_key: str, access_token: str = "") -> None:
        self.client = client
        self.api_key = api_key
        self.set_access_token(access_token)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RestStore":
        settings.require_remote()
        try:
            client = create_client(
                settings.api_url,
                settings.api_key,
                options=ClientOptions(postgrest_client_timeout=settings.timeout),
            )
        except SupabaseException as exc:
            raise ConfigError(f"Could not create backend client: {exc}") from exc
        return cls(client, api_key=settings.api_key, access_token=settings.access_token)

    def set_access_token(self, token: str) -> None:
        self.access_token = token or ""
        # Anonymous calls authenticate with the API key itself.
        self.client.postgrest.auth(self.access_token or self.api_key)

    def close(self) -> None:
        self.set_access_token("")

    # ── transport ─────────────────────────────────────────────────────────

    def execute(self, query: Any, description: str) -> Any:
        try:
            response = query.execute()
        except PostgrestAPIError as exc:
            raise RemoteError(api_message(exc), status=api_status(exc)) from exc
        except httpx.HTTPError as exc:
            raise RemoteError(f"{description} failed: {exc}") from exc
        return response.data

    # ── tables ────────────────────────────────────────────────────────────

    def select_all(self, table: str, order_by: Optional[str] = None, descending: bool = False) -> list[dict]:
        query = self.client.table(table).select("*")
        if order_by:
            query = query.order(order_by, desc=descending)
        return self.execute(query, f"select {table}") or []

    def select_in(self, table: str, column: str, values: Iterable[Any]) -> list[dict]:
        values = [str(value) for value in dict.fromkeys(values) if value not in (None, "")]
        if not values:
            return []
        query = self.client.table(table).select("*").in_(column, values)
        return self.execute(query, f"select {table}") or []

    def insert(self, table: str, rows: list[dict]) -> list[dict]:
        if not rows:
            return []
        return self.execute(self.client.table(table).insert(rows), f"insert {table}") or []

    def insert_one(self, table: str, row: dict) -> dict:
        created = self.insert(table, [row])
        return created[0] if created else {}

    def upsert(self, table: str, rows: list[dict], on_conflict: str) -> list[dict]:
        if not rows:
            return []
        query = self.client.table(table).upsert(rows, on_conflict=on_conflict)
        return self.execute(query, f"upsert {table}") or []

    def update(self, table: str, record_id: str, values: dict) -> list[dict]:
        query = self.client.table(table).update(values).eq("id", record_id)
        return self.execute(query, f"update {table}") or []

    def delete(self, table: str, record_id: str) -> None:
        self.execute(self.client.table(table).delete().eq("id", record_id), f"delete {table}")

    def delete_in(self, table: str, ids: Iterable[str]) -> None:
        ids = list(ids)
        if not ids:
            return
        self.execute(self.client.table(table).delete().in_("id", ids), f"delete {table}")

    # ── rpc ───────────────────────────────────────────────────────────────

    def rpc(self, name: str, payload: dict) -> Any:
        return self.execute(self.client.rpc(name, payload), f"rpc {name}")

    def bulk_insert(self, entity: str, rows: list[dict]) -> Any:
        """All-or-nothing insert through the server-side ``bulk_insert_<entity>`` function."""
        return self.rpc(f"bulk_insert_{entity}", {"records": rows})

    def batch_update(self, entity: str, updates: list[dict]) -> Any:
        """Apply ``[{"id": ..., "changes": {...}}, ...]`` in one ``batch_update_<entity>`` call."""
        return self.rpc(f"batch_update_{entity}", {"updates": updates})

    # ── auth ──────────────────────────────────────────────────────────────

    def sign_in_with_password(self, email: str, password: str) -> dict:
        try:
            response = self.client.auth.sign_in_with_password({"email": email, "password": password})
        except AuthError as exc:
            raise RemoteError(getattr(exc, "message", None) or str(exc), status=getattr(exc, "status", None)) from exc
        except httpx.HTTPError as exc:
            raise RemoteError(f"sign-in failed: {exc}") from exc
        session = getattr(response, "session", None)
        user = getattr(response, "user", None)
        if session is None or user is None:
            return {}
        return {"access_token": session.access_token, "user": {"id": user.id}}
