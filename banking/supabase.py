"""
HTTP adapters for a Supabase-style backend.

- ``SupabaseStore``: PostgREST tables under ``/rest/v1``
- ``SupabaseStorage``: object storage under ``/storage/v1``
- ``SupabaseAuth``: the signed-in user under ``/auth/v1``

Realtime is not spoken here. ``SupabaseStore`` publishes the writes it makes
to a process-local ``LocalChangeFeed``.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

import httpx

from .config import Settings
from .errors import AuthError, ConcurrencyConflict, ConfigurationError, StoreError
from .models import Identity
from .session import AuthCallback, AuthClient, ListenerRegistry
from .store import BalanceMovement, BlobStorage, ChangeEvent, LocalChangeFeed, RecordStore, Subscription

logger = logging.getLogger(__name__)

CONFLICT_CODES = ("40001", "P0409")


class SupabaseClient:
    def __init__(
        self,
        url: Optional[str],
        api_key: Optional[str],
        access_token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not url or not api_key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_ANON_KEY must both be set")
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.http = httpx.Client(base_url=self.url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        access_token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "SupabaseClient":
        return cls(
            settings.SUPABASE_URL,
            settings.SUPABASE_ANON_KEY,
            access_token=access_token,
            timeout=settings.HTTP_TIMEOUT,
            transport=transport,
        )

    def _get_headers(self) -> dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Accept": "application/json",
        }

    def request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        all_headers = self._get_headers()
        all_headers.update(headers or {})
        try:
            response = self.http.request(
                method, path, params=params, json=json, content=content, headers=all_headers
            )
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise StoreError(f"Request to backend failed: {exc}") from exc
        if response.status_code >= 400:
            raise _error_from(response)
        return response

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "SupabaseClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class SupabaseStore(RecordStore):
    """
    PostgREST table access.

    Writes made through this store are published to ``feed`` once the backend
    has accepted them, so watchers in the same process see them. Changes made
    by other processes arrive only on the next read.
    """

    def __init__(
        self,
        client: SupabaseClient,
        movement_rpc: Optional[str] = None,
        feed: Optional[LocalChangeFeed] = None,
    ):
        self.client = client
        self.movement_rpc = movement_rpc
        self.feed = feed or LocalChangeFeed()

    def select(self, table, filters=None, order_by=None, descending=False, limit=None, offset=0) -> list[dict]:
        params = {"select": "*", **_filter_params(filters)}
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)
        if offset:
            params["offset"] = str(offset)
        return self.client.request("GET", f"/rest/v1/{table}", params=params).json()

    def insert(self, table, row) -> dict:
        response = self.client.request(
            "POST",
            f"/rest/v1/{table}",
            json=[_encode(row)],
            headers={"Prefer": "return=representation"},
        )
        stored = response.json()[0]
        self.feed.publish(ChangeEvent(table, "INSERT", new=stored))
        return stored

    def update(self, table, filters, values) -> list[dict]:
        response = self.client.request(
            "PATCH",
            f"/rest/v1/{table}",
            params=_filter_params(filters),
            json=_encode(values),
            headers={"Prefer": "return=representation"},
        )
        updated = response.json()
        for row in updated:
            self.feed.publish(ChangeEvent(table, "UPDATE", new=row))
        return updated

    def upsert(self, table, row, on_conflict) -> dict:
        response = self.client.request(
            "POST",
            f"/rest/v1/{table}",
            params={"on_conflict": on_conflict},
            json=[_encode(row)],
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        stored = response.json()[0]
        # PostgREST does not say whether the row was inserted or merged
        self.feed.publish(ChangeEvent(table, "UPDATE", new=stored))
        return stored

    def delete(self, table, filters) -> list[dict]:
        response = self.client.request(
            "DELETE",
            f"/rest/v1/{table}",
            params=_filter_params(filters),
            headers={"Prefer": "return=representation"},
        )
        removed = response.json()
        for row in removed:
            self.feed.publish(ChangeEvent(table, "DELETE", old=row))
        return removed

    def commit_movement(self, movement: BalanceMovement) -> dict:
        if not self.movement_rpc:
            return super().commit_movement(movement)
        payload = {
            "p_balance": _encode(movement.balance),
            "p_expected_version": movement.expected_version,
            "p_balance_exists": movement.balance_exists,
            "p_inserts": [{"table": table, "row": _encode(row)} for table, row in movement.inserts],
            "p_increment_withdrawal_count": movement.increment_withdrawal_count,
            "p_expected_withdrawal_count": movement.expected_withdrawal_count,
        }
        try:
            response = self.client.request("POST", f"/rest/v1/rpc/{self.movement_rpc}", json=payload)
        except StoreError as exc:
            if exc.code in CONFLICT_CODES or exc.status_code == 409:
                raise ConcurrencyConflict(str(exc), status_code=409, code=exc.code) from exc
            raise
        result = response.json()
        balance = result[0] if isinstance(result, list) else result
        self.feed.publish(ChangeEvent("balances", "UPDATE" if movement.balance_exists else "INSERT", new=balance))
        for insert in payload["p_inserts"]:
            self.feed.publish(ChangeEvent(insert["table"], "INSERT", new=insert["row"]))
        return balance

    def subscribe(self, table, filters, on_change) -> Subscription:
        return self.feed.subscribe(table, filters, on_change)


class SupabaseStorage(BlobStorage):
    def __init__(self, client: SupabaseClient):
        self.client = client

    def upload(self, bucket, path, content, content_type) -> str:
        self.client.request(
            "POST",
            f"/storage/v1/object/{bucket}/{path}",
            content=content,
            headers={"Content-Type": content_type},
        )
        return path

    def get_public_url(self, bucket, path) -> str:
        return f"{self.client.url}/storage/v1/object/public/{bucket}/{path}"


class SupabaseAuth(AuthClient):
    def __init__(self, client: SupabaseClient):
        self.client = client
        self._listeners = ListenerRegistry()

    def get_current_user(self) -> Optional[Identity]:
        if not self.client.access_token:
            return None
        try:
            body = self.client.request("GET", "/auth/v1/user").json()
        except StoreError as exc:
            if exc.status_code in (401, 403):
                return None
            raise AuthError(str(exc)) from exc
        return identity_from_user(body)

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        return self._listeners.add(callback)

    def sign_out(self) -> None:
        if self.client.access_token:
            try:
                self.client.request("POST", "/auth/v1/logout")
            except StoreError as exc:
                raise AuthError(str(exc)) from exc
        self.client.access_token = None
        self._listeners.emit("SIGNED_OUT", None)


def identity_from_user(body: dict) -> Identity:
    app_metadata = body.get("app_metadata") or {}
    return Identity(id=body["id"], email=body.get("email"), role=app_metadata.get("role"))


def _filter_params(filters: Optional[dict]) -> dict[str, str]:
    params = {}
    for column, value in (filters or {}).items():
        if value is None:
            params[column] = "is.null"
        elif isinstance(value, bool):
            params[column] = f"eq.{str(value).lower()}"
        else:
            params[column] = f"eq.{_encode(value)}"
    return params


def _encode(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _error_from(response: httpx.Response) -> StoreError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = (
        body.get("message")
        or body.get("msg")
        or body.get("error_description")
        or body.get("error")
        or response.text
        or f"HTTP {response.status_code}"
    )
    return StoreError(message, status_code=response.status_code, code=body.get("code"))
