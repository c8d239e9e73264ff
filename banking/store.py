"""
Record store, blob storage and change feed boundaries.

Every collaborator that holds durable state sits behind one of the abstract
classes below. Services receive them explicitly; nothing here is a module
level client.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Callable, Optional

from .errors import ConcurrencyConflict, PartialFailure, StoreError

logger = logging.getLogger(__name__)

TABLES = (
    "balances",
    "accounts",
    "profiles",
    "transactions",
    "withdrawals",
    "recipients",
    "tickets",
)

UNIQUE_KEYS = {
    "balances": "user_id",
}

UNIQUE_VIOLATION = "23505"


@dataclass
class ChangeEvent:
    table: str
    event: str
    new: Optional[dict] = None
    old: Optional[dict] = None


class Subscription:
    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._cancel()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


class ChangeFeed(ABC):
    @abstractmethod
    def subscribe(
        self,
        table: str,
        filters: Optional[dict[str, Any]],
        on_change: Callable[[ChangeEvent], None],
    ) -> Subscription:
        ...


class LocalChangeFeed(ChangeFeed):
    """Synchronous in-process feed; callbacks run on the publishing thread."""

    def __init__(self):
        self._subscribers: dict[int, tuple[str, dict, Callable[[ChangeEvent], None]]] = {}
        self._ids = count(1)
        self._lock = threading.Lock()

    def subscribe(self, table, filters, on_change) -> Subscription:
        subscriber_id = next(self._ids)
        with self._lock:
            self._subscribers[subscriber_id] = (table, dict(filters or {}), on_change)
        logger.debug("Subscribed %s to %s changes (%s)", subscriber_id, table, filters)

        def cancel():
            with self._lock:
                self._subscribers.pop(subscriber_id, None)
            logger.debug("Unsubscribed %s from %s changes", subscriber_id, table)

        return Subscription(cancel)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())
        for table, filters, callback in subscribers:
            if table != event.table:
                continue
            row = event.new if event.new is not None else event.old
            if row is not None and _matches(row, filters):
                callback(event)


class BlobStorage(ABC):
    @abstractmethod
    def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> str:
        ...

    @abstractmethod
    def get_public_url(self, bucket: str, path: str) -> str:
        ...


class InMemoryBlobStorage(BlobStorage):
    def __init__(self, base_url: str = "memory://storage"):
        self.base_url = base_url.rstrip("/")
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}

    def upload(self, bucket, path, content, content_type) -> str:
        if (bucket, path) in self.objects:
            raise StoreError(f"The resource already exists: {bucket}/{path}", status_code=409)
        self.objects[(bucket, path)] = (bytes(content), content_type)
        return path

    def get_public_url(self, bucket, path) -> str:
        return f"{self.base_url}/{bucket}/{path}"


@dataclass
class BalanceMovement:
    """The writes a deposit or withdrawal commits together."""

    balance: dict
    expected_version: int
    balance_exists: bool
    inserts: list[tuple[str, dict]] = field(default_factory=list)
    increment_withdrawal_count: bool = False
    # counter value the fee gate was checked against; None skips the check
    expected_withdrawal_count: Optional[int] = None

    @property
    def user_id(self) -> str:
        return self.balance["user_id"]


class RecordStore(ABC):
    @abstractmethod
    def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[dict]:
        ...

    @abstractmethod
    def insert(self, table: str, row: dict) -> dict:
        ...

    @abstractmethod
    def update(self, table: str, filters: dict[str, Any], values: dict) -> list[dict]:
        ...

    @abstractmethod
    def upsert(self, table: str, row: dict, on_conflict: str) -> dict:
        ...

    @abstractmethod
    def delete(self, table: str, filters: dict[str, Any]) -> list[dict]:
        ...

    def select_one(self, table: str, filters: dict[str, Any]) -> Optional[dict]:
        rows = self.select(table, filters, limit=1)
        return rows[0] if rows else None

    def commit_movement(self, movement: BalanceMovement) -> dict:
        """
        Apply a movement one write at a time.

        The balance write is conditional on ``expected_version``. Backends
        that can commit the whole movement atomically override this.
        """
        completed: list[str] = []
        step = "balances"
        try:
            balance_row = self._write_balance(movement)
            completed.append(step)
            for table, row in movement.inserts:
                step = table
                self.insert(table, row)
                completed.append(step)
            if movement.increment_withdrawal_count:
                step = "profiles"
                self._increment_withdrawal_count(movement.user_id, movement.expected_withdrawal_count)
                completed.append(step)
        except StoreError as exc:
            if not completed:
                raise
            logger.error("Movement for %s stopped at %s after %s", movement.user_id, step, completed)
            raise PartialFailure(completed, step, exc) from exc
        return balance_row

    def _write_balance(self, movement: BalanceMovement) -> dict:
        user_id = movement.user_id
        if not movement.balance_exists:
            try:
                return self.insert("balances", movement.balance)
            except StoreError as exc:
                if exc.code == UNIQUE_VIOLATION:
                    raise ConcurrencyConflict(
                        f"Balance for {user_id} was created concurrently", status_code=409
                    ) from exc
                raise
        values = {k: v for k, v in movement.balance.items() if k != "user_id"}
        updated = self.update(
            "balances",
            {"user_id": user_id, "version": movement.expected_version},
            values,
        )
        if not updated:
            raise ConcurrencyConflict(
                f"Balance for {user_id} changed since version {movement.expected_version}",
                status_code=409,
            )
        return updated[0]

    def _increment_withdrawal_count(self, user_id: str, expected: Optional[int] = None) -> None:
        """Bump the counter only if nobody else changed it since it was read."""
        profile = self.select_one("profiles", {"id": user_id})
        stored = None if profile is None else profile.get("withdrawal_count")
        current = stored or 0
        if expected is not None and current != expected:
            raise ConcurrencyConflict(
                f"Withdrawal count for {user_id} is {current}, expected {expected}", status_code=409
            )

        if profile is None:
            try:
                self.insert("profiles", {"id": user_id, "withdrawal_count": 1})
            except StoreError as exc:
                if exc.code == UNIQUE_VIOLATION:
                    raise ConcurrencyConflict(
                        f"Profile for {user_id} was created concurrently", status_code=409
                    ) from exc
                raise
            return

        updated = self.update(
            "profiles",
            {"id": user_id, "withdrawal_count": stored},
            {"withdrawal_count": current + 1},
        )
        if not updated:
            raise ConcurrencyConflict(
                f"Withdrawal count for {user_id} changed while it was being updated", status_code=409
            )


class InMemoryStore(RecordStore):
    """Process-local store used for tests and local development."""

    def __init__(self, feed: Optional[LocalChangeFeed] = None):
        self.feed = feed or LocalChangeFeed()
        self._tables: dict[str, list[dict]] = {table: [] for table in TABLES}
        self._lock = threading.RLock()
        self._pending_events: Optional[list[ChangeEvent]] = None

    def select(self, table, filters=None, order_by=None, descending=False, limit=None, offset=0) -> list[dict]:
        with self._lock:
            rows = [
                (position, row) for position, row in enumerate(self._table(table))
                if _matches(row, filters or {})
            ]
            if order_by:
                rows.sort(key=lambda item: (item[1].get(order_by), item[0]), reverse=descending)
            selected = [copy.deepcopy(row) for _, row in rows]
        end = offset + limit if limit is not None else None
        return selected[offset:end]

    def insert(self, table, row) -> dict:
        with self._lock:
            rows = self._table(table)
            key = UNIQUE_KEYS.get(table, "id")
            if key in row and any(existing.get(key) == row[key] for existing in rows):
                raise StoreError(
                    f'duplicate key value violates unique constraint "{table}_{key}_key"',
                    status_code=409,
                    code=UNIQUE_VIOLATION,
                )
            stored = copy.deepcopy(row)
            rows.append(stored)
            self._publish(ChangeEvent(table, "INSERT", new=copy.deepcopy(stored)))
            return copy.deepcopy(stored)

    def update(self, table, filters, values) -> list[dict]:
        with self._lock:
            updated = []
            for row in self._table(table):
                if _matches(row, filters):
                    old = copy.deepcopy(row)
                    row.update(copy.deepcopy(values))
                    updated.append(copy.deepcopy(row))
                    self._publish(ChangeEvent(table, "UPDATE", new=copy.deepcopy(row), old=old))
            return updated

    def upsert(self, table, row, on_conflict) -> dict:
        with self._lock:
            existing = self.select_one(table, {on_conflict: row[on_conflict]})
            if existing is None:
                return self.insert(table, row)
            return self.update(table, {on_conflict: row[on_conflict]}, row)[0]

    def delete(self, table, filters) -> list[dict]:
        with self._lock:
            rows = self._table(table)
            removed = [row for row in rows if _matches(row, filters)]
            self._tables[table] = [row for row in rows if not _matches(row, filters)]
            for row in removed:
                self._publish(ChangeEvent(table, "DELETE", old=copy.deepcopy(row)))
            return removed

    def commit_movement(self, movement: BalanceMovement) -> dict:
        with self._lock:
            snapshot = copy.deepcopy(self._tables)
            self._pending_events = []
            try:
                result = super().commit_movement(movement)
            except PartialFailure as exc:
                self._tables = snapshot
                logger.warning("Rolled back movement for %s: %s", movement.user_id, exc)
                raise exc.cause
            except StoreError:
                self._tables = snapshot
                raise
            finally:
                events, self._pending_events = self._pending_events, None
        for event in events:
            self.feed.publish(event)
        return result

    def subscribe(self, table, filters, on_change) -> Subscription:
        return self.feed.subscribe(table, filters, on_change)

    def _table(self, table: str) -> list[dict]:
        if table not in self._tables:
            raise StoreError(f'relation "public.{table}" does not exist', status_code=404, code="42P01")
        return self._tables[table]

    def _publish(self, event: ChangeEvent) -> None:
        if self._pending_events is not None:
            self._pending_events.append(event)
        else:
            self.feed.publish(event)


def _matches(row: dict, filters: dict[str, Any]) -> bool:
    return all(row.get(column) == value for column, value in filters.items())
