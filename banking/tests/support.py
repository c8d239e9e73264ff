from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from banking.config import Settings
from banking.errors import StoreError
from banking.models import Balance, Identity
from banking.session import InMemoryAuth, SessionProvider
from banking.store import InMemoryStore

USER_ID = "5b1f6a2e-0c1d-4c55-9f1e-1d2a3b4c5d6e"
OTHER_USER_ID = "7c2e8b3f-1d2e-4d66-8a2f-2e3b4c5d6e7f"
USER_EMAIL = "customer@example.com"

START = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


class StepClock:
    """Returns a time one second later on every call."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current += self.step
        return now


class FailingStore(InMemoryStore):
    """Raises a store error on inserts into one table."""

    def __init__(self, fail_on: str):
        super().__init__()
        self.fail_on = fail_on

    def insert(self, table, row):
        if table == self.fail_on:
            raise StoreError(f"insert into {table} failed", status_code=500)
        return super().insert(table, row)


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def session_for(user_id: Optional[str] = USER_ID, email: str = USER_EMAIL, role: Optional[str] = None) -> SessionProvider:
    identity = Identity(id=user_id, email=email, role=role) if user_id else None
    return SessionProvider(InMemoryAuth(identity))


def seed_balance(store: InMemoryStore, checking: str = "0.00", savings: str = "0.00", user_id: str = USER_ID) -> None:
    store.insert("balances", Balance(
        user_id=user_id,
        checking=Decimal(checking),
        savings=Decimal(savings),
        version=1,
        updated_at=START,
    ).model_dump())


def stored_balance(store: InMemoryStore, user_id: str = USER_ID) -> Balance:
    return Balance.model_validate(store.select_one("balances", {"user_id": user_id}))
