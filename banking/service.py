import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

from .config import Settings, get_settings
from .errors import (
    ConcurrencyConflict,
    FeeRequired,
    InsufficientFunds,
    InvalidAmount,
    InvalidStatusTransition,
    NotFoundError,
    StoreError,
)
from .models import (
    AccountType,
    Balance,
    DashboardSummary,
    DepositRequest,
    DepositResponse,
    FeeStatus,
    Profile,
    ProfileUpdate,
    TransactionListResponse,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    WithdrawalRecord,
    WithdrawalSummary,
    WithdrawRequest,
)
from .recipients import RecipientService
from .session import SessionProvider
from .store import BalanceMovement, RecordStore

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

DESTINATION_FIELDS = ("bank_name", "routing_number", "account_number", "swift_code")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_amount(value: Any) -> Decimal:
    """Parse a user supplied amount into a positive, whole-cent Decimal."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if amount <= 0:
        raise InvalidAmount("Please enter a positive amount")
    try:
        cents = amount.quantize(CENT)
    except InvalidOperation:
        # more digits than the decimal context can hold
        raise InvalidAmount(f"Amount is too large: {value!r}")
    if amount != cents:
        raise InvalidAmount("Amounts cannot include fractions of a cent")
    return cents


def greeting_for(moment: datetime) -> str:
    if moment.hour < 12:
        return "Good Morning"
    if moment.hour < 18:
        return "Good Afternoon"
    return "Good Evening"


class AccountService:
    def __init__(
        self,
        store: RecordStore,
        session: SessionProvider,
        settings: Optional[Settings] = None,
        recipients: Optional[RecipientService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.session = session
        self.settings = settings or get_settings()
        self.clock = clock or utcnow
        self.recipients = recipients or RecipientService(store, session, clock=self.clock)

    def deposit(self, user_id: str, request: DepositRequest) -> DepositResponse:
        amount = parse_amount(request.amount)
        if amount < self.settings.MIN_DEPOSIT:
            raise InvalidAmount(f"Minimum deposit is {self.settings.MIN_DEPOSIT}")
        self.session.require_user(user_id)
        account_type = AccountType(request.account_type)

        def build(current: Balance, exists: bool):
            now = self.clock()
            transaction = TransactionRecord(
                id=uuid4(),
                user_id=user_id,
                type=TransactionType.DEPOSIT,
                amount=amount,
                method=request.method,
                status=TransactionStatus(self.settings.DEPOSIT_STATUS),
                account_type=account_type,
                created_at=now,
                description=f"{request.method.value} deposit to {account_type.value}",
            )
            updated = current.with_amount(account_type, current.amount_for(account_type) + amount, now)
            movement = BalanceMovement(
                balance=updated.model_dump(),
                expected_version=current.version,
                balance_exists=exists,
                inserts=[("transactions", transaction.model_dump())],
            )
            return movement, transaction

        balances, transaction = self._commit(user_id, build)
        new_balance = balances.amount_for(account_type)
        logger.info("Deposit %s of %s to %s for %s", transaction.id, amount, account_type.value, user_id)
        return DepositResponse(
            transaction=transaction,
            balances=balances,
            new_balance=new_balance,
            message="Deposit successful",
        )

    def withdraw(self, user_id: str, request: WithdrawRequest) -> WithdrawalSummary:
        amount = parse_amount(request.amount)
        self.session.require_user(user_id)
        account_type = AccountType(request.account_type)
        threshold = self.settings.FEE_GATE_THRESHOLD
        state = {}

        def build(current: Balance, exists: bool):
            withdrawal_count = self._withdrawal_count(user_id)
            if withdrawal_count >= threshold and not request.acknowledge_fee:
                raise FeeRequired(self.settings.WITHDRAWAL_FEE, withdrawal_count, self.settings.FEE_INSTRUCTIONS)
            if "destination" not in state:
                state["destination"] = self._destination(user_id, request)
            destination = state["destination"]
            available = current.amount_for(account_type)
            if amount > available:
                raise InsufficientFunds(amount, available, account_type.value)

            now = self.clock()
            transaction = TransactionRecord(
                id=uuid4(),
                user_id=user_id,
                type=TransactionType.WITHDRAWAL,
                amount=amount,
                method=request.method,
                status=TransactionStatus.PENDING,
                account_type=account_type,
                created_at=now,
                description="Customer withdrawal",
                **destination,
            )
            withdrawal = WithdrawalRecord(
                id=uuid4(),
                user_id=user_id,
                transaction_id=transaction.id,
                amount=amount,
                method=request.method,
                account_type=account_type,
                status=TransactionStatus.PENDING,
                created_at=now,
                recipient_id=request.recipient_id,
                fee_acknowledged=withdrawal_count >= threshold,
                **destination,
            )
            updated = current.with_amount(account_type, available - amount, now)
            movement = BalanceMovement(
                balance=updated.model_dump(),
                expected_version=current.version,
                balance_exists=exists,
                inserts=[
                    ("withdrawals", withdrawal.model_dump()),
                    ("transactions", transaction.model_dump()),
                ],
                increment_withdrawal_count=True,
                expected_withdrawal_count=withdrawal_count,
            )
            state["withdrawal_count"] = withdrawal_count + 1
            return movement, (withdrawal, transaction)

        balances, (withdrawal, transaction) = self._commit(user_id, build)
        withdrawal_count = state["withdrawal_count"]
        logger.info("Withdrawal %s of %s from %s for %s", withdrawal.id, amount, account_type.value, user_id)
        return WithdrawalSummary(
            withdrawal=withdrawal,
            transaction=transaction,
            balances=balances,
            new_balance=balances.amount_for(account_type),
            withdrawal_count=withdrawal_count,
            fee_applies_next=withdrawal_count >= threshold,
            message="Withdrawal submitted",
        )

    def fee_status(self, user_id: str) -> FeeStatus:
        self.session.require_user(user_id)
        withdrawal_count = self._withdrawal_count(user_id)
        blocked = withdrawal_count >= self.settings.FEE_GATE_THRESHOLD
        return FeeStatus(
            withdrawal_count=withdrawal_count,
            threshold=self.settings.FEE_GATE_THRESHOLD,
            fee=self.settings.WITHDRAWAL_FEE,
            blocked=blocked,
            instructions=self.settings.FEE_INSTRUCTIONS if blocked else None,
        )

    def settle_transaction(self, transaction_id: UUID, status: TransactionStatus) -> TransactionRecord:
        self.session.require_user()
        row = self.store.select_one("transactions", {"id": transaction_id})
        if row is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")

        transaction = TransactionRecord.model_validate(row)
        status = TransactionStatus(status)
        if not transaction.can_settle() or status == TransactionStatus.PENDING:
            raise InvalidStatusTransition(
                f"Cannot move transaction from {transaction.status.value} to {status.value}"
            )

        updated = self.store.update(
            "transactions",
            {"id": transaction_id, "status": TransactionStatus.PENDING},
            {"status": status},
        )
        if not updated:
            raise InvalidStatusTransition(f"Transaction {transaction_id} was settled concurrently")
        if transaction.type == TransactionType.WITHDRAWAL:
            self.store.update("withdrawals", {"transaction_id": transaction_id}, {"status": status})
        logger.info("Transaction %s settled as %s", transaction_id, status.value)
        return TransactionRecord.model_validate(updated[0])

    def get_balances(self, user_id: str) -> Balance:
        self.session.require_user(user_id)
        balance, _ = self._load_balance(user_id)
        return balance

    def list_transactions(
        self,
        user_id: str,
        type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        account_type: Optional[AccountType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> TransactionListResponse:
        self.session.require_user(user_id)
        filters = {"user_id": user_id}
        for column, value in (("type", type), ("status", status), ("account_type", account_type)):
            if value is not None:
                filters[column] = value
        rows = self.store.select("transactions", filters, order_by="created_at", descending=True)
        transactions = [TransactionRecord.model_validate(row) for row in rows]
        return TransactionListResponse(
            user_id=user_id,
            transactions=transactions[offset:offset + limit],
            total_count=len(transactions),
        )

    def list_withdrawals(self, user_id: str) -> list[WithdrawalRecord]:
        self.session.require_user(user_id)
        rows = self.store.select("withdrawals", {"user_id": user_id}, order_by="created_at", descending=True)
        return [WithdrawalRecord.model_validate(row) for row in rows]

    def dashboard(self, user_id: str, now: Optional[datetime] = None) -> DashboardSummary:
        self.session.require_user(user_id)
        balances, _ = self._load_balance(user_id)
        rows = self.store.select(
            "transactions",
            {"user_id": user_id},
            order_by="created_at",
            descending=True,
            limit=self.settings.RECENT_TRANSACTIONS_LIMIT,
        )
        return DashboardSummary(
            user_id=user_id,
            greeting=greeting_for(now or self.clock()),
            balances=balances,
            total_balance=balances.total,
            recent_transactions=[TransactionRecord.model_validate(row) for row in rows],
        )

    def _commit(self, user_id: str, build):
        attempts = max(1, self.settings.MAX_WRITE_RETRIES)
        for attempt in range(1, attempts + 1):
            current, exists = self._load_balance(user_id)
            movement, result = build(current, exists)
            try:
                row = self.store.commit_movement(movement)
            except ConcurrencyConflict as exc:
                logger.warning("Balance conflict for %s (attempt %s/%s): %s", user_id, attempt, attempts, exc)
                continue
            except StoreError as exc:
                logger.error("Balance movement failed for %s: %s", user_id, exc)
                raise
            return Balance.model_validate(row), result
        raise ConcurrencyConflict(
            f"Balance for {user_id} kept changing; nothing was applied", status_code=409
        )

    def _load_balance(self, user_id: str) -> tuple[Balance, bool]:
        try:
            row = self.store.select_one("balances", {"user_id": user_id})
        except StoreError as exc:
            logger.error("Error fetching balance for %s: %s", user_id, exc)
            raise
        if row is None:
            return Balance(user_id=user_id), False
        return Balance.model_validate(row), True

    def _withdrawal_count(self, user_id: str) -> int:
        row = self.store.select_one("profiles", {"id": user_id})
        return (row or {}).get("withdrawal_count") or 0

    def _destination(self, user_id: str, request: WithdrawRequest) -> dict:
        if request.recipient_id is not None:
            recipient = self.recipients.get_recipient(user_id, request.recipient_id)
            return {name: getattr(recipient, name) for name in DESTINATION_FIELDS}
        return {name: (getattr(request, name) or "").strip() or None for name in DESTINATION_FIELDS}


class ProfileService:
    def __init__(
        self,
        store: RecordStore,
        session: SessionProvider,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.session = session
        self.clock = clock or utcnow

    def get_profile(self, user_id: str) -> Profile:
        self.session.require_user(user_id)
        row = self.store.select_one("profiles", {"id": user_id})
        if row is None:
            return Profile(id=user_id)
        return Profile.model_validate(row)

    def update_profile(self, user_id: str, update: ProfileUpdate) -> Profile:
        self.session.require_user(user_id)
        row = {"id": user_id, **update.model_dump(exclude_unset=True), "updated_at": self.clock()}
        try:
            saved = self.store.upsert("profiles", row, on_conflict="id")
        except StoreError as exc:
            logger.error("Failed to update profile for %s: %s", user_id, exc)
            raise
        return Profile.model_validate(saved)
