"""
Unit Tests for deposits, withdrawals and account views

Tests cover:
1. Deposit flow and amount validation
2. Withdrawal flow, insufficient funds and the fee gate
3. Version-checked balance writes under concurrent changes
4. Atomic and sequential movement commits
5. Transaction settlement
6. Transaction lists and the dashboard summary
"""

import pytest
import pydantic
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from banking.errors import (
    AuthError,
    ConcurrencyConflict,
    FeeRequired,
    InsufficientFunds,
    InvalidAmount,
    InvalidStatusTransition,
    NotFoundError,
    PartialFailure,
    StoreError,
)
from banking.models import (
    AccountType,
    CreateRecipientRequest,
    DepositRequest,
    TransactionStatus,
    TransactionType,
    TransferMethod,
    WithdrawRequest,
)
from banking.recipients import RecipientService
from banking.service import AccountService, greeting_for, parse_amount
from banking.store import InMemoryStore, RecordStore

from support import (
    OTHER_USER_ID,
    USER_ID,
    FailingStore,
    StepClock,
    make_settings,
    seed_balance,
    session_for,
    stored_balance,
)


def make_service(store=None, session=None, **settings):
    store = store if store is not None else InMemoryStore()
    service = AccountService(
        store,
        session or session_for(),
        make_settings(**settings),
        clock=StepClock(),
    )
    return service, store


def assert_no_writes(store, user_id=USER_ID):
    assert store.select("transactions", {"user_id": user_id}) == []
    assert store.select("withdrawals", {"user_id": user_id}) == []
    assert store.select_one("profiles", {"id": user_id}) is None


class TestParseAmount:
    """Tests for amount parsing."""

    @pytest.mark.parametrize("value", ["0", "-5", 0, -0.01, "abc", "", None, "NaN", "Infinity"])
    def test_rejects_invalid_amounts(self, value):
        with pytest.raises(InvalidAmount):
            parse_amount(value)

    @pytest.mark.parametrize("value", ["1e30", "123456789012345678901234567890.00", Decimal("9.99E+40")])
    def test_rejects_amounts_too_large_for_cents(self, value):
        with pytest.raises(InvalidAmount, match="too large"):
            parse_amount(value)

    def test_rejects_fractions_of_a_cent(self):
        with pytest.raises(InvalidAmount):
            parse_amount("10.005")

    def test_normalizes_to_cents(self):
        assert parse_amount("25.5") == Decimal("25.50")
        assert parse_amount(7) == Decimal("7.00")
        assert parse_amount(" 12.34 ") == Decimal("12.34")


class TestDepositFlow:
    """Tests for the deposit flow."""

    def test_deposit_adds_to_existing_balance(self):
        """balance=100.00, deposit 25.50 via ACH -> 125.50 and one deposit record."""
        service, store = make_service()
        seed_balance(store, checking="100.00")

        response = service.deposit(USER_ID, DepositRequest(amount=Decimal("25.50"), method=TransferMethod.ACH))

        assert response.new_balance == Decimal("125.50")
        assert stored_balance(store).checking == Decimal("125.50")

        deposits = store.select("transactions", {"user_id": USER_ID, "type": TransactionType.DEPOSIT})
        assert len(deposits) == 1
        assert deposits[0]["amount"] == Decimal("25.50")
        assert deposits[0]["method"] == TransferMethod.ACH
        assert response.transaction.status == TransactionStatus.COMPLETED

    def test_first_deposit_creates_balance(self):
        """A missing balance row is treated as zero."""
        service, store = make_service()

        response = service.deposit(USER_ID, DepositRequest(amount="10"))

        assert response.new_balance == Decimal("10.00")
        balance = stored_balance(store)
        assert balance.checking == Decimal("10.00")
        assert balance.savings == Decimal("0.00")
        assert balance.version == 1

    def test_savings_deposit_leaves_checking_alone(self):
        service, store = make_service()
        seed_balance(store, checking="40.00", savings="60.00")

        response = service.deposit(USER_ID, DepositRequest(amount="15.00", account_type=AccountType.SAVINGS))

        assert response.new_balance == Decimal("75.00")
        assert response.balances.checking == Decimal("40.00")
        assert response.balances.total == Decimal("115.00")

    def test_deposits_are_not_deduplicated(self):
        """Resubmitting the same amount makes a second deposit."""
        service, store = make_service()
        request = DepositRequest(amount="20.00")

        service.deposit(USER_ID, request)
        service.deposit(USER_ID, request)

        assert stored_balance(store).checking == Decimal("40.00")
        assert len(store.select("transactions", {"user_id": USER_ID})) == 2

    @pytest.mark.parametrize("amount", ["0", "-25.00", "4.99", "10.001"])
    def test_invalid_amount_rejected_before_any_write(self, amount):
        service, store = make_service()

        with pytest.raises(InvalidAmount):
            service.deposit(USER_ID, DepositRequest(amount=amount))

        assert store.select_one("balances", {"user_id": USER_ID}) is None
        assert_no_writes(store)

    def test_non_numeric_amount_rejected_by_request_model(self):
        with pytest.raises(pydantic.ValidationError):
            DepositRequest(amount="twenty")

    def test_minimum_deposit_is_configurable(self):
        service, store = make_service(MIN_DEPOSIT=Decimal("1.00"))

        response = service.deposit(USER_ID, DepositRequest(amount="1.00"))

        assert response.new_balance == Decimal("1.00")

    def test_pending_deposit_status(self):
        service, _ = make_service(DEPOSIT_STATUS="pending")

        response = service.deposit(USER_ID, DepositRequest(amount="50.00"))

        assert response.transaction.status == TransactionStatus.PENDING
        assert response.new_balance == Decimal("50.00")

    def test_deposit_requires_session(self):
        service, store = make_service(session=session_for(None))

        with pytest.raises(AuthError):
            service.deposit(USER_ID, DepositRequest(amount="10.00"))

        assert_no_writes(store)

    def test_deposit_for_another_user_rejected(self):
        service, store = make_service()

        with pytest.raises(AuthError):
            service.deposit(OTHER_USER_ID, DepositRequest(amount="10.00"))

        assert_no_writes(store, OTHER_USER_ID)


class TestWithdrawalFlow:
    """Tests for the withdrawal flow."""

    def test_withdrawal_updates_balance_and_count(self):
        """checkingBalance=200.00, withdraw 50.00 -> 150.00 and withdrawal_count 0 -> 1."""
        service, store = make_service()
        seed_balance(store, checking="200.00")

        summary = service.withdraw(USER_ID, WithdrawRequest(
            amount="50.00",
            account_type=AccountType.CHECKING,
            bank_name="First Bank",
            routing_number="021000021",
            account_number="123456789",
        ))

        assert summary.new_balance == Decimal("150.00")
        assert stored_balance(store).checking == Decimal("150.00")
        assert summary.withdrawal_count == 1
        assert store.select_one("profiles", {"id": USER_ID})["withdrawal_count"] == 1

        # Verify log rows
        assert summary.withdrawal.status == TransactionStatus.PENDING
        assert summary.withdrawal.transaction_id == summary.transaction.id
        assert summary.transaction.type == TransactionType.WITHDRAWAL
        assert summary.transaction.bank_name == "First Bank"
        assert len(store.select("withdrawals", {"user_id": USER_ID})) == 1
        assert len(store.select("transactions", {"user_id": USER_ID})) == 1

    def test_insufficient_funds_performs_no_writes(self):
        service, store = make_service()
        seed_balance(store, checking="20.00")

        with pytest.raises(InsufficientFunds) as exc_info:
            service.withdraw(USER_ID, WithdrawRequest(amount="50.00"))

        assert exc_info.value.available == Decimal("20.00")
        balance = stored_balance(store)
        assert balance.checking == Decimal("20.00")
        assert balance.version == 1
        assert_no_writes(store)

    def test_sub_balances_are_separate(self):
        """Checking funds do not cover a savings withdrawal."""
        service, store = make_service()
        seed_balance(store, checking="500.00", savings="10.00")

        with pytest.raises(InsufficientFunds):
            service.withdraw(USER_ID, WithdrawRequest(amount="50.00", account_type=AccountType.SAVINGS))

    def test_withdraw_entire_balance(self):
        service, store = make_service()
        seed_balance(store, savings="80.00")

        summary = service.withdraw(USER_ID, WithdrawRequest(amount="80.00", account_type=AccountType.SAVINGS))

        assert summary.new_balance == Decimal("0.00")

    @pytest.mark.parametrize("amount", ["0", "-1.00"])
    def test_non_positive_amount_rejected(self, amount):
        service, store = make_service()
        seed_balance(store, checking="100.00")

        with pytest.raises(InvalidAmount):
            service.withdraw(USER_ID, WithdrawRequest(amount=amount))

        assert_no_writes(store)

    def test_withdrawal_without_balance_row(self):
        service, store = make_service()

        with pytest.raises(InsufficientFunds):
            service.withdraw(USER_ID, WithdrawRequest(amount="1.00"))

        assert store.select_one("balances", {"user_id": USER_ID}) is None

    def test_recipient_prefills_destination(self):
        service, store = make_service()
        seed_balance(store, checking="300.00")
        recipient = RecipientService(store, service.session).create_recipient(USER_ID, CreateRecipientRequest(
            name="Jane Saver",
            bank_name="Savings Union",
            routing_number="011000015",
            account_number="987654321",
            swift_code="SAVUUS33",
        ))

        summary = service.withdraw(USER_ID, WithdrawRequest(
            amount="100.00",
            method=TransferMethod.WIRE,
            recipient_id=recipient.id,
        ))

        assert summary.withdrawal.recipient_id == recipient.id
        assert summary.withdrawal.bank_name == "Savings Union"
        assert summary.transaction.account_number == "987654321"
        assert summary.transaction.swift_code == "SAVUUS33"
        assert summary.transaction.method == TransferMethod.WIRE

    def test_unknown_recipient_rejected(self):
        service, store = make_service()
        seed_balance(store, checking="300.00")

        with pytest.raises(NotFoundError):
            service.withdraw(USER_ID, WithdrawRequest(amount="10.00", recipient_id=uuid4()))

        assert_no_writes(store)


class TestFeeGate:
    """Tests for the withdrawal fee gate."""

    def test_third_withdrawal_blocked_without_acknowledgment(self):
        service, store = make_service()
        seed_balance(store, checking="1000.00")

        first = service.withdraw(USER_ID, WithdrawRequest(amount="10.00"))
        second = service.withdraw(USER_ID, WithdrawRequest(amount="10.00"))
        assert first.fee_applies_next is False
        assert second.fee_applies_next is True

        with pytest.raises(FeeRequired) as exc_info:
            service.withdraw(USER_ID, WithdrawRequest(amount="10.00"))

        assert exc_info.value.fee == Decimal("25.00")
        assert exc_info.value.withdrawal_count == 2
        # Blocked attempt wrote nothing
        assert stored_balance(store).checking == Decimal("980.00")
        assert len(store.select("withdrawals", {"user_id": USER_ID})) == 2
        assert store.select_one("profiles", {"id": USER_ID})["withdrawal_count"] == 2

    def test_acknowledged_fee_allows_withdrawal(self):
        service, store = make_service()
        seed_balance(store, checking="1000.00")
        store.insert("profiles", {"id": USER_ID, "withdrawal_count": 2})

        summary = service.withdraw(USER_ID, WithdrawRequest(amount="10.00", acknowledge_fee=True))

        assert summary.withdrawal.fee_acknowledged is True
        assert summary.withdrawal_count == 3

    def test_acknowledgment_not_recorded_below_threshold(self):
        service, store = make_service()
        seed_balance(store, checking="100.00")

        summary = service.withdraw(USER_ID, WithdrawRequest(amount="10.00", acknowledge_fee=True))

        assert summary.withdrawal.fee_acknowledged is False

    def test_fee_gate_checked_before_funds(self):
        service, store = make_service()
        seed_balance(store, checking="5.00")
        store.insert("profiles", {"id": USER_ID, "withdrawal_count": 2})

        with pytest.raises(FeeRequired):
            service.withdraw(USER_ID, WithdrawRequest(amount="50.00"))

    def test_fee_gate_checked_before_recipient(self):
        service, store = make_service()
        seed_balance(store, checking="300.00")
        store.insert("profiles", {"id": USER_ID, "withdrawal_count": 2})

        with pytest.raises(FeeRequired):
            service.withdraw(USER_ID, WithdrawRequest(amount="10.00", recipient_id=uuid4()))

        with pytest.raises(NotFoundError):
            service.withdraw(USER_ID, WithdrawRequest(amount="10.00", recipient_id=uuid4(), acknowledge_fee=True))

        assert store.select("withdrawals", {"user_id": USER_ID}) == []
        assert store.select_one("profiles", {"id": USER_ID})["withdrawal_count"] == 2

    def test_fee_status(self):
        service, store = make_service(FEE_GATE_THRESHOLD=1, WITHDRAWAL_FEE=Decimal("15.00"))

        before = service.fee_status(USER_ID)
        assert before.blocked is False
        assert before.instructions is None

        store.insert("profiles", {"id": USER_ID, "withdrawal_count": 1})
        after = service.fee_status(USER_ID)
        assert after.blocked is True
        assert after.fee == Decimal("15.00")
        assert after.instructions


class RacingStore(InMemoryStore):
    """Lets another writer change the balance right before each commit."""

    def __init__(self, races: int):
        super().__init__()
        self.races = races
        self.commits = 0

    def commit_movement(self, movement):
        self.commits += 1
        if self.races:
            self.races -= 1
            current = self.select_one("balances", {"user_id": movement.user_id})
            self.update("balances", {"user_id": movement.user_id}, {
                "checking": current["checking"] + Decimal("50.00"),
                "version": current["version"] + 1,
            })
        return super().commit_movement(movement)


class TestConcurrentChanges:
    """Tests for version-checked balance writes."""

    def test_conflict_is_retried_without_losing_updates(self):
        store = RacingStore(races=1)
        service, _ = make_service(store=store)
        seed_balance(store, checking="100.00")

        response = service.deposit(USER_ID, DepositRequest(amount="25.50"))

        # 100 + 50 (concurrent writer) + 25.50
        assert response.new_balance == Decimal("175.50")
        assert stored_balance(store).checking == Decimal("175.50")
        assert store.commits == 2
        assert len(store.select("transactions", {"user_id": USER_ID})) == 1

    def test_gives_up_after_retries(self):
        store = RacingStore(races=10)
        service, _ = make_service(store=store, MAX_WRITE_RETRIES=3)
        seed_balance(store, checking="100.00")

        with pytest.raises(ConcurrencyConflict):
            service.deposit(USER_ID, DepositRequest(amount="25.00"))

        assert store.commits == 3
        assert stored_balance(store).checking == Decimal("250.00")
        assert store.select("transactions", {"user_id": USER_ID}) == []

    def test_withdrawal_rebuilt_from_fresh_balance(self):
        store = RacingStore(races=1)
        service, _ = make_service(store=store)
        seed_balance(store, checking="40.00")

        summary = service.withdraw(USER_ID, WithdrawRequest(amount="30.00"))

        # the first attempt fails the version check; the retry sees 90.00
        assert summary.new_balance == Decimal("60.00")
        assert summary.withdrawal_count == 1
        assert len(store.select("withdrawals", {"user_id": USER_ID})) == 1


class SequentialStore(FailingStore):
    """A backend that cannot commit a movement atomically."""

    def commit_movement(self, movement):
        return RecordStore.commit_movement(self, movement)


class TestMovementCommit:
    """Tests for atomic and sequential movement commits."""

    def test_in_memory_commit_rolls_back(self):
        store = FailingStore(fail_on="transactions")
        service, _ = make_service(store=store)
        seed_balance(store, checking="100.00")

        with pytest.raises(StoreError) as exc_info:
            service.deposit(USER_ID, DepositRequest(amount="25.00"))

        assert not isinstance(exc_info.value, PartialFailure)
        balance = stored_balance(store)
        assert balance.checking == Decimal("100.00")
        assert balance.version == 1

    def test_in_memory_rollback_covers_withdrawal_rows(self):
        store = FailingStore(fail_on="transactions")
        service, _ = make_service(store=store)
        seed_balance(store, checking="100.00")

        with pytest.raises(StoreError):
            service.withdraw(USER_ID, WithdrawRequest(amount="25.00"))

        assert stored_balance(store).checking == Decimal("100.00")
        assert_no_writes(store)

    def test_sequential_commit_reports_partial_failure(self):
        store = SequentialStore(fail_on="transactions")
        service, _ = make_service(store=store)
        seed_balance(store, checking="100.00")

        with pytest.raises(PartialFailure) as exc_info:
            service.deposit(USER_ID, DepositRequest(amount="25.00"))

        assert exc_info.value.completed_steps == ["balances"]
        assert exc_info.value.failed_step == "transactions"
        # the balance write already landed
        assert stored_balance(store).checking == Decimal("125.00")

    def test_failure_on_first_step_is_not_partial(self):
        store = SequentialStore(fail_on="balances")
        service, _ = make_service(store=store)

        with pytest.raises(StoreError) as exc_info:
            service.deposit(USER_ID, DepositRequest(amount="25.00"))

        assert not isinstance(exc_info.value, PartialFailure)


class CounterRacingStore(InMemoryStore):
    """Lets another withdrawal bump the counter right before each commit."""

    def __init__(self, races: int):
        super().__init__()
        self.races = races

    def commit_movement(self, movement):
        if self.races and movement.increment_withdrawal_count:
            self.races -= 1
            bump_withdrawal_count(self, movement.user_id)
        return super().commit_movement(movement)


class SequentialCounterRacingStore(SequentialStore):
    def __init__(self):
        super().__init__(fail_on="nothing")

    def commit_movement(self, movement):
        bump_withdrawal_count(self, movement.user_id)
        return super().commit_movement(movement)


def bump_withdrawal_count(store, user_id):
    profile = store.select_one("profiles", {"id": user_id})
    count = (profile or {}).get("withdrawal_count") or 0
    store.upsert("profiles", {"id": user_id, "withdrawal_count": count + 1}, on_conflict="id")


class TestWithdrawalCounter:
    """Tests for the conditional withdrawal counter bump."""

    def test_concurrent_withdrawal_reaches_fee_gate(self):
        store = CounterRacingStore(races=1)
        service, _ = make_service(store=store)
        seed_balance(store, checking="100.00")
        store.insert("profiles", {"id": USER_ID, "withdrawal_count": 1})

        # the counter moves to 2 underneath the first attempt; the retry is gated
        with pytest.raises(FeeRequired) as exc_info:
            service.withdraw(USER_ID, WithdrawRequest(amount="10.00"))

        assert exc_info.value.withdrawal_count == 2
        assert stored_balance(store).checking == Decimal("100.00")
        assert store.select("withdrawals", {"user_id": USER_ID}) == []
        assert store.select_one("profiles", {"id": USER_ID})["withdrawal_count"] == 2

    def test_concurrent_withdrawal_below_threshold_counts_both(self):
        store = CounterRacingStore(races=1)
        service, _ = make_service(store=store, FEE_GATE_THRESHOLD=5)
        seed_balance(store, checking="100.00")

        summary = service.withdraw(USER_ID, WithdrawRequest(amount="10.00"))

        assert summary.withdrawal_count == 2
        assert store.select_one("profiles", {"id": USER_ID})["withdrawal_count"] == 2
        assert len(store.select("withdrawals", {"user_id": USER_ID})) == 1
        assert stored_balance(store).checking == Decimal("90.00")

    def test_sequential_commit_reports_counter_conflict(self):
        store = SequentialCounterRacingStore()
        service, _ = make_service(store=store)
        seed_balance(store, checking="100.00")

        with pytest.raises(PartialFailure) as exc_info:
            service.withdraw(USER_ID, WithdrawRequest(amount="10.00"))

        assert exc_info.value.failed_step == "profiles"
        assert exc_info.value.completed_steps == ["balances", "withdrawals", "transactions"]
        assert isinstance(exc_info.value.cause, ConcurrencyConflict)
        assert store.select_one("profiles", {"id": USER_ID})["withdrawal_count"] == 1

    def test_stale_expected_count_is_a_conflict(self):
        store = InMemoryStore()
        store.insert("profiles", {"id": USER_ID, "withdrawal_count": 3})

        with pytest.raises(ConcurrencyConflict):
            store._increment_withdrawal_count(USER_ID, expected=2)

        store._increment_withdrawal_count(USER_ID, expected=3)
        assert store.select_one("profiles", {"id": USER_ID})["withdrawal_count"] == 4

    def test_first_withdrawal_creates_profile(self):
        store = InMemoryStore()

        store._increment_withdrawal_count(USER_ID, expected=0)

        assert store.select_one("profiles", {"id": USER_ID})["withdrawal_count"] == 1

    def test_profile_without_counter_counts_as_zero(self):
        store = InMemoryStore()
        store.insert("profiles", {"id": USER_ID, "full_name": "Ada"})

        # a profile without a counter counts as zero
        store._increment_withdrawal_count(USER_ID, expected=0)

        assert store.select_one("profiles", {"id": USER_ID})["withdrawal_count"] == 1


class TestSettlement:
    """Tests for transaction status transitions."""

    def test_pending_deposit_completes(self):
        service, store = make_service(DEPOSIT_STATUS="pending")
        deposit = service.deposit(USER_ID, DepositRequest(amount="50.00"))

        settled = service.settle_transaction(deposit.transaction.id, TransactionStatus.COMPLETED)

        assert settled.status == TransactionStatus.COMPLETED
        row = store.select_one("transactions", {"id": deposit.transaction.id})
        assert row["status"] == TransactionStatus.COMPLETED

    def test_failed_withdrawal_updates_both_rows(self):
        service, store = make_service()
        seed_balance(store, checking="100.00")
        summary = service.withdraw(USER_ID, WithdrawRequest(amount="40.00"))

        service.settle_transaction(summary.transaction.id, TransactionStatus.FAILED)

        withdrawal = store.select_one("withdrawals", {"id": summary.withdrawal.id})
        assert withdrawal["status"] == TransactionStatus.FAILED

    def test_settled_transaction_cannot_change(self):
        service, _ = make_service()
        deposit = service.deposit(USER_ID, DepositRequest(amount="50.00"))

        with pytest.raises(InvalidStatusTransition):
            service.settle_transaction(deposit.transaction.id, TransactionStatus.FAILED)

    def test_cannot_settle_back_to_pending(self):
        service, _ = make_service(DEPOSIT_STATUS="pending")
        deposit = service.deposit(USER_ID, DepositRequest(amount="50.00"))

        with pytest.raises(InvalidStatusTransition):
            service.settle_transaction(deposit.transaction.id, TransactionStatus.PENDING)

    def test_unknown_transaction(self):
        service, _ = make_service()

        with pytest.raises(NotFoundError):
            service.settle_transaction(uuid4(), TransactionStatus.COMPLETED)


class TestAccountViews:
    """Tests for balances, transaction lists and the dashboard."""

    def test_balances_default_to_zero(self):
        service, _ = make_service()

        balance = service.get_balances(USER_ID)

        assert balance.checking == Decimal("0.00")
        assert balance.total == Decimal("0.00")
        assert balance.version == 0

    def test_transactions_newest_first_and_filtered(self):
        service, store = make_service()
        first = service.deposit(USER_ID, DepositRequest(amount="100.00"))
        second = service.deposit(USER_ID, DepositRequest(amount="200.00", account_type=AccountType.SAVINGS))
        withdrawal = service.withdraw(USER_ID, WithdrawRequest(amount="30.00"))

        history = service.list_transactions(USER_ID)
        assert [t.id for t in history.transactions] == [
            withdrawal.transaction.id, second.transaction.id, first.transaction.id,
        ]
        assert history.total_count == 3

        deposits = service.list_transactions(USER_ID, type=TransactionType.DEPOSIT)
        assert deposits.total_count == 2

        savings = service.list_transactions(USER_ID, account_type=AccountType.SAVINGS)
        assert [t.id for t in savings.transactions] == [second.transaction.id]

        pending = service.list_transactions(USER_ID, status=TransactionStatus.PENDING)
        assert [t.id for t in pending.transactions] == [withdrawal.transaction.id]

        page = service.list_transactions(USER_ID, limit=1, offset=1)
        assert [t.id for t in page.transactions] == [second.transaction.id]
        assert page.total_count == 3

    def test_withdrawal_history(self):
        service, store = make_service()
        seed_balance(store, checking="100.00")
        first = service.withdraw(USER_ID, WithdrawRequest(amount="10.00"))
        second = service.withdraw(USER_ID, WithdrawRequest(amount="20.00"))

        history = service.list_withdrawals(USER_ID)

        assert [w.id for w in history] == [second.withdrawal.id, first.withdrawal.id]

    def test_dashboard_shows_recent_transactions(self):
        service, store = make_service()
        for amount in ("10.00", "20.00", "30.00", "40.00", "50.00", "60.00", "70.00"):
            service.deposit(USER_ID, DepositRequest(amount=amount))

        summary = service.dashboard(USER_ID, now=datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc))

        assert summary.greeting == "Good Afternoon"
        assert summary.total_balance == Decimal("280.00")
        assert [t.amount for t in summary.recent_transactions] == [
            Decimal("70.00"), Decimal("60.00"), Decimal("50.00"), Decimal("40.00"), Decimal("30.00"),
        ]

    @pytest.mark.parametrize("hour,greeting", [
        (0, "Good Morning"),
        (11, "Good Morning"),
        (12, "Good Afternoon"),
        (17, "Good Afternoon"),
        (18, "Good Evening"),
        (23, "Good Evening"),
    ])
    def test_greeting(self, hour, greeting):
        assert greeting_for(datetime(2026, 3, 2, hour, 15)) == greeting

    def test_views_require_matching_session(self):
        service, _ = make_service()

        with pytest.raises(AuthError):
            service.get_balances(OTHER_USER_ID)
        with pytest.raises(AuthError):
            service.list_transactions(OTHER_USER_ID)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
