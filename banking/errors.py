from decimal import Decimal
from typing import Optional


class BankingError(Exception):
    pass


class ConfigurationError(BankingError):
    pass


class ValidationError(BankingError):
    pass


class InvalidAmount(ValidationError):
    pass


class InsufficientFunds(ValidationError):
    def __init__(self, requested: Decimal, available: Decimal, account_type: str):
        self.requested = requested
        self.available = available
        self.account_type = account_type
        super().__init__(
            f"Insufficient funds: requested {requested}, {account_type} balance is {available}"
        )


class FeeRequired(ValidationError):
    def __init__(self, fee: Decimal, withdrawal_count: int, instructions: str):
        self.fee = fee
        self.withdrawal_count = withdrawal_count
        self.instructions = instructions
        super().__init__(
            f"Withdrawal blocked after {withdrawal_count} withdrawals: "
            f"an administrative fee of {fee} must be acknowledged"
        )


class InvalidStatusTransition(ValidationError):
    pass


class AuthError(BankingError):
    pass


class NotFoundError(BankingError):
    pass


class StoreError(BankingError):
    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class ConcurrencyConflict(StoreError):
    pass


class PartialFailure(StoreError):
    """A multi-step write stopped after some of its steps were applied."""

    def __init__(self, completed_steps: list[str], failed_step: str, cause: Exception):
        self.completed_steps = completed_steps
        self.failed_step = failed_step
        self.cause = cause
        super().__init__(
            f"Step '{failed_step}' failed after {', '.join(completed_steps)} succeeded: {cause}"
        )
