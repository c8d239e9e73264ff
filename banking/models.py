from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import Base64Bytes, BaseModel, Field, ConfigDict


class AccountType(str, Enum):
    CHECKING = "Checking"
    SAVINGS = "Savings"


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"


class TransferMethod(str, Enum):
    ACH = "ACH"
    WIRE = "Wire"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TicketStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class TicketFilter(str, Enum):
    ALL = "all"
    OPEN = "open"
    CLOSED = "closed"


BALANCE_FIELDS = {
    AccountType.CHECKING: "checking",
    AccountType.SAVINGS: "savings",
}


class Identity(BaseModel):
    id: str
    email: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class Balance(BaseModel):
    user_id: str
    checking: Decimal = Decimal("0.00")
    savings: Decimal = Decimal("0.00")
    version: int = 0
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def total(self) -> Decimal:
        return self.checking + self.savings

    def amount_for(self, account_type: AccountType) -> Decimal:
        return getattr(self, BALANCE_FIELDS[AccountType(account_type)])

    def with_amount(self, account_type: AccountType, amount: Decimal, updated_at: datetime) -> "Balance":
        return self.model_copy(update={
            BALANCE_FIELDS[AccountType(account_type)]: amount,
            "version": self.version + 1,
            "updated_at": updated_at,
        })


class Profile(BaseModel):
    id: str
    full_name: Optional[str] = None
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    contact_number: Optional[str] = None
    withdrawal_count: int = 0
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionRecord(BaseModel):
    id: UUID
    user_id: str
    type: TransactionType
    amount: Decimal
    method: TransferMethod
    status: TransactionStatus
    account_type: AccountType
    created_at: datetime
    description: Optional[str] = None
    bank_name: Optional[str] = None
    routing_number: Optional[str] = None
    account_number: Optional[str] = None
    swift_code: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def can_settle(self) -> bool:
        return self.status == TransactionStatus.PENDING


class WithdrawalRecord(BaseModel):
    id: UUID
    user_id: str
    transaction_id: UUID
    amount: Decimal
    method: TransferMethod
    account_type: AccountType
    status: TransactionStatus
    created_at: datetime
    recipient_id: Optional[UUID] = None
    bank_name: Optional[str] = None
    routing_number: Optional[str] = None
    account_number: Optional[str] = None
    swift_code: Optional[str] = None
    fee_acknowledged: bool = False

    model_config = ConfigDict(from_attributes=True)


class Recipient(BaseModel):
    id: UUID
    user_id: str
    name: str
    bank_name: str
    routing_number: str
    account_number: str
    swift_code: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SupportTicket(BaseModel):
    id: UUID
    user_id: str
    email: Optional[str] = None
    subject: str
    message: str
    status: TicketStatus
    created_at: datetime
    attachment_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CustomerAccount(BaseModel):
    id: UUID
    user_id: Optional[str] = None
    email: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class SupportTopic(BaseModel):
    subject: str
    answer: str


class DepositRequest(BaseModel):
    amount: Decimal
    method: TransferMethod = TransferMethod.ACH
    account_type: AccountType = AccountType.CHECKING

    model_config = ConfigDict(json_schema_extra={
        "example": {"amount": "25.50", "method": "ACH", "account_type": "Checking"}
    })


class WithdrawRequest(BaseModel):
    amount: Decimal
    account_type: AccountType = AccountType.CHECKING
    method: TransferMethod = TransferMethod.ACH
    recipient_id: Optional[UUID] = None
    bank_name: Optional[str] = None
    routing_number: Optional[str] = None
    account_number: Optional[str] = None
    swift_code: Optional[str] = None
    acknowledge_fee: bool = Field(default=False, description="Customer accepted the administrative fee")


class SettleTransactionRequest(BaseModel):
    status: TransactionStatus


class CreateRecipientRequest(BaseModel):
    name: str
    bank_name: str
    routing_number: str
    account_number: str
    swift_code: Optional[str] = None


class AttachmentPayload(BaseModel):
    filename: str
    content_type: str = "application/octet-stream"
    data: Base64Bytes


class CreateTicketRequest(BaseModel):
    subject: str
    message: str
    attachment: Optional[AttachmentPayload] = None


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    contact_number: Optional[str] = None


class DepositResponse(BaseModel):
    transaction: TransactionRecord
    balances: Balance
    new_balance: Decimal
    message: str


class WithdrawalSummary(BaseModel):
    withdrawal: WithdrawalRecord
    transaction: TransactionRecord
    balances: Balance
    new_balance: Decimal
    withdrawal_count: int
    fee_applies_next: bool
    message: str


class FeeStatus(BaseModel):
    withdrawal_count: int
    threshold: int
    fee: Decimal
    blocked: bool
    instructions: Optional[str] = None


class TransactionListResponse(BaseModel):
    user_id: str
    transactions: list[TransactionRecord]
    total_count: int


class DashboardSummary(BaseModel):
    user_id: str
    greeting: str
    balances: Balance
    total_balance: Decimal
    recent_transactions: list[TransactionRecord]


class TicketListResponse(BaseModel):
    user_id: str
    tickets: list[SupportTicket]
    closed_ids: list[UUID] = Field(default_factory=list)
