"""
Retail Banking Client

This package provides:
- Session identity gating every operation
- Deposits and withdrawals against per-account-type balances
- Version-checked balance movements with append-only transaction records
- Withdrawal fee gate after a configurable number of withdrawals
- Saved recipients for withdrawal destinations
- Support tickets with lazy auto-close after 48 hours
- In-memory and Supabase-backed record stores
"""

from .models import (
    AccountType,
    Balance,
    Identity,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    TransferMethod,
    SupportTicket,
    TicketStatus,
)
from .service import AccountService, ProfileService
from .recipients import RecipientService
from .session import SessionProvider
from .store import InMemoryStore, RecordStore
from .tickets import TicketService, is_expired

__all__ = [
    "AccountType",
    "Balance",
    "Identity",
    "TransactionRecord",
    "TransactionStatus",
    "TransactionType",
    "TransferMethod",
    "SupportTicket",
    "TicketStatus",
    "AccountService",
    "ProfileService",
    "RecipientService",
    "SessionProvider",
    "InMemoryStore",
    "RecordStore",
    "TicketService",
    "is_expired",
]
