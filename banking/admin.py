import logging
from uuid import UUID

from .errors import AuthError, NotFoundError, StoreError
from .models import CustomerAccount
from .session import SessionProvider
from .store import RecordStore

logger = logging.getLogger(__name__)

PERMISSION_STATUS_CODES = (401, 403)


class AccountApprovalService:
    """
    Pending customer accounts and their activation.

    Who may approve is decided by the backend (row level security) and by
    the HTTP layer from the identity the auth backend returns. Nothing here
    compares emails or roles on the caller's side.
    """

    def __init__(self, store: RecordStore, session: SessionProvider):
        self.store = store
        self.session = session

    def list_pending(self) -> list[CustomerAccount]:
        self.session.require_user()
        rows = self._call(self.store.select, "accounts", order_by="created_at")
        accounts = [CustomerAccount.model_validate(row) for row in rows]
        return [account for account in accounts if not account.is_active]

    def activate(self, account_id: UUID) -> CustomerAccount:
        user = self.session.require_user()
        updated = self._call(self.store.update, "accounts", {"id": account_id}, {"status": "active"})
        if not updated:
            raise NotFoundError(f"Account {account_id} not found")
        logger.info("Account %s activated by %s", account_id, user.id)
        return CustomerAccount.model_validate(updated[0])

    def _call(self, operation, *args, **kwargs):
        try:
            return operation(*args, **kwargs)
        except StoreError as exc:
            if exc.status_code in PERMISSION_STATUS_CODES:
                raise AuthError(f"Not allowed to manage accounts: {exc}") from exc
            raise
