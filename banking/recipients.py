import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID, uuid4

from .errors import NotFoundError, ValidationError
from .models import CreateRecipientRequest, Recipient
from .session import SessionProvider
from .store import RecordStore

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "bank_name", "routing_number", "account_number")


class RecipientService:
    def __init__(
        self,
        store: RecordStore,
        session: SessionProvider,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.session = session
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def list_recipients(self, user_id: str) -> list[Recipient]:
        self.session.require_user(user_id)
        rows = self.store.select("recipients", {"user_id": user_id}, order_by="created_at")
        return [Recipient.model_validate(row) for row in rows]

    def get_recipient(self, user_id: str, recipient_id: UUID) -> Recipient:
        self.session.require_user(user_id)
        row = self.store.select_one("recipients", {"id": recipient_id, "user_id": user_id})
        if row is None:
            raise NotFoundError(f"Recipient {recipient_id} not found")
        return Recipient.model_validate(row)

    def create_recipient(self, user_id: str, request: CreateRecipientRequest) -> Recipient:
        values = {name: (getattr(request, name) or "").strip() for name in REQUIRED_FIELDS}
        missing = [name for name, value in values.items() if not value]
        if missing:
            raise ValidationError(f"Please fill in all required fields: {', '.join(missing)}")
        self.session.require_user(user_id)

        recipient = Recipient(
            id=uuid4(),
            user_id=user_id,
            swift_code=(request.swift_code or "").strip() or None,
            created_at=self.clock(),
            **values,
        )
        row = self.store.insert("recipients", recipient.model_dump())
        logger.info("Recipient %s added for %s", recipient.id, user_id)
        return Recipient.model_validate(row)

    def delete_recipient(self, user_id: str, recipient_id: UUID) -> None:
        self.session.require_user(user_id)
        removed = self.store.delete("recipients", {"id": recipient_id, "user_id": user_id})
        if not removed:
            raise NotFoundError(f"Recipient {recipient_id} not found")
