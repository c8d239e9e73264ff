"""
Support tickets.

Tickets open on creation and close automatically once they are older than
the configured age. Expiry is evaluated on every list read through
``is_expired``; there is no background sweep and no re-open.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import uuid4

from .config import Settings, get_settings
from .errors import ValidationError
from .models import (
    AttachmentPayload,
    CreateTicketRequest,
    SupportTicket,
    SupportTopic,
    TicketFilter,
    TicketListResponse,
    TicketStatus,
)
from .session import SessionProvider
from .store import BlobStorage, ChangeEvent, ChangeFeed, RecordStore, Subscription

logger = logging.getLogger(__name__)

COMMON_SUPPORT_TOPICS = [
    SupportTopic(
        subject="How do I reset my password?",
        answer='To reset your password, go to the login page and click "Forgot password?". '
               "You will receive an email with instructions.",
    ),
    SupportTopic(
        subject="How to update my account details?",
        answer='You can update your account details from the dashboard under the "Profile" section.',
    ),
    SupportTopic(
        subject="When will my deposit clear?",
        answer="Deposits usually clear within 2 business days. "
               "Checks clear daily and direct deposits come 2 days early.",
    ),
    SupportTopic(
        subject="How do I generate statements?",
        answer='You can generate account statements in the Support section by selecting the '
               '"Statements" option and entering your email.',
    ),
]


def is_expired(ticket: SupportTicket, now: datetime, max_age: timedelta = timedelta(hours=48)) -> bool:
    """True when an open ticket is strictly older than ``max_age`` at ``now``."""
    if ticket.status != TicketStatus.OPEN:
        return False
    return _aware(now) - _aware(ticket.created_at) > max_age


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


class TicketNotifier:
    """Tells the customer a ticket was closed. The default only logs."""

    def ticket_closed(self, ticket: SupportTicket) -> None:
        logger.info(
            "Ticket %s closed for %s: your support ticket titled %r has been automatically closed. "
            "Please submit a new ticket if the issue persists.",
            ticket.id, ticket.email or ticket.user_id, ticket.subject,
        )


class TicketWatch:
    """A live subscription that refreshes a user's ticket list on every change."""

    def __init__(self, service: "TicketService", user_id: str, on_refresh: Callable[[TicketListResponse], None]):
        self.service = service
        self.user_id = user_id
        self.on_refresh = on_refresh
        self._refreshing = False
        self._subscription: Optional[Subscription] = None

    def start(self) -> "TicketWatch":
        self._subscription = self.service.feed.subscribe(
            "tickets", {"user_id": self.user_id}, self._on_change
        )
        self.refresh()
        return self

    def refresh(self) -> None:
        # writes made while refreshing (auto-close) publish changes of their own
        if self._refreshing:
            return
        self._refreshing = True
        try:
            result = self.service.list_tickets(self.user_id)
        finally:
            self._refreshing = False
        self.on_refresh(result)

    def unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    @property
    def active(self) -> bool:
        return self._subscription is not None

    def _on_change(self, event: ChangeEvent) -> None:
        self.refresh()

    def __enter__(self) -> "TicketWatch":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


class TicketService:
    def __init__(
        self,
        store: RecordStore,
        blobs: BlobStorage,
        feed: ChangeFeed,
        session: SessionProvider,
        settings: Optional[Settings] = None,
        notifier: Optional[TicketNotifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.blobs = blobs
        self.feed = feed
        self.session = session
        self.settings = settings or get_settings()
        self.notifier = notifier or TicketNotifier()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def max_age(self) -> timedelta:
        return timedelta(hours=self.settings.TICKET_AUTO_CLOSE_HOURS)

    def create_ticket(self, user_id: str, request: CreateTicketRequest) -> SupportTicket:
        subject = request.subject.strip()
        message = request.message.strip()
        if not subject or not message:
            raise ValidationError("Subject and message are required")
        user = self.session.require_user(user_id)

        now = self.clock()
        attachment_url = None
        if request.attachment is not None:
            attachment_url = self._upload(request.attachment, now)

        ticket = SupportTicket(
            id=uuid4(),
            user_id=user_id,
            email=user.email,
            subject=subject,
            message=message,
            status=TicketStatus.OPEN,
            created_at=now,
            attachment_url=attachment_url,
        )
        row = self.store.insert("tickets", ticket.model_dump())
        logger.info("Ticket %s opened for %s", ticket.id, user_id)
        return SupportTicket.model_validate(row)

    def list_tickets(
        self,
        user_id: str,
        status_filter: TicketFilter = TicketFilter.ALL,
        now: Optional[datetime] = None,
    ) -> TicketListResponse:
        self.session.require_user(user_id)
        now = now or self.clock()
        rows = self.store.select("tickets", {"user_id": user_id}, order_by="created_at", descending=True)

        tickets = []
        closed_ids = []
        for ticket in (SupportTicket.model_validate(row) for row in rows):
            if is_expired(ticket, now, self.max_age):
                closed = self.store.update(
                    "tickets",
                    {"id": ticket.id, "status": TicketStatus.OPEN},
                    {"status": TicketStatus.CLOSED},
                )
                ticket = ticket.model_copy(update={"status": TicketStatus.CLOSED})
                if closed:
                    closed_ids.append(ticket.id)
                    self.notifier.ticket_closed(ticket)
            tickets.append(ticket)

        status_filter = TicketFilter(status_filter)
        if status_filter != TicketFilter.ALL:
            tickets = [ticket for ticket in tickets if ticket.status.value == status_filter.value]
        return TicketListResponse(user_id=user_id, tickets=tickets, closed_ids=closed_ids)

    def watch(self, user_id: str, on_refresh: Callable[[TicketListResponse], None]) -> TicketWatch:
        self.session.require_user(user_id)
        return TicketWatch(self, user_id, on_refresh).start()

    def _upload(self, attachment: AttachmentPayload, now: datetime) -> str:
        bucket = self.settings.ATTACHMENTS_BUCKET
        path = f"tickets/{int(now.timestamp() * 1000)}_{attachment.filename}"
        stored_path = self.blobs.upload(bucket, path, attachment.data, attachment.content_type)
        return self.blobs.get_public_url(bucket, stored_path)
