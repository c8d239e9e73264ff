import logging
from dataclasses import dataclass, field
from typing import Callable, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .admin import AccountApprovalService
from .config import Settings, get_settings
from .errors import (
    AuthError,
    BankingError,
    ConcurrencyConflict,
    ConfigurationError,
    FeeRequired,
    NotFoundError,
    StoreError,
    ValidationError,
)
from .models import (
    AccountType,
    Balance,
    CreateRecipientRequest,
    CreateTicketRequest,
    CustomerAccount,
    DashboardSummary,
    DepositRequest,
    DepositResponse,
    FeeStatus,
    Profile,
    ProfileUpdate,
    Recipient,
    SettleTransactionRequest,
    SupportTicket,
    SupportTopic,
    TicketFilter,
    TicketListResponse,
    TransactionListResponse,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    WithdrawalRecord,
    WithdrawalSummary,
    WithdrawRequest,
)
from .recipients import RecipientService
from .service import AccountService, ProfileService
from .session import AuthClient, SessionProvider
from .store import BlobStorage, ChangeFeed, RecordStore
from .supabase import SupabaseAuth, SupabaseClient, SupabaseStorage, SupabaseStore
from .tickets import COMMON_SUPPORT_TOPICS, TicketNotifier, TicketService

logger = logging.getLogger(__name__)


@dataclass
class Backend:
    """Collaborators for one request, bound to the caller's access token."""

    store: RecordStore
    blobs: BlobStorage
    feed: ChangeFeed
    auth: AuthClient
    on_close: list[Callable[[], None]] = field(default_factory=list)

    def close(self) -> None:
        for callback in self.on_close:
            callback()


Connector = Callable[[Optional[str]], Backend]


def _status_for(exc: BankingError) -> int:
    if isinstance(exc, FeeRequired):
        return status.HTTP_402_PAYMENT_REQUIRED
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, AuthError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConcurrencyConflict):
        return status.HTTP_409_CONFLICT
    return status.HTTP_502_BAD_GATEWAY


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def create_app(
    connect: Connector,
    settings: Optional[Settings] = None,
    notifier: Optional[TicketNotifier] = None,
    root_path: str = "",
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="Retail Banking API",
        description="Balances, deposits, withdrawals, recipients, profiles and support tickets",
        version="1.0.0",
        root_path=root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.debug("%s %s", request.method, request.url.path)
        response = await call_next(request)
        logger.debug("%s %s - %s", request.method, request.url.path, response.status_code)
        return response

    @app.exception_handler(BankingError)
    async def banking_error_handler(request: Request, exc: BankingError):
        status_code = _status_for(exc)
        if isinstance(exc, FeeRequired):
            return JSONResponse(status_code=status_code, content={
                "detail": str(exc),
                "fee": str(exc.fee),
                "withdrawal_count": exc.withdrawal_count,
                "instructions": exc.instructions,
            })
        if isinstance(exc, StoreError) and not isinstance(exc, ConcurrencyConflict):
            logger.error("Backend error on %s %s: %s", request.method, request.url.path, exc)
            return JSONResponse(status_code=status_code, content={"detail": "The banking backend could not complete the request"})
        if isinstance(exc, ConfigurationError):
            logger.error("Configuration error: %s", exc)
            return JSONResponse(status_code=500, content={"detail": "Service is not configured"})
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    def get_backend(authorization: Optional[str] = Header(default=None)):
        backend = connect(_bearer_token(authorization))
        try:
            yield backend
        finally:
            backend.close()

    def get_session(backend: Backend = Depends(get_backend)) -> SessionProvider:
        session = SessionProvider(backend.auth)
        session.load()
        if session.user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=session.error or "User not authenticated",
            )
        return session

    def require_admin(session: SessionProvider = Depends(get_session)) -> SessionProvider:
        if not session.user.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator access required")
        return session

    def accounts(backend: Backend = Depends(get_backend), session: SessionProvider = Depends(get_session)) -> AccountService:
        return AccountService(backend.store, session, settings)

    def admin_accounts(backend: Backend = Depends(get_backend), session: SessionProvider = Depends(require_admin)) -> AccountService:
        return AccountService(backend.store, session, settings)

    def recipients(backend: Backend = Depends(get_backend), session: SessionProvider = Depends(get_session)) -> RecipientService:
        return RecipientService(backend.store, session)

    def profiles(backend: Backend = Depends(get_backend), session: SessionProvider = Depends(get_session)) -> ProfileService:
        return ProfileService(backend.store, session)

    def tickets(backend: Backend = Depends(get_backend), session: SessionProvider = Depends(get_session)) -> TicketService:
        return TicketService(backend.store, backend.blobs, backend.feed, session, settings, notifier)

    def approvals(backend: Backend = Depends(get_backend), session: SessionProvider = Depends(require_admin)) -> AccountApprovalService:
        return AccountApprovalService(backend.store, session)

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "retail-banking"}

    @app.get("/support/topics", response_model=list[SupportTopic], tags=["Support"])
    def support_topics() -> list[SupportTopic]:
        return COMMON_SUPPORT_TOPICS

    @app.get("/me/balance", response_model=Balance, tags=["Accounts"])
    def get_balance(service: AccountService = Depends(accounts)) -> Balance:
        return service.get_balances(service.session.user.id)

    @app.get("/me/dashboard", response_model=DashboardSummary, tags=["Accounts"])
    def get_dashboard(service: AccountService = Depends(accounts)) -> DashboardSummary:
        return service.dashboard(service.session.user.id)

    @app.post("/me/deposits", response_model=DepositResponse, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
    def create_deposit(request: DepositRequest, service: AccountService = Depends(accounts)) -> DepositResponse:
        return service.deposit(service.session.user.id, request)

    @app.post("/me/withdrawals", response_model=WithdrawalSummary, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
    def create_withdrawal(request: WithdrawRequest, service: AccountService = Depends(accounts)) -> WithdrawalSummary:
        return service.withdraw(service.session.user.id, request)

    @app.get("/me/withdrawals", response_model=list[WithdrawalRecord], tags=["Accounts"])
    def get_withdrawals(service: AccountService = Depends(accounts)) -> list[WithdrawalRecord]:
        return service.list_withdrawals(service.session.user.id)

    @app.get("/me/withdrawals/fee", response_model=FeeStatus, tags=["Accounts"])
    def get_fee_status(service: AccountService = Depends(accounts)) -> FeeStatus:
        return service.fee_status(service.session.user.id)

    @app.get("/me/transactions", response_model=TransactionListResponse, tags=["Accounts"])
    def get_transactions(
        type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        account_type: Optional[AccountType] = None,
        limit: int = 50,
        offset: int = 0,
        service: AccountService = Depends(accounts),
    ) -> TransactionListResponse:
        return service.list_transactions(service.session.user.id, type, status, account_type, limit, offset)

    @app.get("/me/recipients", response_model=list[Recipient], tags=["Recipients"])
    def get_recipients(service: RecipientService = Depends(recipients)) -> list[Recipient]:
        return service.list_recipients(service.session.user.id)

    @app.post("/me/recipients", response_model=Recipient, status_code=status.HTTP_201_CREATED, tags=["Recipients"])
    def add_recipient(request: CreateRecipientRequest, service: RecipientService = Depends(recipients)) -> Recipient:
        return service.create_recipient(service.session.user.id, request)

    @app.delete("/me/recipients/{recipient_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Recipients"])
    def remove_recipient(recipient_id: UUID, service: RecipientService = Depends(recipients)) -> None:
        service.delete_recipient(service.session.user.id, recipient_id)

    @app.get("/me/tickets", response_model=TicketListResponse, tags=["Support"])
    def get_tickets(
        status: TicketFilter = TicketFilter.ALL,
        service: TicketService = Depends(tickets),
    ) -> TicketListResponse:
        return service.list_tickets(service.session.user.id, status)

    @app.post("/me/tickets", response_model=SupportTicket, status_code=status.HTTP_201_CREATED, tags=["Support"])
    def open_ticket(request: CreateTicketRequest, service: TicketService = Depends(tickets)) -> SupportTicket:
        return service.create_ticket(service.session.user.id, request)

    @app.get("/me/profile", response_model=Profile, tags=["Profile"])
    def get_profile(service: ProfileService = Depends(profiles)) -> Profile:
        return service.get_profile(service.session.user.id)

    @app.put("/me/profile", response_model=Profile, tags=["Profile"])
    def put_profile(update: ProfileUpdate, service: ProfileService = Depends(profiles)) -> Profile:
        return service.update_profile(service.session.user.id, update)

    @app.get("/admin/accounts/pending", response_model=list[CustomerAccount], tags=["Admin"])
    def pending_accounts(service: AccountApprovalService = Depends(approvals)) -> list[CustomerAccount]:
        return service.list_pending()

    @app.post("/admin/accounts/{account_id}/activate", response_model=CustomerAccount, tags=["Admin"])
    def activate_account(account_id: UUID, service: AccountApprovalService = Depends(approvals)) -> CustomerAccount:
        return service.activate(account_id)

    @app.post("/admin/transactions/{transaction_id}/status", response_model=TransactionRecord, tags=["Admin"])
    def settle_transaction(
        transaction_id: UUID,
        request: SettleTransactionRequest,
        service: AccountService = Depends(admin_accounts),
    ) -> TransactionRecord:
        return service.settle_transaction(transaction_id, request.status)

    return app


def supabase_connector(settings: Optional[Settings] = None) -> Connector:
    """Per-request Supabase collaborators acting with the caller's token."""
    settings = settings or get_settings()
    # fail at startup rather than on the first request
    SupabaseClient.from_settings(settings).close()

    def connect(access_token: Optional[str]) -> Backend:
        client = SupabaseClient.from_settings(settings, access_token=access_token)
        store = SupabaseStore(client, settings.SUPABASE_MOVEMENT_RPC)
        return Backend(
            store=store,
            blobs=SupabaseStorage(client),
            feed=store.feed,
            auth=SupabaseAuth(client),
            on_close=[client.close],
        )

    return connect


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(supabase_connector()), host="0.0.0.0", port=8000)
