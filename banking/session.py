import logging
from abc import ABC, abstractmethod
from itertools import count
from typing import Callable, Optional

from .errors import AuthError, BankingError
from .models import Identity
from .store import Subscription

logger = logging.getLogger(__name__)

AuthCallback = Callable[[str, Optional[Identity]], None]


class AuthClient(ABC):
    @abstractmethod
    def get_current_user(self) -> Optional[Identity]:
        ...

    @abstractmethod
    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        ...

    @abstractmethod
    def sign_out(self) -> None:
        ...


class ListenerRegistry:
    """Keeps auth state listeners for clients that fire events locally."""

    def __init__(self):
        self._listeners: dict[int, AuthCallback] = {}
        self._ids = count(1)

    def add(self, callback: AuthCallback) -> Subscription:
        listener_id = next(self._ids)
        self._listeners[listener_id] = callback
        return Subscription(lambda: self._listeners.pop(listener_id, None))

    def emit(self, event: str, user: Optional[Identity]) -> None:
        for callback in list(self._listeners.values()):
            callback(event, user)


class InMemoryAuth(AuthClient):
    def __init__(self, user: Optional[Identity] = None):
        self._user = user
        self._listeners = ListenerRegistry()

    def get_current_user(self) -> Optional[Identity]:
        return self._user

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        return self._listeners.add(callback)

    def sign_in(self, user: Identity) -> None:
        self._user = user
        self._listeners.emit("SIGNED_IN", user)

    def sign_out(self) -> None:
        self._user = None
        self._listeners.emit("SIGNED_OUT", None)


class SessionProvider:
    """
    Current identity for one client session.

    ``load()`` reads the identity once and keeps it current through the
    auth client's state change notifications until ``close()``.
    """

    def __init__(self, auth: AuthClient):
        self.auth = auth
        self.user: Optional[Identity] = None
        self.loading = True
        self.error: Optional[str] = None
        self._subscription: Optional[Subscription] = None

    def load(self) -> Optional[Identity]:
        self.loading = True
        self.error = None
        try:
            self.user = self.auth.get_current_user()
        except BankingError as exc:
            logger.error("Error fetching user session: %s", exc)
            self.error = f"Authentication error: {exc}"
            self.user = None
        finally:
            self.loading = False
        if self._subscription is None:
            self._subscription = self.auth.on_auth_state_change(self._on_auth_state_change)
        return self.user

    def require_user(self, expected_id: Optional[str] = None) -> Identity:
        if self.loading:
            self.load()
        if self.user is None:
            raise AuthError("User not authenticated")
        if expected_id is not None and self.user.id != expected_id:
            raise AuthError("Session does not belong to the requested user")
        return self.user

    def sign_out(self) -> None:
        self.auth.sign_out()
        self.user = None

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _on_auth_state_change(self, event: str, user: Optional[Identity]) -> None:
        logger.debug("Auth state change: %s", event)
        self.user = user
        self.loading = False

    @classmethod
    def for_identity(cls, identity: Identity) -> "SessionProvider":
        """A loaded session for an identity already verified by the caller."""
        session = cls(InMemoryAuth(identity))
        session.load()
        return session
