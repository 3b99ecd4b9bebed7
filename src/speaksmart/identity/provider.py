"""Identity provider interface."""

from abc import ABC, abstractmethod
from collections.abc import Callable

import structlog
from pydantic import BaseModel

logger = structlog.get_logger()


class Identity(BaseModel):
    uid: str
    email: str | None = None
    display_name: str | None = None
    photo_url: str | None = None


class AuthSession(BaseModel):
    identity: Identity
    token: str
    is_new_user: bool = False


SessionCallback = Callable[[Identity | None], None]
Unsubscribe = Callable[[], None]


class IdentityProvider(ABC):
    """Email/password and federated sign-in with opaque session tokens.

    Sign-in and sign-out are broadcast to ``observe_session`` listeners.
    """

    def __init__(self) -> None:
        self._listeners: list[SessionCallback] = []

    @abstractmethod
    async def sign_up(
        self, email: str, password: str, display_name: str | None = None
    ) -> AuthSession: ...

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthSession: ...

    @abstractmethod
    async def sign_in_with_federated_provider(
        self, credential: str, provider_id: str = "google.com"
    ) -> AuthSession: ...

    @abstractmethod
    async def sign_out(self, token: str) -> None: ...

    @abstractmethod
    async def verify(self, token: str) -> Identity:
        """Resolve a session token. Raises AuthError when it is not valid."""

    @abstractmethod
    async def send_password_reset_email(self, email: str) -> None: ...

    def observe_session(self, callback: SessionCallback) -> Unsubscribe:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, identity: Identity | None) -> None:
        for callback in list(self._listeners):
            try:
                callback(identity)
            except Exception:
                logger.exception("session_listener_failed")

    async def aclose(self) -> None:
        return None
