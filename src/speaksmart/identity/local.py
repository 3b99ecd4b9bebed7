"""In-process identity provider for development and tests."""

import secrets
import uuid

import structlog
from passlib.context import CryptContext

from speaksmart.errors import AuthError
from speaksmart.identity.provider import AuthSession, Identity, IdentityProvider
from speaksmart.identity.validation import (
    normalize_email,
    require_fields,
    validate_email,
    validate_new_password,
)

logger = structlog.get_logger()

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class LocalIdentityProvider(IdentityProvider):
    """Accounts and session tokens held in memory.

    Federated sign-in trusts the credential as the federated account's email
    address, which is enough to exercise the first-sign-in profile path.
    """

    def __init__(self) -> None:
        super().__init__()
        self._accounts: dict[str, dict] = {}  # email -> account
        self._sessions: dict[str, str] = {}  # token -> email
        self.sent_reset_emails: list[str] = []

    def _identity(self, account: dict) -> Identity:
        return Identity(
            uid=account["uid"],
            email=account["email"],
            display_name=account.get("display_name"),
            photo_url=account.get("photo_url"),
        )

    def _open_session(self, account: dict, is_new_user: bool = False) -> AuthSession:
        token = secrets.token_urlsafe(32)
        self._sessions[token] = account["email"]
        identity = self._identity(account)
        self._notify(identity)
        return AuthSession(identity=identity, token=token, is_new_user=is_new_user)

    async def sign_up(
        self, email: str, password: str, display_name: str | None = None
    ) -> AuthSession:
        require_fields(email, password)
        email = validate_email(email)
        validate_new_password(password)
        if email in self._accounts:
            raise AuthError("An account with this email already exists.", code="email-already-in-use")
        account = {
            "uid": uuid.uuid4().hex[:28],
            "email": email,
            "display_name": display_name,
            "password_hash": pwd_context.hash(password),
        }
        self._accounts[email] = account
        logger.info("account_created", uid=account["uid"])
        return self._open_session(account, is_new_user=True)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        require_fields(email, password)
        account = self._accounts.get(validate_email(email))
        if account is None or not account.get("password_hash"):
            raise AuthError(code="invalid-credential")
        if not pwd_context.verify(password, account["password_hash"]):
            raise AuthError(code="invalid-credential")
        return self._open_session(account)

    async def sign_in_with_federated_provider(
        self, credential: str, provider_id: str = "google.com"
    ) -> AuthSession:
        require_fields(credential)
        email = validate_email(credential)
        account = self._accounts.get(email)
        is_new = account is None
        if is_new:
            account = {"uid": uuid.uuid4().hex[:28], "email": email, "provider": provider_id}
            self._accounts[email] = account
        return self._open_session(account, is_new_user=is_new)

    async def sign_out(self, token: str) -> None:
        if self._sessions.pop(token, None) is not None:
            self._notify(None)

    async def verify(self, token: str) -> Identity:
        email = self._sessions.get(token or "")
        if email is None:
            raise AuthError("Session expired. Please sign in again.", code="invalid-token")
        return self._identity(self._accounts[email])

    async def send_password_reset_email(self, email: str) -> None:
        email = validate_email(email)
        if email not in self._accounts:
            raise AuthError("User not found", code="user-not-found")
        self.sent_reset_emails.append(email)
        logger.info("password_reset_email_sent", backend="local")

    def set_password(self, email: str, password: str) -> None:
        """Complete a reset link (the local stand-in for the emailed link)."""
        validate_new_password(password)
        self._accounts[normalize_email(email)]["password_hash"] = pwd_context.hash(password)
