"""Sign-in flows that also keep the user profile in place, plus the admin gate."""

import hmac

import structlog

from speaksmart.errors import AuthError
from speaksmart.identity.provider import AuthSession, Identity, IdentityProvider
from speaksmart.models.user_profile import UserProfile
from speaksmart.storage.document_store import DocumentStore
from speaksmart.storage.profiles import ensure_profile

logger = structlog.get_logger()


class AdminGate:
    """Admin access: email allow-list plus an optional shared password.

    An empty allow-list admits nobody.
    """

    def __init__(self, admin_emails: list[str], admin_pass: str | None = None):
        self.admin_emails = [e.strip().lower() for e in admin_emails if e.strip()]
        self.admin_pass = admin_pass or None

    def is_admin_email(self, email: str | None) -> bool:
        return bool(email) and email.lower() in self.admin_emails

    def check(self, identity: Identity, password: str | None = None) -> None:
        if not self.is_admin_email(identity.email):
            logger.warning("admin_access_denied", uid=identity.uid, reason="not_allow_listed")
            raise AuthError("Admin access required.", code="not-admin")
        if self.admin_pass and not hmac.compare_digest(password or "", self.admin_pass):
            logger.warning("admin_access_denied", uid=identity.uid, reason="bad_password")
            raise AuthError("Invalid admin password.", code="bad-admin-pass")


class AccountService:
    def __init__(self, identity: IdentityProvider, store: DocumentStore):
        self.identity = identity
        self.store = store

    async def _with_profile(self, session: AuthSession) -> tuple[AuthSession, UserProfile]:
        ident = session.identity
        profile = await ensure_profile(
            self.store,
            ident.uid,
            email=ident.email.lower() if ident.email else None,
            display_name=ident.display_name,
            photo_url=ident.photo_url,
        )
        return session, profile

    async def sign_up(
        self, email: str, password: str, display_name: str | None = None
    ) -> tuple[AuthSession, UserProfile]:
        session = await self.identity.sign_up(email, password, display_name)
        logger.info("user_signed_up", uid=session.identity.uid)
        return await self._with_profile(session)

    async def sign_in(self, email: str, password: str) -> tuple[AuthSession, UserProfile]:
        session = await self.identity.sign_in(email, password)
        logger.info("user_signed_in", uid=session.identity.uid)
        return await self._with_profile(session)

    async def sign_in_federated(
        self, credential: str, provider_id: str = "google.com"
    ) -> tuple[AuthSession, UserProfile]:
        session = await self.identity.sign_in_with_federated_provider(credential, provider_id)
        logger.info("user_signed_in", uid=session.identity.uid, provider=provider_id)
        return await self._with_profile(session)

    async def sign_out(self, token: str) -> None:
        await self.identity.sign_out(token)

    async def current(self, token: str) -> Identity:
        return await self.identity.verify(token)
