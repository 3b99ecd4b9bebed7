"""Admin-approved password reset.

1. The learner files a request for a known email (status ``pending``).
2. An admin approves it (status ``approved``).
3. The learner submits a new password; the provider's reset email is sent
   and the request moves to ``password_reset_sent``.
"""

import structlog
from passlib.context import CryptContext

from speaksmart.errors import UserInputError
from speaksmart.identity.provider import IdentityProvider
from speaksmart.identity.validation import require_fields, validate_email, validate_new_password
from speaksmart.models.password_reset import PasswordResetRequest, ResetStatus
from speaksmart.storage.document_store import SERVER_TIMESTAMP, DocumentStore
from speaksmart.storage.paths import PASSWORD_RESET_REQUESTS, reset_request_path
from speaksmart.storage.profiles import find_profile_by_email

logger = structlog.get_logger()

reset_hash_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

RESET_SENT_MESSAGE = "Password reset email sent. Check your email to complete the process."


class PasswordResetFlow:
    def __init__(self, store: DocumentStore, identity: IdentityProvider):
        self.store = store
        self.identity = identity

    async def request_reset(self, email: str) -> str:
        """File a pending request. Returns the request id."""
        email = validate_email(email)
        if await find_profile_by_email(self.store, email) is None:
            raise UserInputError("No account found with this email address")
        request_id = await self.store.add(PASSWORD_RESET_REQUESTS, {
            "email": email,
            "requestedAt": SERVER_TIMESTAMP,
            "status": str(ResetStatus.PENDING),
            "approved": False,
        })
        logger.info("password_reset_requested", request_id=request_id)
        return request_id

    async def find_approved(self, email: str) -> PasswordResetRequest | None:
        matches = await self.store.query(PASSWORD_RESET_REQUESTS, {
            "email": validate_email(email),
            "approved": True,
            "status": str(ResetStatus.APPROVED),
        })
        if not matches:
            return None
        snap = matches[-1]
        return PasswordResetRequest.model_validate({**snap.to_dict(), "id": snap.id})

    async def is_approved(self, email: str) -> bool:
        return await self.find_approved(email) is not None

    async def submit_new_password(self, email: str, password: str, confirm: str) -> str:
        """Send the reset email for an approved request. Returns the request id.

        The chosen password is kept only as a hash on the request.
        """
        require_fields(email, password, confirm)
        validate_new_password(password, confirm)
        request = await self.find_approved(email)
        if request is None:
            raise UserInputError("No approved reset request found")

        await self.identity.send_password_reset_email(request.email)
        await self.store.update(reset_request_path(request.id), {
            "status": str(ResetStatus.PASSWORD_RESET_SENT),
            "passwordResetSentAt": SERVER_TIMESTAMP,
            "newPasswordToSet": reset_hash_context.hash(password),
            "message": RESET_SENT_MESSAGE,
        })
        logger.info("password_reset_sent", request_id=request.id)
        return request.id
