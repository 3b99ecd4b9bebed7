"""Firebase Authentication via the Identity Toolkit REST API."""

from typing import Any

import httpx
import structlog

from speaksmart.errors import AuthError
from speaksmart.identity.provider import AuthSession, Identity, IdentityProvider
from speaksmart.identity.validation import require_fields, validate_email, validate_new_password

logger = structlog.get_logger()

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

# Firebase error code -> message shown to the learner
_RESET_ERRORS = {
    "EMAIL_NOT_FOUND": "User not found",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many requests. Please try again later.",
}


class FirebaseIdentityProvider(IdentityProvider):
    """Email/password and Google sign-in against Firebase Auth.

    Session tokens are Firebase ID tokens; ``verify`` resolves them with
    ``accounts:lookup``.

    Args:
        api_key: Firebase web API key.
        client: Pre-built HTTP client, used by tests.
    """

    def __init__(self, api_key: str, client: httpx.AsyncClient | None = None):
        super().__init__()
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=15)

    async def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(
                f"{IDENTITY_TOOLKIT_URL}/accounts:{method}",
                params={"key": self.api_key},
                json=payload,
            )
        except httpx.RequestError as e:
            logger.error("identity_request_failed", method=method, error=str(e))
            raise AuthError() from e

        if response.status_code >= 400:
            try:
                code = response.json()["error"]["message"]
            except (ValueError, KeyError, TypeError):
                code = f"HTTP_{response.status_code}"
            logger.warning("identity_call_rejected", method=method, code=code)
            raise AuthError(code=code)
        return response.json()

    @staticmethod
    def _session(data: dict[str, Any], is_new_user: bool = False) -> AuthSession:
        identity = Identity(
            uid=data["localId"],
            email=data.get("email"),
            display_name=data.get("displayName"),
            photo_url=data.get("photoUrl"),
        )
        return AuthSession(
            identity=identity,
            token=data["idToken"],
            is_new_user=bool(data.get("isNewUser", is_new_user)),
        )

    async def sign_up(
        self, email: str, password: str, display_name: str | None = None
    ) -> AuthSession:
        require_fields(email, password)
        email = validate_email(email)
        validate_new_password(password)
        data = await self._call("signUp", {
            "email": email,
            "password": password,
            "returnSecureToken": True,
        })
        if display_name:
            updated = await self._call("update", {
                "idToken": data["idToken"],
                "displayName": display_name,
                "returnSecureToken": True,
            })
            data = {**data, **updated}
        session = self._session(data, is_new_user=True)
        self._notify(session.identity)
        return session

    async def sign_in(self, email: str, password: str) -> AuthSession:
        require_fields(email, password)
        data = await self._call("signInWithPassword", {
            "email": validate_email(email),
            "password": password,
            "returnSecureToken": True,
        })
        session = self._session(data)
        self._notify(session.identity)
        return session

    async def sign_in_with_federated_provider(
        self, credential: str, provider_id: str = "google.com"
    ) -> AuthSession:
        require_fields(credential)
        try:
            data = await self._call("signInWithIdp", {
                "postBody": f"id_token={credential}&providerId={provider_id}",
                "requestUri": "http://localhost",
                "returnSecureToken": True,
                "returnIdpCredential": True,
            })
        except AuthError as e:
            raise AuthError("Failed to sign in with Google.", code=e.code) from e
        session = self._session(data)
        self._notify(session.identity)
        return session

    async def sign_out(self, token: str) -> None:
        # ID tokens are stateless; the client discards its copy.
        self._notify(None)

    async def verify(self, token: str) -> Identity:
        if not token:
            raise AuthError("Session expired. Please sign in again.", code="invalid-token")
        data = await self._call("lookup", {"idToken": token})
        users = data.get("users") or []
        if not users:
            raise AuthError("Session expired. Please sign in again.", code="invalid-token")
        user = users[0]
        return Identity(
            uid=user["localId"],
            email=user.get("email"),
            display_name=user.get("displayName"),
            photo_url=user.get("photoUrl"),
        )

    async def send_password_reset_email(self, email: str) -> None:
        try:
            await self._call("sendOobCode", {
                "requestType": "PASSWORD_RESET",
                "email": validate_email(email),
            })
        except AuthError as e:
            message = _RESET_ERRORS.get(
                e.code or "", "Failed to send password reset email. Please try again."
            )
            raise AuthError(message, code=e.code) from e
        logger.info("password_reset_email_sent", backend="firebase")

    async def aclose(self) -> None:
        await self._client.aclose()
