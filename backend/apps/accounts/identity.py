"""
Identity provider adapter.

Wraps the Stytch calls the provisioning saga needs. Stytch owns credentials
and sessions; the saga only ever sees an identity reference (the Stytch
user_id), the user's email and, when one was issued, a session token.
"""

from dataclasses import dataclass
from typing import Any

from django.conf import settings
from stytch.core.response_base import StytchError

from apps.accounts.exceptions import IdentityProviderError
from apps.accounts.stytch_client import get_stytch_client
from apps.core.logging import get_logger

logger = get_logger(__name__)

DUPLICATE_EMAIL_ERROR = "duplicate_email"


@dataclass(frozen=True)
class SignUpResult:
    identity_ref: str
    session_token: str | None


@dataclass(frozen=True)
class AuthenticatedIdentity:
    identity_ref: str
    email: str


def _error_type(error: StytchError) -> str | None:
    details = getattr(error, "details", None)
    return getattr(details, "error_type", None)


class StytchIdentityProvider:
    """Email + password sign-up and session checks against Stytch."""

    def __init__(self, client: Any = None):
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_stytch_client()
        return self._client

    def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> SignUpResult:
        """
        Create the Stytch user for a paid signup.

        If the email is already registered (the whole signup is being retried)
        the same credentials are authenticated instead, so the retry converges
        on the existing identity.

        Returns:
            SignUpResult with session_token None when Stytch did not start a
            session (for example when email verification is pending).
        """
        try:
            response = self.client.passwords.create(
                email=email,
                password=password,
                session_duration_minutes=settings.STYTCH_SESSION_DURATION_MINUTES,
                trusted_metadata=metadata or {},
            )
        except StytchError as e:
            if _error_type(e) != DUPLICATE_EMAIL_ERROR:
                raise IdentityProviderError(context={"email": email}) from e
            logger.info("identity_sign_up_duplicate_email", email=email)
            response = self._authenticate_password(email, password)

        return SignUpResult(
            identity_ref=response.user_id,
            session_token=getattr(response, "session_token", None) or None,
        )

    def _authenticate_password(self, email: str, password: str) -> Any:
        try:
            return self.client.passwords.authenticate(
                email=email,
                password=password,
                session_duration_minutes=settings.STYTCH_SESSION_DURATION_MINUTES,
            )
        except StytchError as e:
            raise IdentityProviderError(context={"email": email}) from e

    def authenticate_session(self, session_token: str) -> AuthenticatedIdentity:
        """
        Resolve a session token to the identity it belongs to.

        Raises:
            IdentityProviderError: the session is invalid or expired.
        """
        try:
            response = self.client.sessions.authenticate(session_token=session_token)
        except StytchError as e:
            raise IdentityProviderError(
                "Your session could not be verified. Please sign in again."
            ) from e

        emails = getattr(response.user, "emails", None) or []
        email = emails[0].email if emails else ""
        return AuthenticatedIdentity(identity_ref=response.session.user_id, email=email)
