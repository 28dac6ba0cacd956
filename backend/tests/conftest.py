"""
Shared pytest fixtures for all tests.

Factories
---------
Import factories directly from their modules:

    from tests.accounts.factories import UserFactory, OrganizationFactory
    from tests.billing.factories import PackageFactory, SubscriptionFactory

Stripe and Stytch are never called for real: billing tests patch
``apps.billing.services.get_stripe``, provisioning tests inject
``FakeIdentityProvider``.
"""

from collections.abc import Callable
from typing import Any

import pytest
import stripe
from django.test import Client

from apps.accounts.identity import AuthenticatedIdentity, SignUpResult


class FakeIdentityProvider:
    """
    In-memory stand-in for StytchIdentityProvider.

    Issues one identity per email; ``issue_sessions=False`` simulates a
    sign-up that needs email verification before a session exists.
    """

    def __init__(self, issue_sessions: bool = True):
        self.issue_sessions = issue_sessions
        self.identities: dict[str, str] = {}
        self.sessions: dict[str, AuthenticatedIdentity] = {}
        self.sign_up_calls: list[dict[str, Any]] = []
        self.on_sign_up: Callable[[str, str, dict], None] | None = None

    def sign_up(self, email: str, password: str, metadata: dict | None = None) -> SignUpResult:
        identity_ref = self.identities.setdefault(email, f"user-test-{len(self.identities) + 1}")
        self.sign_up_calls.append({"email": email, "metadata": metadata or {}})
        if self.on_sign_up is not None:
            self.on_sign_up(identity_ref, email, metadata or {})
        session_token = self.open_session(email) if self.issue_sessions else None
        return SignUpResult(identity_ref=identity_ref, session_token=session_token)

    def open_session(self, email: str) -> str:
        identity_ref = self.identities.setdefault(email, f"user-test-{len(self.identities) + 1}")
        token = f"session-{identity_ref}-{len(self.sessions) + 1}"
        self.sessions[token] = AuthenticatedIdentity(identity_ref=identity_ref, email=email)
        return token

    def authenticate_session(self, session_token: str) -> AuthenticatedIdentity:
        from apps.accounts.exceptions import IdentityProviderError

        try:
            return self.sessions[session_token]
        except KeyError:
            raise IdentityProviderError("Your session could not be verified.") from None


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    """Sleep replacement that records requested delays instead of waiting."""
    delays: list[float] = []

    def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep


def make_stripe_mock(mock_get_stripe: Any) -> Any:
    """
    Configure a patched get_stripe and return the mock stripe module.

    Error classes stay real so ``except stripe.StripeError`` works.
    """
    mock_stripe = mock_get_stripe.return_value
    mock_stripe.StripeError = stripe.StripeError
    return mock_stripe


@pytest.fixture
def api_client() -> Client:
    """
    Django test client for full HTTP request/response cycle tests.

    Example:
        def test_api_returns_200(api_client):
            response = api_client.get("/api/v1/health")
            assert response.status_code == 200
    """
    return Client()
