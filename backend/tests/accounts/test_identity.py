"""
Tests for the Stytch identity provider adapter.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from stytch.core.response_base import StytchError

from apps.accounts.exceptions import IdentityProviderError
from apps.accounts.identity import StytchIdentityProvider


def stytch_error(error_type: str) -> StytchError:
    error = StytchError.__new__(StytchError)
    error.details = SimpleNamespace(error_type=error_type, error_message=error_type)
    return error


@pytest.fixture
def stytch_client() -> MagicMock:
    client = MagicMock()
    client.passwords.create.return_value = SimpleNamespace(
        user_id="user-test-1", session_token="session-abc"
    )
    return client


class TestSignUp:
    def test_returns_identity_and_session(self, stytch_client: MagicMock) -> None:
        provider = StytchIdentityProvider(client=stytch_client)

        result = provider.sign_up("jane@acme.com", "s3cret-pass", metadata={"organization_id": "7"})

        assert result.identity_ref == "user-test-1"
        assert result.session_token == "session-abc"
        kwargs = stytch_client.passwords.create.call_args.kwargs
        assert kwargs["email"] == "jane@acme.com"
        assert kwargs["trusted_metadata"] == {"organization_id": "7"}

    def test_empty_session_token_means_no_session(self, stytch_client: MagicMock) -> None:
        stytch_client.passwords.create.return_value = SimpleNamespace(
            user_id="user-test-1", session_token=""
        )

        result = StytchIdentityProvider(client=stytch_client).sign_up("jane@acme.com", "pw")

        assert result.session_token is None

    def test_duplicate_email_authenticates_instead(self, stytch_client: MagicMock) -> None:
        stytch_client.passwords.create.side_effect = stytch_error("duplicate_email")
        stytch_client.passwords.authenticate.return_value = SimpleNamespace(
            user_id="user-test-1", session_token="session-again"
        )

        result = StytchIdentityProvider(client=stytch_client).sign_up("jane@acme.com", "pw")

        assert result.identity_ref == "user-test-1"
        assert result.session_token == "session-again"
        stytch_client.passwords.authenticate.assert_called_once()

    def test_duplicate_email_with_wrong_password(self, stytch_client: MagicMock) -> None:
        stytch_client.passwords.create.side_effect = stytch_error("duplicate_email")
        stytch_client.passwords.authenticate.side_effect = stytch_error("unauthorized_credentials")

        with pytest.raises(IdentityProviderError) as exc_info:
            StytchIdentityProvider(client=stytch_client).sign_up("jane@acme.com", "pw")

        assert exc_info.value.context == {"email": "jane@acme.com"}

    def test_other_errors_raise(self, stytch_client: MagicMock) -> None:
        stytch_client.passwords.create.side_effect = stytch_error("weak_password")

        with pytest.raises(IdentityProviderError):
            StytchIdentityProvider(client=stytch_client).sign_up("jane@acme.com", "pw")

        stytch_client.passwords.authenticate.assert_not_called()


class TestAuthenticateSession:
    def test_resolves_identity(self, stytch_client: MagicMock) -> None:
        stytch_client.sessions.authenticate.return_value = SimpleNamespace(
            session=SimpleNamespace(user_id="user-test-1"),
            user=SimpleNamespace(emails=[SimpleNamespace(email="jane@acme.com")]),
        )

        identity = StytchIdentityProvider(client=stytch_client).authenticate_session("tok")

        assert identity.identity_ref == "user-test-1"
        assert identity.email == "jane@acme.com"
        stytch_client.sessions.authenticate.assert_called_once_with(session_token="tok")

    def test_invalid_session_raises(self, stytch_client: MagicMock) -> None:
        stytch_client.sessions.authenticate.side_effect = stytch_error("session_not_found")

        with pytest.raises(IdentityProviderError):
            StytchIdentityProvider(client=stytch_client).authenticate_session("tok")
