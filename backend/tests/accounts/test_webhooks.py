"""
Tests for Stytch webhook handlers.

The user CREATE event is the out-of-band writer that races the
provisioning saga for the same identity.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from django.test import RequestFactory
from svix.webhooks import WebhookVerificationError

from apps.accounts.models import User
from apps.accounts.webhooks import handle_user_created, stytch_webhook
from apps.core.models import ProcessedWebhook

from .factories import OrganizationFactory, UserFactory


def user_event(user_id: str = "user-test-1", email: str = "Jane@Acme.com", **user_fields) -> dict:
    return {
        "action": "CREATE",
        "object_type": "user",
        "user": {
            "user_id": user_id,
            "emails": [{"email": email, "verified": False}],
            "name": {"first_name": "Jane", "middle_name": "", "last_name": "Doe"},
            **user_fields,
        },
    }


@pytest.mark.django_db
class TestHandleUserCreated:
    """Tests for handle_user_created handler."""

    def test_creates_user_with_tenant_from_metadata(self) -> None:
        org = OrganizationFactory.create()

        handle_user_created(user_event(trusted_metadata={"organization_id": str(org.id)}))

        user = User.objects.get(auth_id="user-test-1")
        assert user.email == "Jane@Acme.com"
        assert user.name == "Jane Doe"
        assert user.organization == org

    def test_creates_user_without_tenant(self) -> None:
        handle_user_created(user_event())

        assert User.objects.get(auth_id="user-test-1").organization is None

    def test_unknown_tenant_is_dropped(self) -> None:
        handle_user_created(user_event(trusted_metadata={"organization_id": "999999"}))

        assert User.objects.get(auth_id="user-test-1").organization is None

    def test_existing_row_is_left_alone(self) -> None:
        existing = UserFactory.create(email="jane@acme.com", auth_id="user-test-1")

        handle_user_created(user_event())

        assert User.objects.count() == 1
        existing.refresh_from_db()
        assert existing.email == "jane@acme.com"

    def test_missing_fields_are_ignored(self) -> None:
        handle_user_created({"user": {"user_id": "user-test-1", "emails": []}})

        assert User.objects.count() == 0


@pytest.mark.django_db
class TestStytchWebhook:
    """Tests for the stytch_webhook view."""

    @pytest.fixture
    def request_factory(self) -> RequestFactory:
        return RequestFactory()

    def _post(self, request_factory: RequestFactory, event: dict, svix_id: str = "msg_1"):
        headers = {"HTTP_SVIX_ID": svix_id} if svix_id else {}
        request = request_factory.post(
            "/webhooks/stytch/",
            data=json.dumps(event).encode(),
            content_type="application/json",
            **headers,
        )
        return stytch_webhook(request)

    @patch("apps.accounts.webhooks.settings")
    def test_returns_500_when_secret_not_configured(
        self, mock_settings, request_factory: RequestFactory
    ) -> None:
        mock_settings.STYTCH_WEBHOOK_SECRET = ""

        assert self._post(request_factory, {}).status_code == 500

    @patch("apps.accounts.webhooks.Webhook")
    @patch("apps.accounts.webhooks.settings")
    def test_returns_400_on_invalid_signature(
        self, mock_settings, mock_webhook_class, request_factory: RequestFactory
    ) -> None:
        mock_settings.STYTCH_WEBHOOK_SECRET = "whsec_test"
        mock_webhook = MagicMock()
        mock_webhook.verify.side_effect = WebhookVerificationError("Invalid signature")
        mock_webhook_class.return_value = mock_webhook

        assert self._post(request_factory, {}).status_code == 400

    @patch("apps.accounts.webhooks.Webhook")
    @patch("apps.accounts.webhooks.settings")
    def test_returns_400_without_svix_id(
        self, mock_settings, mock_webhook_class, request_factory: RequestFactory
    ) -> None:
        mock_settings.STYTCH_WEBHOOK_SECRET = "whsec_test"
        mock_webhook_class.return_value.verify.return_value = user_event()

        assert self._post(request_factory, user_event(), svix_id="").status_code == 400

    @patch("apps.accounts.webhooks.handle_user_created")
    @patch("apps.accounts.webhooks.Webhook")
    @patch("apps.accounts.webhooks.settings")
    def test_dispatches_user_create_once(
        self, mock_settings, mock_webhook_class, mock_handler, request_factory: RequestFactory
    ) -> None:
        mock_settings.STYTCH_WEBHOOK_SECRET = "whsec_test"
        event = user_event()
        mock_webhook_class.return_value.verify.return_value = event

        first = self._post(request_factory, event)
        second = self._post(request_factory, event)

        assert (first.status_code, second.status_code) == (200, 200)
        mock_handler.assert_called_once_with(event)
        assert ProcessedWebhook.objects.filter(source="stytch", event_id="msg_1").exists()

    @patch("apps.accounts.webhooks.handle_user_created")
    @patch("apps.accounts.webhooks.Webhook")
    @patch("apps.accounts.webhooks.settings")
    def test_other_events_are_acknowledged(
        self, mock_settings, mock_webhook_class, mock_handler, request_factory: RequestFactory
    ) -> None:
        mock_settings.STYTCH_WEBHOOK_SECRET = "whsec_test"
        event = {"action": "UPDATE", "object_type": "user", "user": {}}
        mock_webhook_class.return_value.verify.return_value = event

        assert self._post(request_factory, event).status_code == 200
        mock_handler.assert_not_called()

    @patch("apps.accounts.webhooks.handle_user_created")
    @patch("apps.accounts.webhooks.Webhook")
    @patch("apps.accounts.webhooks.settings")
    def test_handler_error_rolls_back_marker(
        self, mock_settings, mock_webhook_class, mock_handler, request_factory: RequestFactory
    ) -> None:
        mock_settings.STYTCH_WEBHOOK_SECRET = "whsec_test"
        mock_webhook_class.return_value.verify.return_value = user_event()
        mock_handler.side_effect = RuntimeError("boom")

        assert self._post(request_factory, user_event()).status_code == 500
        assert not ProcessedWebhook.objects.exists()
