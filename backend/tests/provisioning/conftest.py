"""
Fixtures for provisioning saga tests.
"""

from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any
from unittest.mock import patch

import pytest

from apps.provisioning.services import ProvisioningOrchestrator, SignupRequest
from tests.conftest import FakeIdentityProvider, make_stripe_mock

NOW = datetime(2025, 1, 31, 12, 0, tzinfo=UTC)


def signup_request(**overrides) -> SignupRequest:
    values = {
        "email": "Jane@Acme.com",
        "password": "s3cret-pass",
        "name": "Jane Doe",
        "organization_name": "Acme Inc",
        "organization_slug": "acme-inc",
        "package_id": "pro-monthly",
        "checkout_session_id": "cs_1",
        "billing_interval": "month",
    }
    values.update(overrides)
    return SignupRequest(**values)


@pytest.fixture
def stripe_checkout() -> Iterator[Any]:
    """Completed Checkout for sub_1 / cus_1 with no period fields anywhere."""
    with patch("apps.billing.services.get_stripe") as mock_get_stripe:
        mock_stripe = make_stripe_mock(mock_get_stripe)
        mock_stripe.checkout.Session.retrieve.return_value = {
            "id": "cs_1",
            "customer": "cus_1",
            "subscription": "sub_1",
        }
        mock_stripe.Subscription.retrieve.return_value = {
            "id": "sub_1",
            "status": "active",
            "items": {
                "data": [
                    {
                        "price": {"id": "price_1", "recurring": {"interval": "month"}},
                        "quantity": 1,
                    }
                ]
            },
        }
        yield mock_stripe


@pytest.fixture
def orchestrator(identity_provider: FakeIdentityProvider, no_sleep) -> ProvisioningOrchestrator:
    return ProvisioningOrchestrator(
        identity_provider=identity_provider, sleep=no_sleep, now=lambda: NOW
    )
