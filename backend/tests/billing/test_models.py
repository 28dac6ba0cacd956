"""
Tests for billing models.
"""

from datetime import timedelta

import pytest
from django.db import IntegrityError
from django.utils import timezone

from apps.billing.models import Subscription
from tests.accounts.factories import OrganizationFactory

from .factories import PackageFactory, SubscriptionFactory


@pytest.mark.django_db
class TestPackageModel:
    def test_free_package(self) -> None:
        assert PackageFactory.create(code="free", price_per_user_monthly=0).is_free is True

    def test_paid_package(self) -> None:
        assert PackageFactory.create().is_free is False


@pytest.mark.django_db
class TestSubscriptionModel:
    def test_stripe_subscription_id_unique(self) -> None:
        SubscriptionFactory.create(stripe_subscription_id="sub_1")

        with pytest.raises(IntegrityError):
            SubscriptionFactory.create(stripe_subscription_id="sub_1")

    def test_period_end_must_follow_start(self) -> None:
        now = timezone.now()

        with pytest.raises(IntegrityError):
            SubscriptionFactory.create(current_period_start=now, current_period_end=now)

    def test_period_end_before_start_rejected(self) -> None:
        now = timezone.now()

        with pytest.raises(IntegrityError):
            SubscriptionFactory.create(
                current_period_start=now, current_period_end=now - timedelta(days=1)
            )

    def test_organization_can_hold_several_subscriptions(self) -> None:
        org = OrganizationFactory.create()
        SubscriptionFactory.create(organization=org, status=Subscription.Status.CANCELED)
        SubscriptionFactory.create(organization=org)

        assert org.subscriptions.count() == 2

    def test_is_active(self) -> None:
        assert SubscriptionFactory.create(status=Subscription.Status.TRIALING).is_active is True
        assert SubscriptionFactory.create(status=Subscription.Status.CANCELED).is_active is False
