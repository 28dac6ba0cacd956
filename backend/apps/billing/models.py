"""
Billing models - price tiers and Stripe subscriptions.
"""

from django.db import models

from apps.core.models import TimestampedModel
from apps.organizations.models import Organization


class Package(TimestampedModel):
    """
    Sellable price tier.

    ``code`` is the package reference callers pass around, e.g. 'pro-monthly'.
    """

    code = models.SlugField(max_length=100, unique=True)
    name = models.CharField(max_length=255)
    stripe_price_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Stripe price ID, e.g. 'price_xxx'. Empty for free packages.",
    )
    price_per_user_monthly = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["code"]

    def __str__(self) -> str:
        return self.code

    @property
    def is_free(self) -> bool:
        return self.price_per_user_monthly <= 0


class Subscription(TimestampedModel):
    """
    Stripe subscription for an organization.

    Source of truth is Stripe. Rows are written by the provisioning saga and
    kept in sync by webhooks.
    """

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        PAST_DUE = "past_due", "Past Due"
        CANCELED = "canceled", "Canceled"
        INCOMPLETE = "incomplete", "Incomplete"
        INCOMPLETE_EXPIRED = "incomplete_expired", "Incomplete Expired"
        TRIALING = "trialing", "Trialing"
        UNPAID = "unpaid", "Unpaid"
        PAUSED = "paused", "Paused"

    class Interval(models.TextChoices):
        MONTH = "month", "Monthly"
        YEAR = "year", "Yearly"

    organization = models.ForeignKey(
        Organization,
        on_delete=models.CASCADE,
        related_name="subscriptions",
    )
    package = models.ForeignKey(
        Package,
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )
    stripe_subscription_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe subscription ID, e.g. 'sub_xxx'",
    )
    stripe_price_id = models.CharField(max_length=255, blank=True)
    billing_interval = models.CharField(
        max_length=10,
        choices=Interval.choices,
        default=Interval.MONTH,
    )
    status = models.CharField(
        max_length=50,
        choices=Status.choices,
        default=Status.INCOMPLETE,
        db_index=True,
    )
    quantity = models.PositiveIntegerField(default=1)
    current_period_start = models.DateTimeField()
    current_period_end = models.DateTimeField()
    cancel_at_period_end = models.BooleanField(default=False)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["organization", "stripe_subscription_id"],
                name="unique_subscription_per_organization",
            ),
            models.CheckConstraint(
                condition=models.Q(current_period_end__gt=models.F("current_period_start")),
                name="subscription_period_end_after_start",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.organization.name} - {self.status}"

    @property
    def is_active(self) -> bool:
        """Check if subscription is in a usable state."""
        return self.status in (self.Status.ACTIVE, self.Status.TRIALING)
