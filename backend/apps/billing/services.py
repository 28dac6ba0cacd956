"""
Billing services - Stripe payment facts and subscription records.

All Stripe API calls are isolated here for testability.
External calls must NOT be inside database transactions.
"""

import calendar
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from apps.billing.exceptions import (
    IncompletePaymentFacts,
    MissingPackageReference,
    PackageNotPurchasable,
    PaymentProviderError,
    SubscriptionAlreadyExists,
    SubscriptionConflict,
    SubscriptionWriteFailed,
)
from apps.billing.models import Package, Subscription
from apps.billing.stripe_client import as_dict, get_stripe, object_id
from apps.core.logging import get_logger
from apps.organizations.models import Organization
from apps.organizations.services import set_stripe_customer_id
from apps.organizations.tasks import schedule_stripe_customer_backfill

logger = get_logger(__name__)

# Stripe timestamps before this year are treated as placeholders
MIN_VALID_PERIOD_YEAR = 2020

USABLE_STATUSES = (Subscription.Status.ACTIVE, Subscription.Status.TRIALING)

# Organization status that mirrors each Stripe subscription status
ORGANIZATION_STATUS_FOR_STRIPE_STATUS = {
    Subscription.Status.ACTIVE: Organization.SubscriptionStatus.ACTIVE,
    Subscription.Status.TRIALING: Organization.SubscriptionStatus.ACTIVE,
    Subscription.Status.PAST_DUE: Organization.SubscriptionStatus.PAST_DUE,
    Subscription.Status.UNPAID: Organization.SubscriptionStatus.PAST_DUE,
    Subscription.Status.CANCELED: Organization.SubscriptionStatus.CANCELED,
    Subscription.Status.INCOMPLETE_EXPIRED: Organization.SubscriptionStatus.CANCELED,
}


@dataclass(frozen=True)
class PaymentFacts:
    """Normalized view of a completed checkout, ready to be persisted."""

    customer_id: str
    subscription_id: str
    status: str
    interval: str
    price_id: str
    quantity: int
    period_start: datetime
    period_end: datetime
    period_synthesized: bool = False


def add_interval(value: datetime, interval: str) -> datetime:
    """
    Add one calendar month or year to *value*.

    The day is clamped to the target month's length: Jan 31 + month -> Feb 28/29.
    """
    if interval == Subscription.Interval.YEAR:
        year, month = value.year + 1, value.month
    else:
        year = value.year + value.month // 12
        month = value.month % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _parse_period_timestamp(value) -> datetime | None:
    """Return an aware datetime for a plausible UNIX timestamp, else None."""
    if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
        return None
    try:
        parsed = datetime.fromtimestamp(value, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None
    if parsed.year < MIN_VALID_PERIOD_YEAR:
        return None
    return parsed


def _first_valid_timestamp(*candidates) -> datetime | None:
    for candidate in candidates:
        parsed = _parse_period_timestamp(candidate)
        if parsed is not None:
            return parsed
    return None


def _first_item(stripe_subscription: dict) -> dict:
    items = (stripe_subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _resolve_interval(first_item: dict, fallback_interval: str | None) -> str:
    recurring = ((first_item.get("price") or {}).get("recurring")) or {}
    for candidate in (recurring.get("interval"), fallback_interval):
        if candidate in Subscription.Interval.values:
            return candidate
    return Subscription.Interval.MONTH


def resolve_payment_facts(
    checkout_session_id: str,
    fallback_interval: str | None = None,
    now: datetime | None = None,
) -> PaymentFacts:
    """
    Read the facts of a completed checkout from Stripe.

    Period bounds are looked up at the subscription top level, under the
    nested ``current_period`` object and on the first subscription item.
    Missing or implausible bounds are synthesized from *now* and the billing
    interval so the stored period is always valid.

    Raises:
        PaymentProviderError: the checkout session could not be fetched.
        IncompletePaymentFacts: the session has no customer or subscription.
    """
    now = now or timezone.now()
    stripe = get_stripe()

    try:
        session = as_dict(stripe.checkout.Session.retrieve(checkout_session_id))
    except stripe.StripeError as e:
        raise PaymentProviderError(context={"checkout_session_id": checkout_session_id}) from e

    customer_id = object_id(session.get("customer"))
    subscription_ref = session.get("subscription")
    subscription_id = object_id(subscription_ref)
    if not customer_id or not subscription_id:
        raise IncompletePaymentFacts(
            context={
                "checkout_session_id": checkout_session_id,
                "customer_id": customer_id,
                "subscription_id": subscription_id,
            }
        )

    try:
        stripe_subscription = as_dict(stripe.Subscription.retrieve(subscription_id))
    except stripe.StripeError:
        # The session may carry an expanded copy of the subscription
        logger.warning(
            "stripe_subscription_fetch_failed",
            subscription_id=subscription_id,
            exc_info=True,
        )
        stripe_subscription = subscription_ref if isinstance(subscription_ref, dict) else {}

    first_item = _first_item(stripe_subscription)
    interval = _resolve_interval(first_item, fallback_interval)
    current_period = stripe_subscription.get("current_period") or {}

    period_start = _first_valid_timestamp(
        stripe_subscription.get("current_period_start"),
        current_period.get("start"),
        first_item.get("current_period_start"),
    )
    period_end = _first_valid_timestamp(
        stripe_subscription.get("current_period_end"),
        current_period.get("end"),
        first_item.get("current_period_end"),
    )

    synthesized = False
    if period_start is None:
        period_start = now
        synthesized = True
    if period_end is None or period_end <= period_start:
        period_end = add_interval(period_start, interval)
        synthesized = True

    if synthesized:
        logger.warning(
            "payment_period_synthesized",
            subscription_id=subscription_id,
            interval=interval,
            period_start=period_start.isoformat(),
            period_end=period_end.isoformat(),
        )

    status = (
        Subscription.Status.ACTIVE
        if stripe_subscription.get("status") == Subscription.Status.ACTIVE
        else Subscription.Status.TRIALING
    )
    price_id = (first_item.get("price") or {}).get("id") or ""

    facts = PaymentFacts(
        customer_id=customer_id,
        subscription_id=subscription_id,
        status=status,
        interval=interval,
        price_id=price_id,
        quantity=first_item.get("quantity") or 1,
        period_start=period_start,
        period_end=period_end,
        period_synthesized=synthesized,
    )
    logger.info(
        "payment_facts_resolved",
        customer_id=customer_id,
        subscription_id=subscription_id,
        status=status,
        interval=interval,
        period_synthesized=synthesized,
    )
    return facts


def get_package(package_id: str | None) -> Package:
    """
    Look up an active package by its code.

    Raises:
        MissingPackageReference: no code given or no active package with it.
    """
    if not package_id:
        raise MissingPackageReference()
    package = Package.objects.filter(code=package_id, is_active=True).first()
    if package is None:
        raise MissingPackageReference(
            f"Unknown package '{package_id}'.", context={"package_id": package_id}
        )
    return package


def get_current_subscription(organization: Organization) -> Subscription | None:
    """Most recent usable subscription of the tenant, else its most recent one."""
    subscriptions = Subscription.objects.filter(organization=organization).order_by("-created_at")
    return subscriptions.filter(status__in=USABLE_STATUSES).first() or subscriptions.first()


def _apply_facts(subscription: Subscription, package: Package, facts: PaymentFacts) -> None:
    subscription.package = package
    subscription.stripe_price_id = facts.price_id or package.stripe_price_id
    subscription.billing_interval = facts.interval
    subscription.status = facts.status
    subscription.quantity = facts.quantity
    subscription.current_period_start = facts.period_start
    subscription.current_period_end = facts.period_end


def _write_subscription(
    organization: Organization, package: Package, facts: PaymentFacts
) -> Subscription:
    """
    One write attempt.

    Re-submitting the same Stripe subscription for the same tenant updates the
    existing row. Anything that would give the tenant a second usable
    subscription, or move a subscription between tenants, is reported as
    SubscriptionAlreadyExists.
    """
    try:
        with transaction.atomic():
            existing = Subscription.objects.filter(
                stripe_subscription_id=facts.subscription_id
            ).first()
            if existing is not None:
                if existing.organization_id != organization.id:
                    raise SubscriptionAlreadyExists(
                        f"{facts.subscription_id} belongs to organization "
                        f"{existing.organization_id}"
                    )
                _apply_facts(existing, package, facts)
                existing.save()
                return existing

            other = (
                Subscription.objects.filter(organization=organization, status__in=USABLE_STATUSES)
                .exclude(stripe_subscription_id=facts.subscription_id)
                .first()
            )
            if other is not None:
                raise SubscriptionAlreadyExists(
                    f"organization {organization.id} already has {other.stripe_subscription_id}"
                )

            subscription = Subscription(
                organization=organization, stripe_subscription_id=facts.subscription_id
            )
            _apply_facts(subscription, package, facts)
            subscription.save()
            return subscription
    except IntegrityError as e:
        raise SubscriptionAlreadyExists(str(e)) from e


def _verify_existing_subscription(
    organization: Organization, facts: PaymentFacts, cause: Exception
) -> Subscription:
    """Accept an 'already exists' outcome only if the tenant holds this exact subscription."""
    try:
        current = get_current_subscription(organization)
    except DatabaseError as e:
        raise SubscriptionWriteFailed(
            context={"organization_id": organization.id, "subscription_id": facts.subscription_id}
        ) from e

    if current is not None and current.stripe_subscription_id == facts.subscription_id:
        logger.info(
            "subscription_verified_existing",
            organization_id=organization.id,
            subscription_id=facts.subscription_id,
        )
        return current

    logger.error(
        "subscription_conflict",
        organization_id=organization.id,
        subscription_id=facts.subscription_id,
        existing_subscription_id=current.stripe_subscription_id if current else None,
    )
    raise SubscriptionConflict(
        context={
            "organization_id": organization.id,
            "subscription_id": facts.subscription_id,
            "existing_subscription_id": current.stripe_subscription_id if current else None,
        }
    ) from cause


def upsert_subscription(
    organization: Organization,
    package_id: str | None,
    facts: PaymentFacts,
    sleep: Callable[[float], None] = time.sleep,
) -> Subscription:
    """
    Persist the paid subscription for *organization*.

    A failed write is retried once after SUBSCRIPTION_WRITE_RETRY_DELAY. If the
    retry reports that a subscription already exists, the tenant's current
    subscription is read back: the same Stripe subscription counts as success,
    anything else is a SubscriptionConflict. On success the Stripe customer id
    backfill is scheduled.

    Raises:
        MissingPackageReference: package_id is empty or unknown.
        SubscriptionConflict: tenant holds a different subscription.
        SubscriptionWriteFailed: the store rejected both attempts.
    """
    package = get_package(package_id)

    try:
        subscription = _write_subscription(organization, package, facts)
    except (SubscriptionAlreadyExists, DatabaseError) as first_error:
        delay = settings.SUBSCRIPTION_WRITE_RETRY_DELAY
        logger.warning(
            "subscription_write_retry_scheduled",
            organization_id=organization.id,
            subscription_id=facts.subscription_id,
            delay_seconds=delay,
            error=str(first_error),
        )
        sleep(delay)
        try:
            subscription = _write_subscription(organization, package, facts)
        except SubscriptionAlreadyExists as e:
            subscription = _verify_existing_subscription(organization, facts, e)
        except DatabaseError as e:
            raise SubscriptionWriteFailed(
                context={
                    "organization_id": organization.id,
                    "subscription_id": facts.subscription_id,
                }
            ) from e

    logger.info(
        "subscription_written",
        organization_id=organization.id,
        subscription_id=facts.subscription_id,
        package_id=package.code,
        status=subscription.status,
    )
    schedule_stripe_customer_backfill(organization.id, facts.customer_id)
    return subscription


def create_signup_checkout_session(
    package_id: str,
    email: str,
    organization_name: str,
    success_url: str,
    cancel_url: str,
    name: str = "",
) -> tuple[str, str]:
    """
    Create a Stripe Checkout session for a new signup.

    The organization and user are created only after payment succeeds; the
    signup data travels in the session metadata.

    Returns (checkout_url, checkout_session_id).
    """
    package = get_package(package_id)
    if package.is_free or not package.stripe_price_id:
        raise PackageNotPurchasable(context={"package_id": package.code})

    stripe = get_stripe()
    try:
        session = stripe.checkout.Session.create(
            customer_email=email,
            mode="subscription",
            line_items=[{"price": package.stripe_price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={
                "signup_email": email,
                "signup_name": name,
                "organization_name": organization_name,
                "package_id": package.code,
                "is_signup": "true",
            },
            subscription_data={
                "metadata": {"package_id": package.code, "is_signup": "true"},
            },
        )
    except stripe.StripeError as e:
        raise PaymentProviderError(context={"package_id": package.code}) from e

    logger.info(
        "signup_checkout_session_created",
        checkout_session_id=session.id,
        package_id=package.code,
    )
    return session.url, session.id


def handle_checkout_completed(checkout_session: dict) -> None:
    """
    Handle checkout.session.completed webhook.

    Repairs the tenant's Stripe customer id if the backfill missed it.
    """
    customer_id = object_id(checkout_session.get("customer"))
    subscription_id = object_id(checkout_session.get("subscription"))
    if not customer_id or not subscription_id:
        return

    subscription = Subscription.objects.filter(stripe_subscription_id=subscription_id).first()
    if subscription is None:
        # Provisioning has not written the row yet; it schedules its own backfill
        logger.info(
            "stripe_checkout_completed_before_provisioning", subscription_id=subscription_id
        )
        return

    set_stripe_customer_id(subscription.organization_id, customer_id)


def _sync_organization_status(subscription: Subscription) -> None:
    target = ORGANIZATION_STATUS_FOR_STRIPE_STATUS.get(subscription.status)
    if target is None:
        return
    if target != Organization.SubscriptionStatus.ACTIVE:
        other_usable = (
            Subscription.objects.filter(
                organization_id=subscription.organization_id, status__in=USABLE_STATUSES
            )
            .exclude(pk=subscription.pk)
            .exists()
        )
        if other_usable:
            return
    Organization.objects.filter(pk=subscription.organization_id).exclude(
        subscription_status=target
    ).update(subscription_status=target, updated_at=timezone.now())


def handle_subscription_updated(stripe_subscription: dict) -> None:
    """
    Handle customer.subscription.updated webhook.

    Updates status and period of a known subscription; unknown ones are left
    to the provisioning saga.
    """
    subscription = Subscription.objects.filter(
        stripe_subscription_id=stripe_subscription["id"]
    ).first()
    if subscription is None:
        logger.info("stripe_subscription_unknown", subscription_id=stripe_subscription["id"])
        return

    first_item = _first_item(stripe_subscription)
    current_period = stripe_subscription.get("current_period") or {}
    period_start = _first_valid_timestamp(
        stripe_subscription.get("current_period_start"),
        current_period.get("start"),
        first_item.get("current_period_start"),
    )
    period_end = _first_valid_timestamp(
        stripe_subscription.get("current_period_end"),
        current_period.get("end"),
        first_item.get("current_period_end"),
    )
    # Keep the stored period unless Stripe sent a complete, valid one
    if period_start and period_end and period_end > period_start:
        subscription.current_period_start = period_start
        subscription.current_period_end = period_end

    old_status = subscription.status
    if stripe_subscription.get("status") in Subscription.Status.values:
        subscription.status = stripe_subscription["status"]
    subscription.quantity = first_item.get("quantity") or subscription.quantity
    subscription.cancel_at_period_end = stripe_subscription.get("cancel_at_period_end", False)
    subscription.save()
    _sync_organization_status(subscription)

    logger.info(
        "stripe_subscription_updated",
        subscription_id=subscription.stripe_subscription_id,
        old_status=old_status,
        new_status=subscription.status,
    )


def handle_subscription_deleted(stripe_subscription: dict) -> None:
    """
    Handle customer.subscription.deleted webhook.

    Marks subscription as canceled.
    """
    subscription = Subscription.objects.filter(
        stripe_subscription_id=stripe_subscription["id"]
    ).first()
    if subscription is None:
        return

    subscription.status = Subscription.Status.CANCELED
    subscription.save(update_fields=["status", "updated_at"])
    _sync_organization_status(subscription)

    logger.info("stripe_subscription_canceled", subscription_id=subscription.stripe_subscription_id)
