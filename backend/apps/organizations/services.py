"""
Organization services - idempotent tenant provisioning.

The unique constraint on Organization.slug is the only arbiter between
concurrent signups for the same name; no row locks are taken. A uniqueness
violation means "someone else created it", so we switch to reading it.
"""

import re

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from apps.core.logging import get_logger
from apps.organizations.exceptions import InvalidOrganizationSlug, OrganizationStoreUnavailable
from apps.organizations.models import Organization

logger = get_logger(__name__)

_SLUG_SEPARATOR_RUN = re.compile(r"[^a-z0-9]+")


def normalize_slug(value: str) -> str:
    """
    Normalize a name or slug into the canonical tenant slug.

    'Acme, Inc.' -> 'acme-inc'
    """
    return _SLUG_SEPARATOR_RUN.sub("-", value.strip().lower()).strip("-")


def get_or_create_organization(name: str, slug: str) -> Organization:
    """
    Get or create the tenant identified by *slug*.

    Lookup by normalized slug, insert if absent, and on a uniqueness conflict
    re-fetch the row the concurrent caller created. Every caller with the same
    slug observes the same tenant id.

    Raises:
        InvalidOrganizationSlug: slug normalizes to an empty string.
        OrganizationStoreUnavailable: the store failed for a reason other than
            a uniqueness conflict.
    """
    normalized = normalize_slug(slug)
    if not normalized:
        raise InvalidOrganizationSlug(context={"slug": slug})

    try:
        org = Organization.objects.filter(slug=normalized).first()
    except DatabaseError:
        # Still attempt the insert; it is the authoritative check
        logger.warning("organization_lookup_failed", slug=normalized, exc_info=True)
        org = None

    if org is not None:
        logger.info("organization_resolved", organization_id=org.id, slug=normalized, created=False)
        return org

    try:
        with transaction.atomic():
            org = Organization.objects.create(name=name.strip() or normalized, slug=normalized)
    except IntegrityError:
        # Concurrent insert won the race, fetch the winner
        logger.info("organization_slug_conflict", slug=normalized)
        return _fetch_conflicting_organization(normalized)
    except DatabaseError as e:
        raise OrganizationStoreUnavailable(context={"slug": normalized}) from e

    logger.info("organization_resolved", organization_id=org.id, slug=normalized, created=True)
    return org


def _fetch_conflicting_organization(slug: str) -> Organization:
    try:
        org = Organization.objects.filter(slug=slug).first()
    except DatabaseError as e:
        raise OrganizationStoreUnavailable(context={"slug": slug}) from e

    if org is None:
        raise OrganizationStoreUnavailable(
            "Organization insert conflicted but no row with this slug is visible.",
            context={"slug": slug},
        )

    logger.info("organization_resolved", organization_id=org.id, slug=slug, created=False)
    return org


def finalize_subscription_status(
    organization: Organization,
    status: str = Organization.SubscriptionStatus.ACTIVE,
) -> bool:
    """
    Move the tenant to *status* once its subscription is confirmed.

    Never downgrades an active tenant (only billing webhooks may do that) and
    never raises: a failed update is logged and reported as False, because
    payment is already captured and the webhook path converges on the same
    status.

    Returns:
        True if the tenant is (now) in the requested status or the update was
        skipped as a downgrade, False if the store rejected the update.
    """
    fields: dict = {"subscription_status": status, "updated_at": timezone.now()}
    if status == Organization.SubscriptionStatus.ACTIVE:
        fields["trial_ends_at"] = None

    try:
        queryset = Organization.objects.filter(pk=organization.pk).exclude(
            subscription_status=status
        )
        if status != Organization.SubscriptionStatus.ACTIVE:
            queryset = queryset.exclude(subscription_status=Organization.SubscriptionStatus.ACTIVE)
        updated = queryset.update(**fields)
    except DatabaseError:
        logger.warning(
            "organization_status_update_failed",
            organization_id=organization.pk,
            status=status,
            exc_info=True,
        )
        return False

    if updated:
        organization.subscription_status = status
        logger.info("organization_status_updated", organization_id=organization.pk, status=status)
    else:
        organization.refresh_from_db(fields=["subscription_status"])
        logger.info(
            "organization_status_update_skipped",
            organization_id=organization.pk,
            status=status,
            current_status=organization.subscription_status,
        )
    return True


def set_stripe_customer_id(organization_id: int, customer_id: str) -> bool:
    """
    Record the Stripe customer on the tenant if it has none yet.

    The conditional UPDATE never overwrites a different customer id.

    Returns:
        True if the tenant now carries *customer_id*, False if it already holds
        a different one.

    Raises:
        Organization.DoesNotExist: no tenant with this id.
        DatabaseError: the store is unavailable.
    """
    updated = Organization.objects.filter(pk=organization_id, stripe_customer_id="").update(
        stripe_customer_id=customer_id, updated_at=timezone.now()
    )
    if updated:
        logger.info(
            "stripe_customer_recorded", organization_id=organization_id, customer_id=customer_id
        )
        return True

    current = (
        Organization.objects.filter(pk=organization_id)
        .values_list("stripe_customer_id", flat=True)
        .first()
    )
    if current is None:
        raise Organization.DoesNotExist(f"Organization {organization_id} not found")
    if current == customer_id:
        return True

    logger.warning(
        "stripe_customer_mismatch",
        organization_id=organization_id,
        existing_customer_id=current,
        customer_id=customer_id,
    )
    return False
