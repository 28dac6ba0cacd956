"""
Accounts services - sync Stytch identities into local user rows.

This is the out-of-band writer: Stytch reports a new identity via webhook
while the provisioning saga may be reconciling the same identity. Whoever
inserts second gets an IntegrityError and backs off; the reconciler then
finds and adopts the row.
"""

from django.db import IntegrityError, transaction

from apps.accounts.models import User
from apps.core.logging import get_logger
from apps.organizations.models import Organization

logger = get_logger(__name__)


def record_identity_from_provider(
    identity_ref: str,
    email: str,
    name: str = "",
    organization_id: int | None = None,
) -> User | None:
    """
    Insert a user row for a freshly created Stytch identity.

    The email is stored as Stytch reports it. An existing row for the same
    identity or email is left untouched.

    Returns:
        The new User, or None if a row already existed.
    """
    if organization_id is not None and not Organization.objects.filter(pk=organization_id).exists():
        logger.warning(
            "identity_trigger_unknown_organization",
            auth_id=identity_ref,
            organization_id=organization_id,
        )
        organization_id = None

    try:
        with transaction.atomic():
            user = User.objects.create(
                auth_id=identity_ref,
                email=email.strip(),
                name=name,
                organization_id=organization_id,
            )
    except IntegrityError:
        # Provisioning (or an earlier delivery) got there first
        logger.info("identity_trigger_user_exists", auth_id=identity_ref)
        return None

    logger.info(
        "identity_trigger_user_created",
        user_id=user.id,
        auth_id=identity_ref,
        organization_id=organization_id,
    )
    return user
