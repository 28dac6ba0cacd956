"""
Identity reconciliation - bind an external identity to exactly one user row.

The Stytch webhook may insert a row for the same identity at any moment, so
the reconciler cannot assume "not found" stays true. The uniqueness
constraints on User are the arbiter: when our insert loses, we run a
broadened search for the winner and converge on it.

    search (auth_id, email) --hit--------------------------+
        | miss                                             |
    insert --ok--> created                                 |
        | IntegrityError                                   |
    broadened search --miss--> wait, search again --miss--> IdentityUnrecoverable
        | hit                        | hit                 |
        +----------------------------+---------------------+
    repair auth_id if it differs
    ensure tenant (assign if empty, TenantMismatch if different)
    take the supplied display name if the row had none or another one
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Q, QuerySet
from django.utils import timezone

from apps.accounts.exceptions import IdentityUnrecoverable, TenantMismatch
from apps.accounts.models import User
from apps.core.logging import get_logger

logger = get_logger(__name__)


class ReconciliationOutcome(StrEnum):
    FOUND = "found"
    CREATED = "created"
    REPAIRED = "repaired"


@dataclass(frozen=True)
class LookupStrategy:
    """A named way of finding the user row for an identity."""

    name: str
    query: Callable[[str, str], QuerySet]

    def find(self, identity_ref: str, email: str) -> User | None:
        return self.query(identity_ref, email).first()


BY_AUTH_ID = LookupStrategy("auth_id", lambda ref, email: User.objects.filter(auth_id=ref))
BY_EMAIL_EXACT = LookupStrategy("email_exact", lambda ref, email: User.objects.filter(email=email))
BY_EMAIL_IEXACT = LookupStrategy(
    "email_iexact", lambda ref, email: User.objects.filter(email__iexact=email)
)
BY_AUTH_ID_OR_EMAIL = LookupStrategy(
    "auth_id_or_email_any",
    lambda ref, email: User.objects.filter(Q(auth_id=ref) | Q(email__iexact=email)).order_by(
        "created_at", "id"
    ),
)

INITIAL_STRATEGIES = (BY_AUTH_ID, BY_EMAIL_EXACT)
BROADENED_STRATEGIES = (BY_AUTH_ID, BY_EMAIL_EXACT, BY_EMAIL_IEXACT, BY_AUTH_ID_OR_EMAIL)


@dataclass(frozen=True)
class ReconciliationResult:
    user: User
    outcome: ReconciliationOutcome
    strategy: str | None = None
    repaired: bool = False


def _insert_user(
    identity_ref: str, email: str, organization_id: int, role: str, name: str
) -> User:
    """Insert in a savepoint so a uniqueness conflict leaves the caller's transaction usable."""
    with transaction.atomic():
        return User.objects.create_user(
            email=email,
            auth_id=identity_ref,
            organization_id=organization_id,
            role=role,
            name=name,
        )


class IdentityReconciler:
    """
    Converge on the single user row for (identity_ref, email).

    Args:
        sleep: Called with the delay before the second broadened search.
        conflict_retry_delay: Seconds to wait before that search. Defaults to
            settings.IDENTITY_CONFLICT_RETRY_DELAY.
    """

    def __init__(
        self,
        sleep: Callable[[float], None] = time.sleep,
        conflict_retry_delay: float | None = None,
    ):
        self._sleep = sleep
        self._conflict_retry_delay = conflict_retry_delay

    @property
    def conflict_retry_delay(self) -> float:
        if self._conflict_retry_delay is not None:
            return self._conflict_retry_delay
        return settings.IDENTITY_CONFLICT_RETRY_DELAY

    def reconcile(
        self,
        identity_ref: str,
        email: str,
        organization_id: int,
        default_role: str = User.Role.MEMBER,
        name: str = "",
    ) -> ReconciliationResult:
        """
        Find, create or repair the user row and bind it to *organization_id*.

        Raises:
            IdentityUnrecoverable: insert conflicted and no row was found.
            TenantMismatch: the row belongs to another organization.
        """
        email = User.objects.normalize_email(email)
        if not identity_ref or not email:
            raise ValueError("identity_ref and email are required")

        created = False
        strategy, user = self._search(INITIAL_STRATEGIES, identity_ref, email, "initial")
        if user is None:
            try:
                user = _insert_user(identity_ref, email, organization_id, default_role, name)
                created = True
                logger.info(
                    "identity_user_created",
                    user_id=user.id,
                    auth_id=identity_ref,
                    organization_id=organization_id,
                )
            except IntegrityError as e:
                logger.warning(
                    "identity_insert_conflict", auth_id=identity_ref, email=email, error=str(e)
                )
                strategy, user = self._broadened_search(identity_ref, email)

        repaired = False
        if user.auth_id != identity_ref:
            user, repaired = self._repair_reference(user, identity_ref, strategy)

        user = self._ensure_tenant(user, organization_id)
        if not created:
            user = self._update_name(user, name)

        if repaired:
            outcome = ReconciliationOutcome.REPAIRED
        elif created:
            outcome = ReconciliationOutcome.CREATED
        else:
            outcome = ReconciliationOutcome.FOUND
        return ReconciliationResult(
            user=user, outcome=outcome, strategy=strategy, repaired=repaired
        )

    def _search(
        self,
        strategies: tuple[LookupStrategy, ...],
        identity_ref: str,
        email: str,
        phase: str,
    ) -> tuple[str | None, User | None]:
        for strategy in strategies:
            user = strategy.find(identity_ref, email)
            if user is not None:
                logger.info(
                    "identity_lookup_matched",
                    strategy=strategy.name,
                    phase=phase,
                    user_id=user.id,
                )
                return strategy.name, user
        return None, None

    def _broadened_search(self, identity_ref: str, email: str) -> tuple[str, User]:
        strategy, user = self._search(BROADENED_STRATEGIES, identity_ref, email, "broadened")
        if user is None:
            # The conflicting row may not be visible yet
            delay = self.conflict_retry_delay
            logger.info(
                "identity_broadened_search_retry",
                auth_id=identity_ref,
                delay_seconds=delay,
            )
            self._sleep(delay)
            strategy, user = self._search(
                BROADENED_STRATEGIES, identity_ref, email, "broadened_retry"
            )

        if user is None:
            logger.error("identity_unrecoverable", auth_id=identity_ref, email=email)
            raise IdentityUnrecoverable(context={"email": email, "auth_id": identity_ref})
        return strategy, user

    def _repair_reference(
        self, user: User, identity_ref: str, strategy: str | None
    ) -> tuple[User, bool]:
        previous = user.auth_id
        try:
            with transaction.atomic():
                User.objects.filter(pk=user.pk).update(
                    auth_id=identity_ref, updated_at=timezone.now()
                )
        except IntegrityError:
            # Another row took this reference meanwhile; that row is canonical
            winner = User.objects.filter(auth_id=identity_ref).first()
            if winner is None:
                logger.error("identity_unrecoverable", auth_id=identity_ref, email=user.email)
                raise IdentityUnrecoverable(
                    context={"email": user.email, "auth_id": identity_ref}
                ) from None
            logger.info(
                "identity_lookup_matched",
                strategy=BY_AUTH_ID.name,
                phase="repair",
                user_id=winner.id,
            )
            return winner, False

        user.refresh_from_db()
        logger.info(
            "identity_reference_repaired",
            user_id=user.id,
            previous_auth_id=previous,
            auth_id=identity_ref,
            strategy=strategy,
        )
        return user, True

    def _update_name(self, user: User, name: str) -> User:
        name = name.strip()
        if not name or user.name == name:
            return user
        User.objects.filter(pk=user.pk).update(name=name, updated_at=timezone.now())
        user.refresh_from_db()
        logger.info("identity_name_updated", user_id=user.id)
        return user

    def _ensure_tenant(self, user: User, organization_id: int) -> User:
        if user.organization_id is None:
            User.objects.filter(pk=user.pk, organization__isnull=True).update(
                organization_id=organization_id, updated_at=timezone.now()
            )
            user.refresh_from_db()
            if user.organization_id == organization_id:
                logger.info(
                    "identity_tenant_assigned", user_id=user.id, organization_id=organization_id
                )
                return user

        if user.organization_id != organization_id:
            logger.error(
                "identity_tenant_mismatch",
                user_id=user.id,
                organization_id=organization_id,
                existing_organization_id=user.organization_id,
            )
            raise TenantMismatch(
                context={
                    "email": user.email,
                    "organization_id": organization_id,
                    "existing_organization_id": user.organization_id,
                }
            )
        return user
