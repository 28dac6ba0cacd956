"""
Provisioning saga - turns a completed payment into a usable tenant and user.

Steps run in a fixed order, each one idempotent on its own so that a client
can re-submit the whole request after a retryable failure:

    provision_organization -> sign_up_identity -> resolve_payment_facts
        -> write_subscription -> finalize_status -> reconcile_identity

There is no compensation. Payment has already been captured when the saga
starts, so a fatal error leaves whatever was created in place and surfaces
the identifiers support needs to finish by hand.
"""

import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from django.db import DatabaseError
from django.utils import timezone

from apps.accounts.exceptions import TenantMismatch
from apps.accounts.identity import StytchIdentityProvider
from apps.accounts.models import User
from apps.accounts.reconciliation import IdentityReconciler, ReconciliationResult
from apps.billing.models import Subscription
from apps.billing.services import PaymentFacts, resolve_payment_facts, upsert_subscription
from apps.core.exceptions import ProvisioningError, StoreUnavailable
from apps.core.logging import bind_contextvars, clear_contextvars, get_logger
from apps.organizations.models import Organization
from apps.organizations.services import finalize_subscription_status, get_or_create_organization
from apps.provisioning.context import ResumptionContext
from apps.provisioning.exceptions import InvalidResumptionContext

logger = get_logger(__name__)


class SagaStep(StrEnum):
    PROVISION_ORGANIZATION = "provision_organization"
    SIGN_UP_IDENTITY = "sign_up_identity"
    RESOLVE_PAYMENT_FACTS = "resolve_payment_facts"
    WRITE_SUBSCRIPTION = "write_subscription"
    FINALIZE_STATUS = "finalize_status"
    RECONCILE_IDENTITY = "reconcile_identity"


class SagaStatus(StrEnum):
    COMPLETED = "completed"
    PAUSED = "paused"


@dataclass(frozen=True)
class SignupRequest:
    email: str
    password: str
    organization_name: str
    package_id: str | None
    checkout_session_id: str
    name: str = ""
    organization_slug: str | None = None
    billing_interval: str | None = None


@dataclass
class SagaState:
    """Everything one run has produced so far."""

    email: str
    saga_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    current_step: str | None = None
    completed_steps: list[str] = field(default_factory=list)
    organization: Organization | None = None
    identity_ref: str | None = None
    session_token: str | None = None
    facts: PaymentFacts | None = None
    subscription: Subscription | None = None
    status_finalized: bool = False
    reconciliation: ReconciliationResult | None = None


@dataclass(frozen=True)
class ProvisioningResult:
    status: SagaStatus
    organization: Organization
    subscription: Subscription | None
    user: User | None = None
    session_token: str | None = None
    resume_token: str | None = None
    status_finalized: bool = True
    completed_steps: tuple[str, ...] = ()


class ProvisioningOrchestrator:
    """
    Drives the post-payment provisioning saga.

    Collaborators are injectable so tests can swap the identity provider and
    make retry waits instantaneous.
    """

    def __init__(
        self,
        identity_provider: StytchIdentityProvider | None = None,
        reconciler: IdentityReconciler | None = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = timezone.now,
    ):
        self.identity_provider = identity_provider or StytchIdentityProvider()
        self.reconciler = reconciler or IdentityReconciler(sleep=sleep)
        self._sleep = sleep
        self._now = now

    def run(self, request: SignupRequest) -> ProvisioningResult:
        """
        Provision tenant, subscription and user for a completed checkout.

        Returns a PAUSED result with a resume token when sign-up did not
        produce a session; the subscription is written and the tenant is
        active either way.

        Raises:
            ProvisioningError: a step failed; the error context names the
                tenant, subscription, email and step for manual recovery.
                Unexpected store failures surface as StoreUnavailable.
        """
        email = User.objects.normalize_email(request.email)
        state = SagaState(email=email)
        bind_contextvars(saga_id=state.saga_id, **{"usr.email": email})
        logger.info(
            "saga_started",
            checkout_session_id=request.checkout_session_id,
            package_id=request.package_id,
        )

        try:
            with self._step(state, SagaStep.PROVISION_ORGANIZATION):
                state.organization = get_or_create_organization(
                    request.organization_name,
                    request.organization_slug or request.organization_name,
                )
                bind_contextvars(**{"organization.id": state.organization.id})

            with self._step(state, SagaStep.SIGN_UP_IDENTITY):
                sign_up = self.identity_provider.sign_up(
                    email,
                    request.password,
                    metadata={"organization_id": str(state.organization.id), "name": request.name},
                )
                state.identity_ref = sign_up.identity_ref
                state.session_token = sign_up.session_token

            with self._step(state, SagaStep.RESOLVE_PAYMENT_FACTS):
                state.facts = resolve_payment_facts(
                    request.checkout_session_id,
                    fallback_interval=request.billing_interval,
                    now=self._now(),
                )

            with self._step(state, SagaStep.WRITE_SUBSCRIPTION):
                state.subscription = upsert_subscription(
                    state.organization, request.package_id, state.facts, sleep=self._sleep
                )

            with self._step(state, SagaStep.FINALIZE_STATUS):
                state.status_finalized = finalize_subscription_status(state.organization)

            if state.session_token is None:
                return self._pause(state, request)

            with self._step(state, SagaStep.RECONCILE_IDENTITY):
                state.reconciliation = self.reconciler.reconcile(
                    state.identity_ref,
                    email,
                    state.organization.id,
                    default_role=User.Role.ADMIN,
                    name=request.name,
                )
        except ProvisioningError as e:
            self._fail(state, e)
            raise
        except DatabaseError as e:
            logger.warning("saga_store_error", saga_id=state.saga_id, error=str(e))
            error = StoreUnavailable()
            self._fail(state, error)
            raise error from e
        finally:
            clear_contextvars()

        logger.info(
            "saga_completed",
            saga_id=state.saga_id,
            organization_id=state.organization.id,
            user_id=state.reconciliation.user.id,
            outcome=state.reconciliation.outcome,
        )
        return ProvisioningResult(
            status=SagaStatus.COMPLETED,
            organization=state.organization,
            subscription=state.subscription,
            user=state.reconciliation.user,
            session_token=state.session_token,
            status_finalized=state.status_finalized,
            completed_steps=tuple(state.completed_steps),
        )

    def resume(self, resume_token: str, session_token: str) -> ProvisioningResult:
        """
        Finish a paused run once the user has a session.

        The token is verified and its TTL checked before any store access.

        Raises:
            SessionExpired: the resumption context is older than its TTL.
            InvalidResumptionContext: the token is invalid or its tenant is gone.
            TenantMismatch: the session belongs to a different email.
        """
        state = SagaState(email="")
        bind_contextvars(saga_id=state.saga_id)
        try:
            context = ResumptionContext.from_token(resume_token, now=self._now())
            state.email = context.email
            bind_contextvars(
                **{"usr.email": context.email, "organization.id": context.organization_id}
            )
            logger.info(
                "saga_resumed",
                organization_id=context.organization_id,
                subscription_id=context.subscription_id,
            )

            with self._step(state, SagaStep.RECONCILE_IDENTITY):
                identity = self.identity_provider.authenticate_session(session_token)
                if User.objects.normalize_email(identity.email) != context.email:
                    raise TenantMismatch(
                        "This session belongs to a different user.",
                        context={"organization_id": context.organization_id},
                    )

                state.organization = Organization.objects.filter(pk=context.organization_id).first()
                if state.organization is None:
                    raise InvalidResumptionContext(
                        context={"organization_id": context.organization_id}
                    )
                state.subscription = Subscription.objects.filter(
                    stripe_subscription_id=context.subscription_id
                ).first()
                state.identity_ref = identity.identity_ref
                state.session_token = session_token

                state.reconciliation = self.reconciler.reconcile(
                    identity.identity_ref,
                    context.email,
                    state.organization.id,
                    default_role=User.Role.ADMIN,
                )
        except ProvisioningError as e:
            self._fail(state, e)
            raise
        except DatabaseError as e:
            logger.warning("saga_store_error", saga_id=state.saga_id, error=str(e))
            error = StoreUnavailable()
            self._fail(state, error)
            raise error from e
        finally:
            clear_contextvars()

        logger.info(
            "saga_completed",
            saga_id=state.saga_id,
            organization_id=state.organization.id,
            user_id=state.reconciliation.user.id,
            outcome=state.reconciliation.outcome,
        )
        return ProvisioningResult(
            status=SagaStatus.COMPLETED,
            organization=state.organization,
            subscription=state.subscription,
            user=state.reconciliation.user,
            session_token=session_token,
            completed_steps=tuple(state.completed_steps),
        )

    @contextmanager
    def _step(self, state: SagaState, step: SagaStep) -> Iterator[None]:
        state.current_step = step
        started = time.perf_counter()
        yield
        state.completed_steps.append(step)
        logger.info(
            "saga_step_completed",
            step=step,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    def _pause(self, state: SagaState, request: SignupRequest) -> ProvisioningResult:
        context = ResumptionContext(
            email=state.email,
            organization_id=state.organization.id,
            subscription_id=state.facts.subscription_id,
            package_id=request.package_id,
            billing_interval=state.facts.interval,
            created_at=self._now(),
        )
        logger.info(
            "saga_paused",
            saga_id=state.saga_id,
            organization_id=state.organization.id,
            subscription_id=state.facts.subscription_id,
            expires_at=context.expires_at().isoformat(),
        )
        return ProvisioningResult(
            status=SagaStatus.PAUSED,
            organization=state.organization,
            subscription=state.subscription,
            resume_token=context.to_token(),
            status_finalized=state.status_finalized,
            completed_steps=tuple(state.completed_steps),
        )

    def _fail(self, state: SagaState, error: ProvisioningError) -> None:
        if state.organization is not None:
            error.context.setdefault("organization_id", state.organization.id)
        if state.facts is not None:
            error.context.setdefault("subscription_id", state.facts.subscription_id)
        elif state.subscription is not None:
            error.context.setdefault("subscription_id", state.subscription.stripe_subscription_id)
        if state.email:
            error.context.setdefault("email", state.email)
        if state.current_step:
            error.context.setdefault("step", str(state.current_step))

        logger.error(
            "saga_failed",
            saga_id=state.saga_id,
            step=state.current_step,
            code=error.code,
            retryable=error.retryable,
            completed_steps=list(state.completed_steps),
            **{key: str(value) for key, value in error.context.items() if key != "step"},
        )
