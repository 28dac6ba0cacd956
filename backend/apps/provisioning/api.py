"""
Provisioning API endpoints.

Unauthenticated: the caller proves payment with the Checkout session id and
identity with the password it signs up with (or, on resume, a session token).
Provisioning errors are rendered by the handler registered in config.api.
"""

from django.http import HttpRequest
from ninja import Router

from apps.billing.schemas import SubscriptionSummary
from apps.core.schemas import ProvisioningErrorResponse
from apps.provisioning.schemas import (
    OrganizationSummary,
    ProvisioningResponse,
    SignupCompleteRequest,
    SignupResumeRequest,
    UserSummary,
)
from apps.provisioning.services import (
    ProvisioningOrchestrator,
    ProvisioningResult,
    SignupRequest,
)

router = Router(tags=["signup"])

ERROR_RESPONSES = {
    code: ProvisioningErrorResponse for code in (400, 409, 410, 422, 500, 502, 503)
}


def _to_response(result: ProvisioningResult) -> ProvisioningResponse:
    organization = result.organization
    subscription = result.subscription
    user = result.user
    return ProvisioningResponse(
        status=result.status.value,
        organization=OrganizationSummary(
            id=organization.id,
            name=organization.name,
            slug=organization.slug,
            subscription_status=organization.subscription_status,
        ),
        subscription=SubscriptionSummary(
            stripe_subscription_id=subscription.stripe_subscription_id,
            package_id=subscription.package.code,
            status=subscription.status,
            billing_interval=subscription.billing_interval,
            current_period_start=subscription.current_period_start.isoformat(),
            current_period_end=subscription.current_period_end.isoformat(),
        )
        if subscription
        else None,
        user=UserSummary(id=user.id, email=user.email, name=user.name, role=user.role)
        if user
        else None,
        session_token=result.session_token,
        resume_token=result.resume_token,
    )


@router.post(
    "/complete",
    response={200: ProvisioningResponse, **ERROR_RESPONSES},
    operation_id="completeSignup",
    summary="Provision organization, subscription and user after payment",
)
def complete_signup(request: HttpRequest, payload: SignupCompleteRequest) -> ProvisioningResponse:
    """
    Run the provisioning saga for a completed checkout.

    Safe to re-submit after a retryable error; every step is idempotent.
    """
    result = ProvisioningOrchestrator().run(
        SignupRequest(
            email=payload.email,
            password=payload.password,
            name=payload.name,
            organization_name=payload.organization_name,
            organization_slug=payload.organization_slug,
            package_id=payload.package_id,
            checkout_session_id=payload.checkout_session_id,
            billing_interval=payload.billing_interval,
        )
    )
    return _to_response(result)


@router.post(
    "/resume",
    response={200: ProvisioningResponse, **ERROR_RESPONSES},
    operation_id="resumeSignup",
    summary="Finish a paused signup",
)
def resume_signup(request: HttpRequest, payload: SignupResumeRequest) -> ProvisioningResponse:
    """Reconcile the user of a paused signup once a session exists."""
    result = ProvisioningOrchestrator().resume(payload.resume_token, payload.session_token)
    return _to_response(result)
