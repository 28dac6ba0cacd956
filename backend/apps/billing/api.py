"""
Billing API endpoints.

Only the unauthenticated signup checkout lives here; the paid subscription
itself is recorded by the provisioning saga after Checkout returns.
"""

from django.http import HttpRequest
from ninja import Router

from apps.billing.schemas import SignupCheckoutRequest, SignupCheckoutResponse
from apps.billing.services import create_signup_checkout_session
from apps.core.schemas import ProvisioningErrorResponse

router = Router(tags=["billing"])


@router.post(
    "/signup-checkout",
    response={
        200: SignupCheckoutResponse,
        400: ProvisioningErrorResponse,
        502: ProvisioningErrorResponse,
    },
    operation_id="createSignupCheckout",
    summary="Create Stripe Checkout session for a new signup",
)
def create_signup_checkout(
    request: HttpRequest, payload: SignupCheckoutRequest
) -> SignupCheckoutResponse:
    """
    Create a Stripe Checkout session before any account exists.

    Free packages are rejected; they do not go through payment.
    """
    checkout_url, session_id = create_signup_checkout_session(
        package_id=payload.package_id,
        email=payload.email,
        organization_name=payload.organization_name,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
        name=payload.name,
    )
    return SignupCheckoutResponse(checkout_url=checkout_url, checkout_session_id=session_id)
