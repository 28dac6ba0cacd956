"""
Django Ninja API configuration.
"""

from django.http import HttpRequest, HttpResponse
from ninja import NinjaAPI

from apps.billing.api import router as billing_router
from apps.core.exceptions import ProvisioningError
from apps.core.logging import get_logger
from apps.provisioning.api import router as signup_router

logger = get_logger(__name__)

api = NinjaAPI(
    title="Tango Provisioning API",
    version="1.0.0",
    description="Post-payment tenant and user provisioning with Stripe and Stytch.",
    openapi_extra={
        "info": {
            "contact": {"name": "API Support"},
        },
        "tags": [
            {
                "name": "signup",
                "description": "Provision organization, subscription and user after checkout",
            },
            {
                "name": "billing",
                "description": "Stripe Checkout for new signups",
            },
            {
                "name": "health",
                "description": "Service health and readiness checks",
            },
        ],
    },
)

api.add_router("/signup", signup_router)
api.add_router("/billing", billing_router)


@api.exception_handler(ProvisioningError)
def provisioning_error(request: HttpRequest, exc: ProvisioningError) -> HttpResponse:
    """Render provisioning failures with the identifiers support needs."""
    if exc.status_code >= 500:
        logger.warning("provisioning_error_response", code=exc.code, status_code=exc.status_code)
    return api.create_response(request, exc.to_dict(), status=exc.status_code)


@api.get("/health", tags=["health"], operation_id="healthCheck", summary="Health check")
def health_check(request: HttpRequest) -> dict:
    """Health check endpoint for load balancer."""
    return {"status": "ok"}
