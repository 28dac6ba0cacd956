"""
Billing API schemas - request/response types for billing endpoints.
"""

from ninja import Schema
from pydantic import EmailStr


class SignupCheckoutRequest(Schema):
    """Request to start a paid signup in Stripe Checkout."""

    package_id: str
    email: EmailStr
    name: str = ""
    organization_name: str
    success_url: str
    cancel_url: str


class SignupCheckoutResponse(Schema):
    """Response with the Checkout session to redirect to."""

    checkout_url: str
    checkout_session_id: str


class SubscriptionSummary(Schema):
    """Subscription as returned by provisioning endpoints."""

    stripe_subscription_id: str
    package_id: str
    status: str
    billing_interval: str
    current_period_start: str  # ISO timestamp
    current_period_end: str  # ISO timestamp
