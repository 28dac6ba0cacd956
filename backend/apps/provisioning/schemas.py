"""
Provisioning API schemas - request/response types for signup completion.
"""

from typing import Literal

from ninja import Schema
from pydantic import EmailStr, Field

from apps.billing.schemas import SubscriptionSummary


class SignupCompleteRequest(Schema):
    """Request sent when the browser returns from a successful Stripe Checkout."""

    email: EmailStr
    password: str = Field(..., min_length=8)
    name: str = ""
    organization_name: str = Field(..., min_length=1, max_length=255)
    organization_slug: str | None = None
    package_id: str | None = None
    checkout_session_id: str = Field(..., min_length=1)
    billing_interval: Literal["month", "year"] | None = None


class SignupResumeRequest(Schema):
    """Request to finish a paused signup once the user has a session."""

    resume_token: str = Field(..., min_length=1)
    session_token: str = Field(..., min_length=1)


class OrganizationSummary(Schema):
    id: int
    name: str
    slug: str
    subscription_status: str


class UserSummary(Schema):
    id: int
    email: str
    name: str
    role: str


class ProvisioningResponse(Schema):
    """Outcome of a provisioning run."""

    status: Literal["completed", "paused"]
    organization: OrganizationSummary
    subscription: SubscriptionSummary | None = None
    user: UserSummary | None = None
    session_token: str | None = None
    resume_token: str | None = None
