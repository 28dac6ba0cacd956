"""
Core schemas - shared Pydantic models for API responses.
"""

from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    detail: str = Field(..., description="Human-readable error message")

    model_config = {"json_schema_extra": {"example": {"detail": "Invalid request."}}}


class ProvisioningErrorResponse(ErrorResponse):
    """Error raised by a provisioning step, with what support needs to recover it."""

    code: str = Field(..., description="Stable machine-readable error code")
    retryable: bool = Field(..., description="True if the whole request may be retried as-is")
    context: dict[str, Any] = Field(
        default_factory=dict,
        description="Identifiers for manual recovery (organization_id, subscription_id, email)",
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "detail": "Payment information is incomplete. Please contact support.",
                "code": "incomplete_payment_facts",
                "retryable": False,
                "context": {"organization_id": "42", "email": "jane@acme.com"},
            }
        }
    }
