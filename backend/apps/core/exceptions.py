"""
Base exception for provisioning failures.

Each app defines its concrete errors in its own exceptions module. The class
attributes classify an error once, so callers branch on ``retryable`` instead
of on exception types.
"""

from typing import Any


class ProvisioningError(Exception):
    """
    Base exception for anything that stops a provisioning step.

    Attributes:
        code: Stable machine-readable error code.
        retryable: True if re-running the whole request may succeed.
        status_code: HTTP status used when surfaced by the API.
        support_message: User-facing text pointing at the manual support path.
        context: Identifiers needed for manual recovery. The orchestrator adds
            organization_id, subscription_id and email as they become known.
    """

    code = "provisioning_error"
    retryable = False
    status_code = 500
    support_message = "Account setup could not be completed. Please contact support."

    def __init__(self, message: str | None = None, *, context: dict[str, Any] | None = None):
        super().__init__(message or self.support_message)
        self.message = message or self.support_message
        self.context: dict[str, Any] = dict(context or {})

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses and log events."""
        return {
            "detail": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "context": {
                key: str(value) for key, value in self.context.items() if value is not None
            },
        }


class StoreUnavailable(ProvisioningError):
    """The database failed mid-run for a reason no step could handle itself."""

    code = "store_unavailable"
    retryable = True
    status_code = 503
    support_message = (
        "We could not finish setting up your account right now. Please try again; "
        "your payment has been received."
    )
