"""Pause/resume exceptions for the provisioning saga."""

from apps.core.exceptions import ProvisioningError


class SessionExpired(ProvisioningError):
    """The resumption context is older than its time-to-live."""

    code = "session_expired"
    status_code = 410
    support_message = (
        "Your signup link has expired. Your payment was received; please "
        "contact support to finish setting up your account."
    )


class InvalidResumptionContext(ProvisioningError):
    """The resumption token was tampered with, malformed or points nowhere."""

    code = "invalid_resumption_context"
    status_code = 400
    support_message = "This signup link is not valid."
