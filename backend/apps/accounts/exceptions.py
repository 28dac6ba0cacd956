"""Identity provisioning exceptions."""

from apps.core.exceptions import ProvisioningError


class IdentityProviderError(ProvisioningError):
    """Stytch rejected or failed a sign-up or session call."""

    code = "identity_provider_error"
    status_code = 502
    support_message = "We could not create your login. Please contact support."


class IdentityUnrecoverable(ProvisioningError):
    """
    A user insert conflicted but no conflicting row could be found.

    Needs manual intervention: the identity exists at Stytch without a
    usable local record.
    """

    code = "identity_unrecoverable"
    status_code = 500
    support_message = (
        "Your payment was received but we could not finish setting up your "
        "account. Please contact support."
    )


class TenantMismatch(ProvisioningError):
    """The identity is already bound to a different organization."""

    code = "tenant_mismatch"
    status_code = 409
    support_message = (
        "This email is already associated with another organization. Please contact support."
    )
