"""Billing provisioning exceptions."""

from apps.core.exceptions import ProvisioningError


class PaymentProviderError(ProvisioningError):
    """Stripe could not be reached or rejected the request."""

    code = "payment_provider_error"
    retryable = True
    status_code = 502
    support_message = "We could not confirm your payment right now. Please try again."


class IncompletePaymentFacts(ProvisioningError):
    """Checkout session lacks a customer or subscription id."""

    code = "incomplete_payment_facts"
    status_code = 422
    support_message = (
        "Your payment was received but we could not read its details. "
        "Please contact support with your checkout reference."
    )


class MissingPackageReference(ProvisioningError):
    """No known package id was supplied for the subscription."""

    code = "missing_package_reference"
    status_code = 400
    support_message = "No subscription package was selected."


class SubscriptionConflict(ProvisioningError):
    """Tenant already holds a different subscription than the one just paid for."""

    code = "subscription_conflict"
    status_code = 409
    support_message = (
        "Your payment was received but your organization already has another "
        "subscription. Please contact support."
    )


class SubscriptionWriteFailed(ProvisioningError):
    """The subscription row could not be written after the retry."""

    code = "subscription_write_failed"
    status_code = 500
    support_message = (
        "Your payment was received but we could not record your subscription. "
        "Please contact support."
    )


class SubscriptionAlreadyExists(Exception):
    """
    A subscription insert collided with an existing row.

    Internal to the subscription writer; callers see SubscriptionConflict.
    """


class PackageNotPurchasable(ProvisioningError):
    """Package is free or has no Stripe price configured."""

    code = "package_not_purchasable"
    status_code = 400
    support_message = "The selected package cannot be purchased online."
