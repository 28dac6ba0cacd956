"""Organization provisioning exceptions."""

from apps.core.exceptions import ProvisioningError


class InvalidOrganizationSlug(ProvisioningError):
    """Organization name normalizes to an empty slug."""

    code = "invalid_organization_slug"
    status_code = 400
    support_message = "Organization name must contain at least one letter or digit."


class OrganizationStoreUnavailable(ProvisioningError):
    """Neither the lookup nor the insert of a tenant could complete."""

    code = "organization_store_unavailable"
    retryable = True
    status_code = 503
    support_message = "We could not set up your organization right now. Please try again."
