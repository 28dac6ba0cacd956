"""Provisioning app configuration."""

from django.apps import AppConfig


class ProvisioningConfig(AppConfig):
    """Configuration for provisioning app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.provisioning"
