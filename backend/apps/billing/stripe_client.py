"""
Stripe client configuration.

Provides a configured Stripe client for billing operations.
"""

from types import ModuleType
from typing import Any

import stripe

from config.settings.base import settings

STRIPE_API_VERSION = "2025-06-30.basil"

# Retries are safe due to automatic idempotency key generation.
STRIPE_MAX_NETWORK_RETRIES = 2


def configure_stripe() -> None:
    """Configure Stripe API with settings."""
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.api_version = STRIPE_API_VERSION
    stripe.max_network_retries = STRIPE_MAX_NETWORK_RETRIES


def get_stripe() -> ModuleType:
    """
    Get configured Stripe module.

    Ensures Stripe is configured before use.
    """
    configure_stripe()
    return stripe


def as_dict(obj: Any) -> dict:
    """
    Convert a Stripe object (or an already-plain mapping) into a nested dict.

    Payment facts are parsed from plain dicts so webhook payloads, API
    responses and test fixtures go through the same code.
    """
    if obj is None:
        return {}
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


def object_id(value: Any) -> str | None:
    """Return the id of an expandable Stripe field (either 'xxx_123' or an object)."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id") or None
    return None
