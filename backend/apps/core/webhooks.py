"""
Webhook utilities for idempotent processing.
"""

from django.db import IntegrityError, transaction

from apps.core.logging import get_logger
from apps.core.models import ProcessedWebhook

logger = get_logger(__name__)


def mark_webhook_processed(source: str, event_id: str) -> bool:
    """
    Mark a webhook event as processed.

    The insert runs in its own savepoint so a duplicate does not poison the
    caller's transaction.

    Args:
        source: Webhook provider (e.g., 'stripe', 'stytch')
        event_id: Unique event identifier from the provider

    Returns:
        True if marked successfully, False if already processed
    """
    try:
        with transaction.atomic():
            ProcessedWebhook.objects.create(source=source, event_id=event_id)
        return True
    except IntegrityError:
        logger.debug("webhook_already_processed", source=source, event_id=event_id)
        return False
