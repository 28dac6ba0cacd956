"""
Core models - shared base classes and webhook bookkeeping.
"""

from django.db import models


class TimestampedModel(models.Model):
    """
    Abstract base model with created_at/updated_at timestamps.

    All provisioning entities inherit from this.
    """

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class ProcessedWebhook(models.Model):
    """
    Marker row for a webhook event that has already been handled.

    The unique constraint on (source, event_id) is what makes redelivered
    events no-ops; see apps.core.webhooks.mark_webhook_processed.
    """

    source = models.CharField(max_length=50, help_text="Provider, e.g. 'stripe' or 'stytch'")
    event_id = models.CharField(max_length=255, help_text="Provider event ID")
    processed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["source", "event_id"],
                name="unique_processed_webhook_per_source",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.source}:{self.event_id}"
