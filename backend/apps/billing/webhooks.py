"""
Stripe webhook handler.

Handles incoming webhooks from Stripe for subscription events.
This is a separate view (not Django Ninja) for raw request handling
needed to verify Stripe signatures.
"""

import stripe
from django.db import transaction
from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from apps.billing.services import (
    handle_checkout_completed,
    handle_subscription_deleted,
    handle_subscription_updated,
)
from apps.billing.stripe_client import as_dict, get_stripe
from apps.core.logging import get_logger
from apps.core.webhooks import mark_webhook_processed
from config.settings.base import settings

logger = get_logger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Handle Stripe webhook events.

    Verifies signature, skips redelivered events and dispatches to the
    appropriate handler.
    """
    payload = request.body
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("stripe_webhook_missing_signature")
        return HttpResponse(status=400)

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("stripe_webhook_secret_not_configured")
        return HttpResponse(status=500)

    get_stripe()  # Ensure Stripe is configured
    try:
        event = stripe.Webhook.construct_event(
            payload,
            sig_header,
            settings.STRIPE_WEBHOOK_SECRET,
        )
    except ValueError as e:
        logger.warning("stripe_webhook_invalid_payload", error=str(e))
        return HttpResponse(status=400)
    except stripe.SignatureVerificationError as e:
        logger.warning("stripe_webhook_invalid_signature", error=str(e))
        return HttpResponse(status=400)

    event_type = event["type"]
    logger.info("stripe_webhook_received", event_type=event_type, event_id=event["id"])

    try:
        with transaction.atomic():
            if not mark_webhook_processed("stripe", event["id"]):
                return HttpResponse(status=200)

            data = as_dict(event["data"]["object"])
            match event_type:
                case "checkout.session.completed":
                    handle_checkout_completed(data)

                case "customer.subscription.updated":
                    handle_subscription_updated(data)

                case "customer.subscription.deleted":
                    handle_subscription_deleted(data)

                case _:
                    logger.debug("stripe_webhook_unhandled_event", event_type=event_type)

    except Exception:
        logger.exception("stripe_webhook_handler_error", event_type=event_type)
        # Return 500 so Stripe will retry with exponential backoff
        return HttpResponse(status=500)

    return HttpResponse(status=200)
