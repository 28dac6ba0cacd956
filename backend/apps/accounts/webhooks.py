"""
Stytch webhook handler.

Handles incoming webhooks from Stytch for user events.
Stytch uses Svix for webhook delivery and signature verification.
"""

import json

from django.db import transaction
from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST
from svix.webhooks import Webhook, WebhookVerificationError

from apps.accounts.services import record_identity_from_provider
from apps.core.logging import get_logger
from apps.core.webhooks import mark_webhook_processed
from config.settings.base import settings

logger = get_logger(__name__)


def _display_name(name_data: dict | None) -> str:
    if not name_data:
        return ""
    parts = (name_data.get("first_name"), name_data.get("middle_name"), name_data.get("last_name"))
    return " ".join(part for part in parts if part)


def _organization_id_from_metadata(metadata: dict | None) -> int | None:
    value = (metadata or {}).get("organization_id")
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def handle_user_created(data: dict) -> None:
    """
    Handle user CREATE event from Stytch.

    Inserts the local user row for the new identity. The organization comes
    from the trusted metadata set at sign-up, when present.
    """
    user_data = data.get("user") or {}
    user_id = user_data.get("user_id")
    emails = user_data.get("emails") or []
    email = emails[0].get("email") if emails else None

    if not user_id or not email:
        logger.warning("stytch_webhook_user_create_missing_fields", user_id=user_id)
        return

    record_identity_from_provider(
        identity_ref=user_id,
        email=email,
        name=_display_name(user_data.get("name")),
        organization_id=_organization_id_from_metadata(user_data.get("trusted_metadata")),
    )


@csrf_exempt
@require_POST
def stytch_webhook(request: HttpRequest) -> HttpResponse:
    """
    Handle Stytch webhook events.

    Verifies Svix signature and dispatches to appropriate handler.
    """
    payload = request.body

    if not settings.STYTCH_WEBHOOK_SECRET:
        logger.error("stytch_webhook_secret_not_configured")
        return HttpResponse(status=500)

    try:
        wh = Webhook(settings.STYTCH_WEBHOOK_SECRET)
        event = wh.verify(payload, dict(request.headers))
    except WebhookVerificationError as e:
        logger.warning("stytch_webhook_invalid_signature", error=str(e))
        return HttpResponse(status=400)
    except json.JSONDecodeError as e:
        logger.warning("stytch_webhook_invalid_json", error=str(e))
        return HttpResponse(status=400)

    # Svix message ID for idempotency
    event_id = request.headers.get("svix-id", "")
    if not event_id:
        logger.warning("stytch_webhook_missing_svix_id")
        return HttpResponse(status=400)

    action = event.get("action", "")
    object_type = event.get("object_type", "")

    logger.info(
        "stytch_webhook_received",
        event_id=event_id,
        action=action,
        object_type=object_type,
    )

    # Idempotency marker is rolled back if the handler fails
    try:
        with transaction.atomic():
            if not mark_webhook_processed("stytch", event_id):
                logger.info("stytch_webhook_duplicate", event_id=event_id)
                return HttpResponse(status=200)

            if object_type == "user" and action == "CREATE":
                handle_user_created(event)
            else:
                logger.debug(
                    "stytch_webhook_unhandled_event", object_type=object_type, action=action
                )

    except Exception:
        logger.exception("stytch_webhook_handler_error")
        # Return 500 so Svix will retry with exponential backoff
        return HttpResponse(status=500)

    return HttpResponse(status=200)
