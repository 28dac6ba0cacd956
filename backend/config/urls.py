"""
URL configuration for the backend.
"""

from django.urls import path

from apps.accounts.webhooks import stytch_webhook
from apps.billing.webhooks import stripe_webhook

from .api import api

urlpatterns = [
    path("api/v1/", api.urls),
    # Webhooks - outside Django Ninja for raw request handling
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
    path("webhooks/stytch/", stytch_webhook, name="stytch-webhook"),
]
