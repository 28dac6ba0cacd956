"""
Test settings.

SQLite database, synchronous background tasks and no retry delays.
"""

from .base import *  # noqa: F403

SECRET_KEY = "test-secret-key"
DEBUG = False
ALLOWED_HOSTS = ["testserver", "localhost"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PROVISIONING_RUN_TASKS_INLINE = True
SUBSCRIPTION_WRITE_RETRY_DELAY = 0.0
IDENTITY_CONFLICT_RETRY_DELAY = 0.0
