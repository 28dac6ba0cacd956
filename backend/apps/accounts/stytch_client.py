"""
Stytch consumer client wrapper.

Provides a singleton client instance configured from Django settings.
"""

from functools import lru_cache

import stytch
from django.conf import settings


@lru_cache(maxsize=1)
def get_stytch_client() -> stytch.Client:
    """
    Get configured Stytch client (singleton).

    Signup identities are plain Stytch users (email + password), not B2B
    members; tenants are modelled locally.
    """
    return stytch.Client(
        project_id=settings.STYTCH_PROJECT_ID,
        secret=settings.STYTCH_SECRET,
    )
