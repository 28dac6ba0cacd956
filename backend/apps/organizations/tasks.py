"""
Background tasks for organizations.

The Stripe customer backfill runs off the provisioning path: its outcome
never changes the saga's result, and a billing webhook repairs whatever it
misses.
"""

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from django.conf import settings
from django.db import DatabaseError, close_old_connections, connection, transaction

from apps.core.logging import get_logger
from apps.core.retry import RetryPolicy, call_with_retry
from apps.organizations.models import Organization
from apps.organizations.services import set_stripe_customer_id

logger = get_logger(__name__)

BACKFILL_RETRY_POLICY = RetryPolicy(attempts=3, base_delay=0.5, max_delay=2.0)

_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="stripe-customer-backfill")


def backfill_stripe_customer_id(
    organization_id: int,
    customer_id: str,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Persist the Stripe customer id on the tenant with bounded retries.

    Returns True on success; logs and returns False otherwise.
    """
    try:
        return call_with_retry(
            lambda: set_stripe_customer_id(organization_id, customer_id),
            BACKFILL_RETRY_POLICY,
            retryable=(DatabaseError,),
            sleep=sleep,
            operation="stripe_customer_backfill",
        )
    except (DatabaseError, Organization.DoesNotExist):
        logger.warning(
            "stripe_customer_backfill_failed",
            organization_id=organization_id,
            customer_id=customer_id,
            exc_info=True,
        )
        return False


def _run_backfill_in_worker(organization_id: int, customer_id: str) -> None:
    close_old_connections()
    try:
        backfill_stripe_customer_id(organization_id, customer_id)
    except Exception:
        logger.exception("stripe_customer_backfill_crashed", organization_id=organization_id)
    finally:
        connection.close()


def schedule_stripe_customer_backfill(organization_id: int, customer_id: str) -> None:
    """
    Fire-and-forget the customer backfill once the current transaction commits.

    With PROVISIONING_RUN_TASKS_INLINE the backfill runs synchronously.
    """
    if settings.PROVISIONING_RUN_TASKS_INLINE:
        backfill_stripe_customer_id(organization_id, customer_id)
        return

    transaction.on_commit(
        lambda: _executor.submit(_run_backfill_in_worker, organization_id, customer_id)
    )
    logger.debug(
        "stripe_customer_backfill_scheduled",
        organization_id=organization_id,
        customer_id=customer_id,
    )
