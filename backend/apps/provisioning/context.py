"""
Resumption context for a paused provisioning run.

When sign-up does not yield a session, the saga hands the caller a signed
token with everything needed to finish identity reconciliation later. The
token is verified and its age checked before anything touches the store.
"""

from datetime import datetime, timedelta

from django.conf import settings
from django.core import signing
from django.utils import timezone
from pydantic import BaseModel, ConfigDict, ValidationError

from apps.provisioning.exceptions import InvalidResumptionContext, SessionExpired

RESUME_TOKEN_SALT = "provisioning.resume"


class ResumptionContext(BaseModel):
    """What a paused run needs to resume: who paid, and for which tenant."""

    model_config = ConfigDict(frozen=True)

    email: str
    organization_id: int
    subscription_id: str
    package_id: str
    billing_interval: str
    created_at: datetime

    def expires_at(self, ttl_seconds: int | None = None) -> datetime:
        if ttl_seconds is None:
            ttl_seconds = settings.PROVISIONING_RESUME_TTL_SECONDS
        return self.created_at + timedelta(seconds=ttl_seconds)

    def is_expired(self, now: datetime | None = None, ttl_seconds: int | None = None) -> bool:
        return (now or timezone.now()) > self.expires_at(ttl_seconds)

    def to_token(self) -> str:
        return signing.dumps(self.model_dump(mode="json"), salt=RESUME_TOKEN_SALT, compress=True)

    @classmethod
    def from_token(
        cls, token: str, now: datetime | None = None, ttl_seconds: int | None = None
    ) -> "ResumptionContext":
        """
        Verify and decode a resume token.

        Raises:
            InvalidResumptionContext: bad signature or unexpected payload.
            SessionExpired: the context outlived its TTL.
        """
        try:
            payload = signing.loads(token, salt=RESUME_TOKEN_SALT)
        except signing.BadSignature as e:
            raise InvalidResumptionContext() from e

        try:
            context = cls.model_validate(payload)
        except ValidationError as e:
            raise InvalidResumptionContext() from e

        if context.is_expired(now=now, ttl_seconds=ttl_seconds):
            raise SessionExpired(
                context={
                    "email": context.email,
                    "organization_id": context.organization_id,
                    "subscription_id": context.subscription_id,
                }
            )
        return context
