"""
Accounts models - local binding of an external identity to a tenant.
"""

from django.db import models
from django.db.models.functions import Lower

from apps.core.models import TimestampedModel


class UserManager(models.Manager):
    """Manager for User rows."""

    @staticmethod
    def normalize_email(email: str) -> str:
        """Canonical form used for every lookup and insert made by this app."""
        return (email or "").strip().lower()

    def create_user(self, email: str, **extra_fields) -> "User":
        """Create and return a user with a normalized email."""
        email = self.normalize_email(email)
        if not email:
            raise ValueError("Email is required")
        return self.create(email=email, **extra_fields)


class User(TimestampedModel):
    """
    Local user record bound to a Stytch identity.

    Stytch handles authentication; this row only records who the identity is
    and which tenant it belongs to. There is at most one row per identity
    reference and per email (compared case-insensitively).
    """

    class Role(models.TextChoices):
        ADMIN = "admin", "Admin"
        PM = "pm", "Project Manager"
        MEMBER = "member", "Member"

    auth_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Stytch user_id, e.g. 'user-test-xxx'",
    )
    email = models.EmailField(unique=True)
    name = models.CharField(max_length=255, blank=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.MEMBER)
    organization = models.ForeignKey(
        "organizations.Organization",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="users",
    )

    objects = UserManager()

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(Lower("email"), name="unique_user_email_case_insensitive"),
        ]

    def __str__(self) -> str:
        return self.email
