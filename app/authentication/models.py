"""
Authentication models.

This module defines the account model:
- User: Email-based account. Regular users are parents who pay for their
  players' registrations; the model carries the parent-level payment flags
  the payment subsystem maintains.

Related files:
    - managers.py: Custom user manager for email-based creation
    - registrations/models.py: Player and Registration owned by a parent
    - payments/services/charge_service.py: Sets the payment flags

Security:
    - User passwords hashed with Django's PBKDF2
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class UserRole(models.TextChoices):
    """Club roles. Admins review refunds and manage processors."""

    USER = "user", "User"
    ADMIN = "admin", "Admin"
    COACH = "coach", "Coach"


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        email: Primary identifier, unique, used for login
        full_name: Display name used in receipts
        role: Club role (user, admin, coach)
        payment_complete: Whether the parent has an active paid registration
        last_payment_date: When the parent's most recent charge completed
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created

    Usage:
        parent = User.objects.create_user(
            email="parent@example.com",
            password="securepassword",
            full_name="Jordan Smith",
        )
        if parent.is_admin:
            ...
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )
    full_name = models.CharField(
        max_length=150,
        blank=True,
        help_text="User's full name",
    )
    role = models.CharField(
        max_length=10,
        choices=UserRole.choices,
        default=UserRole.USER,
        db_index=True,
        help_text="Club role; admins can process refunds",
    )

    # Parent payment flags, maintained by the payment subsystem
    payment_complete = models.BooleanField(
        default=False,
        help_text="Whether this parent has a completed, unrefunded payment",
    )
    last_payment_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When this parent's most recent payment completed",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email

    def get_full_name(self):
        return self.full_name or self.email

    def get_short_name(self):
        if self.full_name:
            return self.full_name.split()[0]
        return self.email.split("@")[0]

    @property
    def is_admin(self) -> bool:
        """Admin role or Django staff."""
        return self.role == UserRole.ADMIN or self.is_staff
