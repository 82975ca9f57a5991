"""
ProcessorConfiguration model: which payment processor the club charges through.

Admins create one record per processor account. Any number of records may
be active; at most one is the default. The charge orchestrator resolves a
record through payments.registry and never mutates it.

Credential fields are shared across processor kinds:

    kind     access_token          application_id     location_id  merchant_id
    square   access token          application id     location id  -
    clover   API token             app id (public)    -            merchant id
    stripe   secret key            publishable key    -            -
    paypal   client secret         client id          -            -

Usage:
    from payments.models import ProcessorConfiguration

    config = ProcessorConfiguration.objects.create(
        kind=ProcessorKind.SQUARE,
        name="Club Square",
        access_token="EAAA...",
        application_id="sandbox-sq0idb-...",
        location_id="L123",
        is_active=True,
        is_default=True,
    )
    missing = config.missing_credentials()
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import F

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import Currency, ProcessorEnvironment, ProcessorKind

# Minimum credentials per processor kind
REQUIRED_CREDENTIALS: dict[str, tuple[str, ...]] = {
    ProcessorKind.SQUARE: ("access_token", "location_id"),
    ProcessorKind.CLOVER: ("access_token", "merchant_id"),
    ProcessorKind.STRIPE: ("access_token",),
    ProcessorKind.PAYPAL: ("application_id", "access_token"),
}


class ProcessorConfiguration(UUIDPrimaryKeyMixin, BaseModel):
    """
    Persisted settings for one processor account.

    Fields:
        kind: Processor kind (square, clover, stripe, paypal)
        name: Admin-facing label
        is_active: Whether charges may be routed to this record
        is_default: The record used when no processor is requested
        environment: sandbox or production
        access_token, application_id, location_id, merchant_id,
            webhook_signature_key: Credentials (see module docstring)
        currency: Charge currency
        tax_rate: Percentage in [0, 100]
        default_description: Note attached to charges without a description
        created_by, last_modified_by: Audit fields
        version: Incremented on every save; part of the adapter cache key
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    kind = models.CharField(
        max_length=20,
        choices=ProcessorKind.choices,
        db_index=True,
        help_text="Processor this configuration connects to",
    )
    name = models.CharField(
        max_length=100,
        blank=True,
        help_text="Admin-facing label",
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether charges may be routed through this configuration",
    )
    is_default = models.BooleanField(
        default=False,
        help_text="Default configuration when no processor is requested (at most one)",
    )
    environment = models.CharField(
        max_length=20,
        choices=ProcessorEnvironment.choices,
        default=ProcessorEnvironment.SANDBOX,
        help_text="Processor environment",
    )

    # ==========================================================================
    # Credentials (never returned by the API)
    # ==========================================================================

    access_token = models.CharField(
        max_length=512,
        blank=True,
        help_text="Access token, API token, secret key or client secret",
    )
    application_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Public application id, publishable key or client id",
    )
    location_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Square location id",
    )
    merchant_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Clover merchant id",
    )
    webhook_signature_key = models.CharField(
        max_length=255,
        blank=True,
        help_text="Webhook signing key",
    )

    # ==========================================================================
    # Global Settings
    # ==========================================================================

    currency = models.CharField(
        max_length=3,
        choices=Currency.choices,
        default=Currency.USD,
        help_text="ISO 4217 currency code",
    )
    tax_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0"),
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("100"))],
        help_text="Tax rate percentage (0-100)",
    )
    default_description = models.CharField(
        max_length=255,
        blank=True,
        help_text="Note attached to charges without their own description",
    )

    # ==========================================================================
    # Audit & Concurrency
    # ==========================================================================

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Admin who created this configuration",
    )
    last_modified_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Admin who last modified this configuration",
    )
    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        ordering = ["-is_default", "-updated_at"]
        verbose_name = "Processor configuration"
        verbose_name_plural = "Processor configurations"
        indexes = [
            models.Index(fields=["kind", "is_active"], name="proc_config_kind_active_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["is_default"],
                condition=models.Q(is_default=True),
                name="single_default_processor_configuration",
            ),
            models.CheckConstraint(
                condition=models.Q(tax_rate__gte=0) & models.Q(tax_rate__lte=100),
                name="processor_configuration_tax_rate_range",
            ),
        ]

    def __str__(self) -> str:
        label = self.name or self.get_kind_display()
        flags = " default" if self.is_default else ""
        return f"ProcessorConfiguration({label}, {self.environment}{flags})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.
        """
        is_update = self.pk and not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    def missing_credentials(self) -> list[str]:
        """Names of the credential fields this kind requires but lacks."""
        required = REQUIRED_CREDENTIALS.get(self.kind, ())
        return [name for name in required if not getattr(self, name)]

    def public_config(self) -> dict:
        """Non-sensitive fields the browser SDK needs."""
        return {
            "processor": self.kind,
            "applicationId": self.application_id,
            "locationId": self.location_id,
            "environment": self.environment,
            "currency": self.currency,
        }
