"""
Refund model: one refund record attached to a ledger entry.

A refund record is inserted pending by a refund request and advanced to a
terminal state by an admin decision, or inserted directly as completed by
the refund sync when the processor reports a refund issued outside the
club site (e.g. from the Square dashboard).

Usage:
    from payments.models import Refund
    from payments.state_machines import RefundStatus

    refund = Refund.objects.create(
        payment=payment,
        amount_cents=5000,
        reason="goodwill",
        requested_by=parent,
    )

    # Admin decline goes through the django-fsm transition; approval and
    # failure are compare-and-set updates in RefundService.
    refund.reject(admin_notes="Outside refund window", refunded_by=admin)
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.models.payment import cents_to_decimal
from payments.state_machines import RefundSource, RefundStatus


class Refund(UUIDPrimaryKeyMixin, BaseModel):
    """
    A refund of part or all of a ledger entry.

    State Flow:
        PENDING -> COMPLETED
        PENDING -> FAILED
        PENDING -> REJECTED

    Fields:
        payment: Ledger entry being refunded
        external_refund_id: Processor refund id (null until processed)
        amount_cents: Refund amount in smallest currency unit
        reason: Customer/admin-facing reason
        status: Current FSM state
        processed_at: When the refund left the pending state
        notes: Requester notes, admin notes and failure messages
        requested_by: Account that filed the request
        refunded_by: Admin that approved or rejected it
        source: Where the record originated
        version: Optimistic locking version
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="refunds",
        help_text="Ledger entry being refunded",
    )

    # ==========================================================================
    # Refund Details
    # ==========================================================================

    external_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Processor refund id",
    )
    amount_cents = models.PositiveBigIntegerField(
        help_text="Refund amount in smallest currency unit (e.g., cents)",
    )
    reason = models.CharField(
        max_length=255,
        blank=True,
        help_text="Reason for the refund",
    )
    notes = models.TextField(
        blank=True,
        help_text="Request notes, admin notes and failure messages",
    )
    source = models.CharField(
        max_length=30,
        choices=RefundSource.choices,
        default=RefundSource.WEB,
        help_text="Where this refund record originated",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=RefundStatus.PENDING,
        choices=RefundStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the refund (managed by FSM)",
    )
    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the refund left the pending state",
    )

    # ==========================================================================
    # Audit & Concurrency
    # ==========================================================================

    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="requested_refunds",
        help_text="Account that requested the refund",
    )
    refunded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="processed_refunds",
        help_text="Admin that approved or rejected the refund",
    )
    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund"
        verbose_name_plural = "Refunds"
        indexes = [
            models.Index(fields=["payment", "status"], name="refund_payment_status_idx"),
            models.Index(fields=["status", "created_at"], name="refund_status_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="refund_amount_positive",
            ),
            models.UniqueConstraint(
                fields=["payment", "external_refund_id"],
                condition=models.Q(external_refund_id__isnull=False),
                name="refund_external_id_unique_per_payment",
            ),
        ]

    def __str__(self) -> str:
        return f"Refund({self.id}, {self.status}, {self.amount})"

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

    @property
    def amount(self):
        return cents_to_decimal(self.amount_cents)

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=RefundStatus.PENDING,
        target=RefundStatus.REJECTED,
    )
    def reject(self, admin_notes: str | None = None, refunded_by=None):
        """
        Admin declined the request.

        Transition: PENDING -> REJECTED
        """
        self.processed_at = timezone.now()
        if admin_notes:
            self.append_note(admin_notes)
        if refunded_by is not None:
            self.refunded_by = refunded_by

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def append_note(self, note: str) -> None:
        """Append a line to notes without losing earlier entries."""
        self.notes = f"{self.notes}\n{note}".strip() if self.notes else note

    @property
    def is_pending(self) -> bool:
        return self.status == RefundStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status != RefundStatus.PENDING
