"""
Payment model: the local ledger entry for one processor charge.

A Payment is created by the charge orchestrator only after the processor
reported a successful charge. It is mutated by the refund orchestrator and
the refund sync, and never deleted.

Refund bookkeeping is always derived from the refund records:

    refunded_amount_cents == sum(refund.amount_cents for completed refunds)
    refund_status: none / partial / full, or processing while pending
    requests cover the remaining balance

Call recompute_refund_totals() at the end of every operation that touches
refunds instead of incrementing counters.

Usage:
    from payments.models import Payment

    payment = Payment.objects.get(payment_id="sq_pay_123")
    payment.available_refund_cents  # amount still refundable
    payment.recompute_refund_totals()
    payment.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F, Sum

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import (
    Currency,
    PaymentStatus,
    ProcessorKind,
    RefundAggregateStatus,
    RefundStatus,
)


def cents_to_decimal(cents: int) -> Decimal:
    """Convert minor units to a two-place Decimal amount."""
    return (Decimal(cents) / Decimal(100)).quantize(Decimal("0.01"))


class Payment(UUIDPrimaryKeyMixin, BaseModel):
    """
    Ledger entry for a charge and the root of its refunds.

    Fields:
        payment_id: Processor payment id (globally unique)
        order_id: Processor order id (Clover, PayPal)
        processor: Processor kind that performed the charge
        configuration: ProcessorConfiguration used (kept nullable so a
            deleted configuration never deletes ledger history)
        amount_cents: Charged amount in minor units
        currency: ISO 4217 currency code
        status: Ledger status (completed after a successful charge)
        card_brand, card_last4, card_exp_month, card_exp_year: Card fingerprint
        buyer_email: Receipt address
        parent: Paying parent account
        players: Players covered by the charge
        refunded_amount_cents: Sum of completed refunds
        refund_status: none, partial, full or processing
        receipt_url: Processor receipt link, if any
        raw_status: Processor status string as received
        processed_at: When the processor completed the charge
        metadata: Season, year, tryout, team ids, tournament, player count
        version: Optimistic locking version
    """

    # ==========================================================================
    # Processor Identity
    # ==========================================================================

    payment_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Processor payment id",
    )
    order_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Processor order id, if the processor uses orders",
    )
    processor = models.CharField(
        max_length=20,
        choices=ProcessorKind.choices,
        help_text="Processor that performed the charge",
    )
    configuration = models.ForeignKey(
        "payments.ProcessorConfiguration",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
        help_text="Configuration used for the charge",
    )

    # ==========================================================================
    # Amount & Status
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Charged amount in smallest currency unit (e.g., cents)",
    )
    currency = models.CharField(
        max_length=3,
        choices=Currency.choices,
        default=Currency.USD,
        help_text="ISO 4217 currency code",
    )
    status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.COMPLETED,
        db_index=True,
        help_text="Ledger status",
    )
    raw_status = models.CharField(
        max_length=50,
        blank=True,
        help_text="Processor status string as received",
    )
    receipt_url = models.URLField(
        max_length=500,
        blank=True,
        help_text="Processor receipt link",
    )
    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the processor completed the charge",
    )

    # ==========================================================================
    # Card Fingerprint & Buyer
    # ==========================================================================

    card_brand = models.CharField(max_length=50, blank=True, help_text="Card brand")
    card_last4 = models.CharField(max_length=4, blank=True, help_text="Last four card digits")
    card_exp_month = models.PositiveSmallIntegerField(null=True, blank=True, help_text="Card expiry month")
    card_exp_year = models.PositiveSmallIntegerField(null=True, blank=True, help_text="Card expiry year")

    buyer_email = models.EmailField(
        help_text="Receipt email address",
    )
    parent = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
        help_text="Parent account that paid",
    )
    players = models.ManyToManyField(
        "registrations.Player",
        blank=True,
        related_name="payments",
        help_text="Players covered by this payment",
    )

    # ==========================================================================
    # Refund Bookkeeping (derived from refund records)
    # ==========================================================================

    refunded_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Sum of completed refunds in smallest currency unit",
    )
    refund_status = models.CharField(
        max_length=20,
        choices=RefundAggregateStatus.choices,
        default=RefundAggregateStatus.NONE,
        db_index=True,
        help_text="Refund state derived from refund records",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Season, year, tryout, team ids, tournament, player count",
    )

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["parent", "status"], name="payment_parent_status_idx"),
            models.Index(fields=["parent", "-created_at"], name="payment_parent_created_idx"),
            models.Index(fields=["-created_at"], name="payment_created_desc_idx"),
            models.Index(fields=["status", "refund_status"], name="payment_status_refund_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="payment_amount_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(refunded_amount_cents__lte=F("amount_cents")),
                name="payment_refunded_not_above_amount",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.payment_id}, {self.status}, {self.amount} {self.currency})"

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

    # ==========================================================================
    # Amounts
    # ==========================================================================

    @property
    def amount(self) -> Decimal:
        return cents_to_decimal(self.amount_cents)

    @property
    def refunded_amount(self) -> Decimal:
        return cents_to_decimal(self.refunded_amount_cents)

    @property
    def available_refund_cents(self) -> int:
        """Balance not yet refunded (pending requests not subtracted)."""
        return max(self.amount_cents - self.refunded_amount_cents, 0)

    @property
    def pending_refund_cents(self) -> int:
        total = self.refunds.filter(status=RefundStatus.PENDING).aggregate(
            total=Sum("amount_cents")
        )["total"]
        return total or 0

    @property
    def is_fully_refunded(self) -> bool:
        return self.refund_status == RefundAggregateStatus.FULL

    # ==========================================================================
    # Refund Bookkeeping
    # ==========================================================================

    def recompute_refund_totals(self) -> None:
        """
        Derive refunded amount and refund status from refund records.

        Does not save. Status rules:
            refunded == amount                    -> full
            refunded + pending >= amount, pending -> processing
            refunded > 0                          -> partial
            otherwise                             -> none
        """
        totals = {
            row["status"]: row["total"] or 0
            for row in self.refunds.order_by().values("status").annotate(total=Sum("amount_cents"))
        }
        refunded = totals.get(RefundStatus.COMPLETED, 0)
        pending = totals.get(RefundStatus.PENDING, 0)

        self.refunded_amount_cents = refunded
        if refunded >= self.amount_cents:
            self.refund_status = RefundAggregateStatus.FULL
            self.status = PaymentStatus.REFUNDED
        elif pending and refunded + pending >= self.amount_cents:
            self.refund_status = RefundAggregateStatus.PROCESSING
        elif refunded > 0:
            self.refund_status = RefundAggregateStatus.PARTIAL
        else:
            self.refund_status = RefundAggregateStatus.NONE
