"""
Reconciliation model for tracking refund sync runs.

Each full or date-ranged refund sync records a ReconciliationRun so
operators can see when the ledger last converged with the processors, what
was imported and which payments failed to sync.

Usage:
    from payments.models import ReconciliationRun

    run = ReconciliationRun.objects.create(
        scope=ReconciliationScope.ALL,
        started_at=timezone.now(),
    )
    ...
    run.mark_completed(summary)
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class ReconciliationRunStatus(models.TextChoices):
    """Status of a reconciliation run."""

    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class ReconciliationScope(models.TextChoices):
    """Which ledger entries a run covered."""

    ALL = "all", "All open payments"
    DATE_RANGE = "date_range", "Date range"


class ReconciliationRun(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks a refund sync run execution.

    The reconciliation service creates a run at the start and marks it
    completed or failed at the end with the summary counts.

    Indexes:
        - (status, started_at): For finding recent runs by status
    """

    started_at = models.DateTimeField(
        help_text="When this run started",
    )
    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When this run completed (or failed)",
    )

    scope = models.CharField(
        max_length=20,
        choices=ReconciliationScope.choices,
        default=ReconciliationScope.ALL,
        help_text="Which ledger entries this run covered",
    )
    range_start = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Start of the creation window for date-ranged runs",
    )
    range_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text="End of the creation window for date-ranged runs",
    )

    # Results summary
    payments_processed = models.PositiveIntegerField(
        default=0,
        help_text="Ledger entries checked against the processor",
    )
    refunds_added = models.PositiveIntegerField(
        default=0,
        help_text="Refund records imported from the processor",
    )
    amount_added_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Total amount of imported refunds in smallest currency unit",
    )
    error_count = models.PositiveIntegerField(
        default=0,
        help_text="Ledger entries that failed to sync",
    )
    errors = models.JSONField(
        default=list,
        blank=True,
        help_text="Per-payment errors: [{payment_id, error_code, message}]",
    )

    status = models.CharField(
        max_length=20,
        choices=ReconciliationRunStatus.choices,
        default=ReconciliationRunStatus.RUNNING,
        db_index=True,
        help_text="Current status of this run",
    )
    error_message = models.TextField(
        blank=True,
        help_text="Error message if the run failed",
    )

    class Meta:
        indexes = [
            models.Index(fields=["status", "started_at"], name="recon_run_status_started_idx"),
        ]
        ordering = ["-started_at"]

    def __str__(self) -> str:
        return f"ReconciliationRun({self.id}, {self.status}, {self.started_at})"

    @property
    def duration_seconds(self) -> float | None:
        """Calculate run duration in seconds, or None if not complete."""
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def mark_completed(self, summary) -> None:
        """Store summary counts and finish the run."""
        self.payments_processed = summary.payments_processed
        self.refunds_added = summary.refunds_added
        self.amount_added_cents = summary.amount_added_cents
        self.error_count = len(summary.errors)
        self.errors = summary.errors
        self.status = ReconciliationRunStatus.COMPLETED
        self.completed_at = timezone.now()
        self.save()

    def mark_failed(self, message: str) -> None:
        self.status = ReconciliationRunStatus.FAILED
        self.error_message = message
        self.completed_at = timezone.now()
        self.save(update_fields=["status", "error_message", "completed_at", "updated_at"])
