"""
Refund reconciliation: import refunds issued outside the club site.

The processor is the authority for refunds. A refund issued directly from
the Square dashboard (or any other processor console) never passes through
RefundService, so the ledger learns about it here.

Rules:
    - Purely additive: refund records are inserted, never removed
    - Only completed processor refunds are imported, as completed records
      with source=processor_dashboard
    - A refund whose external id is already recorded is skipped, so running
      a sync twice changes nothing the second time
    - Refund totals are recomputed from the records after every import
    - Linked domain flags (parent, players, registrations) are never touched

sync_all() holds a non-blocking distributed lock so only one full run is
active at a time, paces processor calls, and records a ReconciliationRun.
Per-payment failures are collected in the summary without aborting the run.

Usage:
    from payments.services import ReconciliationService

    result = ReconciliationService.sync_one("sq_pay_123")
    summary = ReconciliationService.sync_all()
    summary.refunds_added
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db.models import QuerySet
from django.utils import timezone

from core.services import BaseService
from payments.exceptions import (
    LockAcquisitionError,
    PaymentError,
    PaymentValidationError,
    ReconciliationLockError,
)
from payments.locks import DistributedLock
from payments.models import (
    Payment,
    ProcessorConfiguration,
    ReconciliationRun,
    ReconciliationScope,
    Refund,
)
from payments.registry import ProcessorRegistry
from payments.state_machines import (
    PaymentStatus,
    RefundAggregateStatus,
    RefundSource,
    RefundStatus,
)

if TYPE_CHECKING:
    from payments.adapters import RefundView

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

SYNC_ALL_LOCK_KEY = "refunds:sync:all"
DEFAULT_SYNC_LOCK_TTL = 3600  # 1 hour
DEFAULT_PACING_SECONDS = 0.5
UNKNOWN_REFUNDS_DEFAULT_DAYS = 30
IMPORTED_REFUND_REASON = "Refund issued from processor dashboard"


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class PaymentSyncResult:
    """Outcome of syncing one ledger entry."""

    payment_id: str
    found: bool = True
    refunds_added: int = 0
    amount_added_cents: int = 0
    refunded_amount_cents: int = 0
    refund_status: str = ""
    skipped: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "paymentId": self.payment_id,
            "found": self.found,
            "refundsAdded": self.refunds_added,
            "amountAddedCents": self.amount_added_cents,
            "refundedAmountCents": self.refunded_amount_cents,
            "refundStatus": self.refund_status,
            "skipped": self.skipped,
        }


@dataclass
class SyncSummary:
    """
    Totals of a multi-payment sync.

    ``errors`` holds one {payment_id, error_code, message} entry per ledger
    entry that failed to sync.
    """

    payments_processed: int = 0
    refunds_added: int = 0
    amount_added_cents: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    run_id: uuid.UUID | None = None

    def add(self, result: PaymentSyncResult) -> None:
        self.payments_processed += 1
        self.refunds_added += result.refunds_added
        self.amount_added_cents += result.amount_added_cents

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": str(self.run_id) if self.run_id else None,
            "paymentsProcessed": self.payments_processed,
            "refundsAdded": self.refunds_added,
            "amountAddedCents": self.amount_added_cents,
            "errorCount": len(self.errors),
            "errors": self.errors,
        }


# =============================================================================
# Reconciliation Service
# =============================================================================


class ReconciliationService(BaseService):
    """Converge ledger refunds with the processors."""

    # =========================================================================
    # Single Payment
    # =========================================================================

    @classmethod
    def sync_one(cls, payment_ref: Any) -> PaymentSyncResult:
        """
        Import processor refunds for one ledger entry.

        Args:
            payment_ref: Processor payment id or local ledger id

        Returns:
            PaymentSyncResult; ``found`` is False for an unknown entry

        Raises:
            ConfigurationError: No adapter can be resolved for the entry
            ProcessorError: The processor call failed
        """
        payment = cls._find_payment(payment_ref)
        if payment is None:
            cls.get_logger().info(
                "Refund sync skipped unknown payment",
                extra={"payment_id": str(payment_ref)},
            )
            return PaymentSyncResult(payment_id=str(payment_ref), found=False)

        adapter = ProcessorRegistry.adapter_for_payment(payment)
        views = adapter.list_refunds(payment_id=payment.payment_id)
        return cls._import_refunds(payment, views)

    @classmethod
    def _import_refunds(cls, payment: Payment, views: list[RefundView]) -> PaymentSyncResult:
        result = PaymentSyncResult(payment_id=payment.payment_id)

        with cls.atomic():
            payment = Payment.objects.select_for_update().get(pk=payment.pk)
            known = set(
                payment.refunds.exclude(external_refund_id=None).values_list(
                    "external_refund_id", flat=True
                )
            )
            room = payment.available_refund_cents

            for view in views:
                if view.external_payment_id and view.external_payment_id != payment.payment_id:
                    continue
                if not view.external_refund_id or view.external_refund_id in known:
                    continue
                if view.status != RefundStatus.COMPLETED:
                    result.skipped.append(
                        {"refundId": view.external_refund_id, "reason": f"status {view.status}"}
                    )
                    continue
                if view.amount_cents <= 0 or view.amount_cents > room:
                    cls.get_logger().warning(
                        "Processor refund does not fit the ledger balance",
                        extra={
                            "payment_id": payment.payment_id,
                            "external_refund_id": view.external_refund_id,
                            "amount_cents": view.amount_cents,
                            "available_cents": room,
                        },
                    )
                    result.skipped.append(
                        {"refundId": view.external_refund_id, "reason": "exceeds refundable balance"}
                    )
                    continue

                Refund.objects.create(
                    payment=payment,
                    external_refund_id=view.external_refund_id,
                    amount_cents=view.amount_cents,
                    reason=view.reason or IMPORTED_REFUND_REASON,
                    status=RefundStatus.COMPLETED,
                    processed_at=view.created_at or timezone.now(),
                    source=RefundSource.PROCESSOR_DASHBOARD,
                )
                known.add(view.external_refund_id)
                room -= view.amount_cents
                result.refunds_added += 1
                result.amount_added_cents += view.amount_cents

            if result.refunds_added:
                payment.recompute_refund_totals()
                payment.save()

        result.refunded_amount_cents = payment.refunded_amount_cents
        result.refund_status = payment.refund_status
        if result.refunds_added:
            cls.get_logger().info(
                "Imported processor refunds",
                extra={
                    "payment_id": payment.payment_id,
                    "processor": payment.processor,
                    "refunds_added": result.refunds_added,
                    "amount_added_cents": result.amount_added_cents,
                    "refund_status": payment.refund_status,
                },
            )
        return result

    # =========================================================================
    # Batch Sync
    # =========================================================================

    @classmethod
    def sync_all(cls, pacing_seconds: float | None = None) -> SyncSummary:
        """
        Sync every completed entry that is not fully refunded.

        Raises:
            ReconciliationLockError: Another full sync holds the lock
        """
        lock = DistributedLock(
            SYNC_ALL_LOCK_KEY,
            ttl=getattr(settings, "REFUND_SYNC_LOCK_TTL", DEFAULT_SYNC_LOCK_TTL),
            blocking=False,
        )
        try:
            lock.acquire()
        except LockAcquisitionError as e:
            cls.get_logger().warning(
                "Refund sync already running",
                extra={"lock_key": SYNC_ALL_LOCK_KEY},
            )
            raise ReconciliationLockError(
                "A refund sync is already in progress",
                details={"lock_key": SYNC_ALL_LOCK_KEY},
            ) from e

        try:
            payments = Payment.objects.filter(
                status=PaymentStatus.COMPLETED,
                refund_status__in=[RefundAggregateStatus.NONE, RefundAggregateStatus.PARTIAL],
            )
            return cls._run(payments, ReconciliationScope.ALL, pacing_seconds, lock=lock)
        finally:
            lock.release()

    @classmethod
    def sync_by_date_range(
        cls,
        start: datetime,
        end: datetime,
        pacing_seconds: float | None = None,
    ) -> SyncSummary:
        """
        Sync completed entries created within [start, end].

        Raises:
            PaymentValidationError: start is after end
        """
        if start > end:
            raise PaymentValidationError(
                "Start date must not be after end date",
                details={"start": start.isoformat(), "end": end.isoformat()},
            )
        payments = Payment.objects.filter(
            status=PaymentStatus.COMPLETED,
            created_at__gte=start,
            created_at__lte=end,
        )
        return cls._run(
            payments,
            ReconciliationScope.DATE_RANGE,
            pacing_seconds,
            range_start=start,
            range_end=end,
        )

    @classmethod
    def _run(
        cls,
        payments: QuerySet[Payment],
        scope: str,
        pacing_seconds: float | None,
        lock: DistributedLock | None = None,
        range_start: datetime | None = None,
        range_end: datetime | None = None,
    ) -> SyncSummary:
        """Sync ``payments`` one by one and record the run."""
        if pacing_seconds is None:
            pacing_seconds = getattr(settings, "REFUND_SYNC_PACING_SECONDS", DEFAULT_PACING_SECONDS)

        run = ReconciliationRun.objects.create(
            started_at=timezone.now(),
            scope=scope,
            range_start=range_start,
            range_end=range_end,
        )
        summary = SyncSummary(run_id=run.pk)
        log = cls.get_logger()
        log.info("Starting refund sync", extra={"run_id": str(run.pk), "scope": scope})

        try:
            payment_ids = list(payments.order_by("created_at").values_list("payment_id", flat=True))
            for index, payment_id in enumerate(payment_ids):
                if index and pacing_seconds:
                    time.sleep(pacing_seconds)
                try:
                    summary.add(cls.sync_one(payment_id))
                except PaymentError as e:
                    log.warning(
                        "Refund sync failed for payment",
                        extra={"run_id": str(run.pk), "payment_id": payment_id, "error_code": e.error_code},
                    )
                    summary.errors.append(
                        {"payment_id": payment_id, "error_code": e.error_code, "message": e.message}
                    )
                if lock is not None:
                    lock.extend()
        except Exception as e:
            run.mark_failed(str(e))
            log.error(
                "Refund sync run failed",
                extra={"run_id": str(run.pk), "error": str(e)},
                exc_info=True,
            )
            raise

        run.mark_completed(summary)
        log.info(
            "Refund sync completed",
            extra={
                "run_id": str(run.pk),
                "scope": scope,
                "payments_processed": summary.payments_processed,
                "refunds_added": summary.refunds_added,
                "amount_added_cents": summary.amount_added_cents,
                "error_count": len(summary.errors),
                "duration_seconds": run.duration_seconds,
            },
        )
        return summary

    # =========================================================================
    # Reporting
    # =========================================================================

    @classmethod
    def find_refunds_for_unknown_payments(
        cls,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any]:
        """
        List processor refunds whose payment is not in the ledger.

        Refunds are reported for operator review and never imported. Each
        active configuration is queried; a failing processor is reported in
        ``errors`` without hiding the others.
        """
        end = end or timezone.now()
        start = start or end - timedelta(days=UNKNOWN_REFUNDS_DEFAULT_DAYS)

        refunds: list[RefundView] = []
        errors: list[dict[str, Any]] = []
        for config in ProcessorConfiguration.objects.filter(is_active=True):
            try:
                adapter = ProcessorRegistry.get_adapter(config)
                refunds.extend(adapter.list_refunds(begin_time=start, end_time=end))
            except PaymentError as e:
                errors.append(
                    {"configuration_id": str(config.pk), "processor": config.kind, "error_code": e.error_code, "message": e.message}
                )

        payment_ids = list(dict.fromkeys(view.external_payment_id for view in refunds if view.external_payment_id))
        in_ledger = set(Payment.objects.filter(payment_id__in=payment_ids).values_list("payment_id", flat=True))
        unknown = [payment_id for payment_id in payment_ids if payment_id not in in_ledger]

        cls.get_logger().info(
            "Checked processor refunds for unknown payments",
            extra={"total_refunds": len(refunds), "unknown_payments": len(unknown)},
        )
        return {
            "totalRefunds": len(refunds),
            "uniquePaymentIds": payment_ids,
            "unknownPaymentIds": unknown,
            "paymentsInDb": [payment_id for payment_id in payment_ids if payment_id in in_ledger],
            "unknownRefunds": [
                {
                    "refundId": view.external_refund_id,
                    "paymentId": view.external_payment_id,
                    "amountCents": view.amount_cents,
                    "status": view.status,
                    "createdAt": view.created_at.isoformat() if view.created_at else None,
                }
                for view in refunds
                if view.external_payment_id not in in_ledger
            ],
            "errors": errors,
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _find_payment(payment_ref: Any) -> Payment | None:
        payment = Payment.objects.filter(payment_id=str(payment_ref)).first()
        if payment is not None:
            return payment
        try:
            local_id = uuid.UUID(str(payment_ref))
        except ValueError:
            return None
        return Payment.objects.filter(pk=local_id).first()


__all__ = [
    "PaymentSyncResult",
    "ReconciliationService",
    "SYNC_ALL_LOCK_KEY",
    "SyncSummary",
]
