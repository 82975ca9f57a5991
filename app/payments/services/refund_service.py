"""
Refund orchestrator: two-phase refund workflow for ledger entries.

Phase 1, request_refund(): a parent or staff member files a pending refund
record against a ledger entry. Nothing is sent to the processor.

Phase 2, process_refund(): an admin approves or rejects the pending record.

    reject   pending -> rejected, refunded amount unchanged
    approve  pending -> completed after the processor accepted the refund,
             pending -> failed when it did not

Approval runs under a per-payment distributed lock. Inside the lock the
record is re-read with select_for_update, the processor call is made
outside any transaction, and the terminal transition is a compare-and-set
on the record's status (UPDATE ... WHERE status='pending'). An admin who
loses the race receives ALREADY_PROCESSED.

Refund bookkeeping on the ledger entry is always recomputed from its refund
records. A refund that zeroes the balance reverses the linked domain flags
in the same transaction.

Usage:
    from payments.services import RefundService

    refund = RefundService.request_refund(
        payment_ref=payment.pk,
        amount_cents=5000,
        reason="goodwill",
        requested_by=parent,
    )
    outcome = RefundService.process_refund(
        payment_ref=payment.pk,
        refund_id=refund.pk,
        action="approve",
        admin=admin,
    )
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from core.services import BaseService
from payments.adapters import IdempotencyKeyGenerator
from payments.exceptions import (
    AlreadyProcessedError,
    AlreadyRefundedError,
    AmountExceedsRefundableError,
    IndeterminateOutcomeError,
    LockAcquisitionError,
    PaymentError,
    PaymentNotFoundError,
    PaymentValidationError,
    ProcessorDeclinedError,
    RefundAlreadyPendingError,
)
from payments.locks import DistributedLock
from payments.models import Payment, Refund
from payments.registry import ProcessorRegistry
from payments.state_machines import (
    RefundAction,
    RefundAggregateStatus,
    RefundSource,
    RefundStatus,
)
from registrations.services import DomainUpdateSummary, PaymentStatusService

if TYPE_CHECKING:
    from payments.adapters import RefundResult

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

REFUND_LOCK_TTL = 120  # seconds
REFUND_LOCK_TIMEOUT = 10.0  # seconds


@dataclass
class RefundProcessOutcome:
    """
    Result of an admin decision on a refund record.

    Attributes:
        refund: The refund record in its terminal state
        payment: The ledger entry with recomputed refund totals
        summary: Linked records reversed (only after a full refund)
    """

    refund: Refund
    payment: Payment
    summary: DomainUpdateSummary = field(default_factory=DomainUpdateSummary)


class RefundService(BaseService):
    """Request and process refunds against ledger entries."""

    # =========================================================================
    # Lookup
    # =========================================================================

    @classmethod
    def get_payment(cls, payment_ref: Any) -> Payment:
        """
        Load a ledger entry by local id, else by processor payment id.

        Raises:
            PaymentNotFoundError: Neither id matches
        """
        payment = None
        try:
            local_id = uuid.UUID(str(payment_ref))
        except ValueError:
            local_id = None
        if local_id is not None:
            payment = Payment.objects.filter(pk=local_id).first()
        if payment is None:
            payment = Payment.objects.filter(payment_id=str(payment_ref)).first()
        if payment is None:
            raise PaymentNotFoundError(
                f"Payment {payment_ref} not found",
                details={"payment_id": str(payment_ref)},
            )
        return payment

    # =========================================================================
    # Phase 1: Request
    # =========================================================================

    @classmethod
    def request_refund(
        cls,
        payment_ref: Any,
        amount_cents: int,
        reason: str = "",
        notes: str = "",
        requested_by=None,
        source: str = RefundSource.WEB,
    ) -> Refund:
        """
        File a pending refund record.

        Raises:
            PaymentNotFoundError: Unknown ledger entry
            PaymentValidationError: Non-positive amount
            AlreadyRefundedError: The entry is fully refunded
            AmountExceedsRefundableError: Amount above the unrefunded balance
            RefundAlreadyPendingError: Pending requests already cover the balance
        """
        if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
            raise PaymentValidationError(
                "Refund amount must be a positive number of minor units",
                details={"amount": amount_cents},
            )

        payment = cls.get_payment(payment_ref)

        with cls.atomic():
            payment = Payment.objects.select_for_update().get(pk=payment.pk)
            available = cls._check_refundable(payment, amount_cents)

            pending = payment.pending_refund_cents
            if pending >= available:
                raise RefundAlreadyPendingError(
                    "Pending refund requests already cover the remaining balance",
                    details={
                        "payment_id": str(payment.pk),
                        "pending_amount": pending,
                        "available_amount": available,
                    },
                )

            refund = Refund.objects.create(
                payment=payment,
                amount_cents=amount_cents,
                reason=reason or "",
                notes=notes or "",
                requested_by=requested_by,
                source=source,
            )
            payment.recompute_refund_totals()
            payment.save()

        cls.get_logger().info(
            "Refund requested",
            extra={
                "payment_id": payment.payment_id,
                "refund_id": str(refund.pk),
                "amount_cents": amount_cents,
                "refund_status": payment.refund_status,
                "requested_by": getattr(requested_by, "pk", None),
            },
        )
        return refund

    # =========================================================================
    # Phase 2: Process
    # =========================================================================

    @classmethod
    def process_refund(
        cls,
        payment_ref: Any,
        refund_id: Any,
        action: str,
        admin_notes: str = "",
        admin=None,
    ) -> RefundProcessOutcome:
        """
        Approve or reject a pending refund record.

        Raises:
            PaymentValidationError: Unknown action
            PaymentNotFoundError: Unknown ledger entry or refund record
            AlreadyProcessedError: The record already left pending, or
                another admin is processing it right now
            RefundConflictError: The balance no longer covers the refund
            ConfigurationError: No adapter can be resolved for the entry
            ProcessorError: The processor refused or failed the refund
        """
        if action not in RefundAction.values:
            raise PaymentValidationError(
                f"Invalid refund action: {action}",
                details={"action": action, "allowed": list(RefundAction.values)},
            )

        payment = cls.get_payment(payment_ref)
        lock_key = f"refund:process:{payment.pk}"
        try:
            with DistributedLock(lock_key, ttl=REFUND_LOCK_TTL, timeout=REFUND_LOCK_TIMEOUT):
                if action == RefundAction.REJECT:
                    return cls._reject(payment, refund_id, admin_notes, admin)
                return cls._approve(payment, refund_id, admin_notes, admin)
        except LockAcquisitionError as e:
            cls.get_logger().warning(
                "Refund is being processed by another admin",
                extra={"payment_id": payment.payment_id, "refund_id": str(refund_id)},
            )
            raise AlreadyProcessedError(
                "Refund is being processed by another admin",
                details={"refund_id": str(refund_id)},
            ) from e

    @classmethod
    def _reject(cls, payment: Payment, refund_id: Any, admin_notes: str, admin) -> RefundProcessOutcome:
        with cls.atomic():
            payment = Payment.objects.select_for_update().get(pk=payment.pk)
            refund = cls._load_pending(payment, refund_id)
            refund.reject(admin_notes=admin_notes or None, refunded_by=admin)
            refund.save()
            payment.recompute_refund_totals()
            payment.save()

        cls.get_logger().info(
            "Refund rejected",
            extra={
                "payment_id": payment.payment_id,
                "refund_id": str(refund.pk),
                "admin_id": getattr(admin, "pk", None),
            },
        )
        return RefundProcessOutcome(refund=refund, payment=payment)

    @classmethod
    def _approve(cls, payment: Payment, refund_id: Any, admin_notes: str, admin) -> RefundProcessOutcome:
        log = cls.get_logger()
        start_time = time.time()

        with cls.atomic():
            payment = Payment.objects.select_for_update().get(pk=payment.pk)
            refund = cls._load_pending(payment, refund_id)

        log_context = {
            "payment_id": payment.payment_id,
            "refund_id": str(refund.pk),
            "processor": payment.processor,
            "amount_cents": refund.amount_cents,
            "admin_id": getattr(admin, "pk", None),
        }
        log.info("Starting refund approval", extra=log_context)

        try:
            cls._check_refundable(payment, refund.amount_cents)
            adapter = ProcessorRegistry.adapter_for_payment(payment)
            result = adapter.refund(
                payment.payment_id,
                refund.amount_cents,
                refund.reason,
                idempotency_key=IdempotencyKeyGenerator.generate("refund"),
                currency=payment.currency,
            )
            if result.status == RefundStatus.FAILED:
                raise ProcessorDeclinedError(
                    f"Refund was rejected by the processor (status {result.raw_status})",
                    reason="refund_rejected",
                    processor=payment.processor,
                    processor_code=result.raw_status,
                )
        except PaymentError as e:
            log.warning(
                "Refund approval failed",
                extra={**log_context, "error_code": e.error_code, "error": e.message},
            )
            cls._finish_failed(refund, e.message, admin_notes, admin)
            raise

        try:
            outcome = cls._finish_completed(payment, refund, result, admin_notes, admin)
        except DatabaseError as e:
            log.error(
                "Processor refunded but ledger was not updated",
                extra={**log_context, "external_refund_id": result.external_refund_id},
                exc_info=True,
            )
            cls._record_issued_refund(refund, result, log_context)
            raise IndeterminateOutcomeError(
                "Refund was issued but the ledger update did not complete; review the payment",
                processor=payment.processor,
                details={"external_refund_id": result.external_refund_id},
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        log.info(
            "Refund approved",
            extra={
                **log_context,
                "external_refund_id": result.external_refund_id,
                "refund_status": outcome.payment.refund_status,
                "refunded_amount_cents": outcome.payment.refunded_amount_cents,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return outcome

    # =========================================================================
    # Transitions
    # =========================================================================

    @classmethod
    def _finish_completed(
        cls,
        payment: Payment,
        refund: Refund,
        result: RefundResult,
        admin_notes: str,
        admin,
    ) -> RefundProcessOutcome:
        """Compare-and-set the record to completed and recompute the entry."""
        summary = DomainUpdateSummary()
        with cls.atomic():
            notes = refund.notes
            if admin_notes:
                notes = f"{notes}\n{admin_notes}".strip() if notes else admin_notes
            updated = Refund.objects.filter(pk=refund.pk, status=RefundStatus.PENDING).update(
                status=RefundStatus.COMPLETED,
                external_refund_id=result.external_refund_id or None,
                processed_at=timezone.now(),
                refunded_by=admin,
                notes=notes,
                version=F("version") + 1,
                updated_at=timezone.now(),
            )
            if not updated:
                raise AlreadyProcessedError(
                    "Refund has already been processed",
                    details={"refund_id": str(refund.pk)},
                )

            payment = Payment.objects.select_for_update().get(pk=payment.pk)
            payment.recompute_refund_totals()
            payment.save()
            if payment.refund_status == RefundAggregateStatus.FULL:
                summary = PaymentStatusService.mark_refunded(payment)

            refund = Refund.objects.get(pk=refund.pk)
            transaction.on_commit(lambda: cls._queue_refund_email(refund))

        return RefundProcessOutcome(refund=refund, payment=payment, summary=summary)

    @classmethod
    def _record_issued_refund(cls, refund: Refund, result: RefundResult, log_context: dict[str, Any]) -> None:
        """
        Close a record the processor already refunded after the full update failed.

        The record is set to completed with the processor refund id so it
        leaves pending and the refund sync recognises it instead of importing
        a second record. Linked domain flags are left for an admin to review.
        """
        try:
            with cls.atomic():
                updated = Refund.objects.filter(pk=refund.pk, status=RefundStatus.PENDING).update(
                    status=RefundStatus.COMPLETED,
                    external_refund_id=result.external_refund_id or None,
                    processed_at=timezone.now(),
                    version=F("version") + 1,
                    updated_at=timezone.now(),
                )
                if updated:
                    payment = Payment.objects.select_for_update().get(pk=refund.payment_id)
                    payment.recompute_refund_totals()
                    payment.save()
        except DatabaseError:
            cls.get_logger().critical(
                "Issued refund could not be recorded, record is still pending",
                extra={**log_context, "external_refund_id": result.external_refund_id},
                exc_info=True,
            )

    @classmethod
    def _finish_failed(cls, refund: Refund, message: str, admin_notes: str, admin) -> None:
        """Compare-and-set the record to failed so it never stays pending."""
        notes = refund.notes
        for line in (admin_notes, message):
            if line:
                notes = f"{notes}\n{line}".strip() if notes else line

        with cls.atomic():
            updated = Refund.objects.filter(pk=refund.pk, status=RefundStatus.PENDING).update(
                status=RefundStatus.FAILED,
                processed_at=timezone.now(),
                refunded_by=admin,
                notes=notes,
                version=F("version") + 1,
                updated_at=timezone.now(),
            )
            if updated:
                payment = Payment.objects.select_for_update().get(pk=refund.payment_id)
                payment.recompute_refund_totals()
                payment.save()

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _load_pending(payment: Payment, refund_id: Any) -> Refund:
        refund = Refund.objects.select_for_update().filter(pk=refund_id, payment=payment).first()
        if refund is None:
            raise PaymentNotFoundError(
                f"Refund {refund_id} not found for payment {payment.payment_id}",
                details={"refund_id": str(refund_id), "payment_id": str(payment.pk)},
            )
        if refund.status != RefundStatus.PENDING:
            raise AlreadyProcessedError(
                f"Refund has already been {refund.status}",
                details={"refund_id": str(refund.pk), "status": refund.status},
            )
        return refund

    @staticmethod
    def _check_refundable(payment: Payment, amount_cents: int) -> int:
        """Return the unrefunded balance, or raise if ``amount_cents`` does not fit."""
        available = payment.available_refund_cents
        if payment.refund_status == RefundAggregateStatus.FULL or available == 0:
            raise AlreadyRefundedError(
                "Payment has already been fully refunded",
                details={"payment_id": str(payment.pk)},
            )
        if amount_cents > available:
            raise AmountExceedsRefundableError(
                f"Refund amount exceeds the refundable balance of {available}",
                details={
                    "requested_amount": amount_cents,
                    "available_amount": available,
                },
            )
        return available

    @staticmethod
    def _queue_refund_email(refund: Refund) -> None:
        from payments.tasks import send_refund_confirmation_email

        try:
            send_refund_confirmation_email.delay(str(refund.pk))
        except Exception:
            logger.exception(
                "Failed to queue refund confirmation email",
                extra={"refund_id": str(refund.pk)},
            )


__all__ = [
    "REFUND_LOCK_TIMEOUT",
    "REFUND_LOCK_TTL",
    "RefundProcessOutcome",
    "RefundService",
]
