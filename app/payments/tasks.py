"""
Celery tasks for payment processing.

This module provides async tasks for:
- Daily refund reconciliation across all open ledger entries
- Ad hoc refund sync for one ledger entry
- Receipt and refund confirmation emails (queued after commit)

Usage:
    from payments.tasks import sync_payment_refunds

    # Queue a single-payment refund sync
    sync_payment_refunds.delay("sq_pay_123")

    # Full sync (scheduled daily by django-celery-beat)
    from payments.tasks import sync_all_refunds
    sync_all_refunds.delay()
"""

from __future__ import annotations

import logging

from celery import shared_task

from payments.adapters import backoff_delay, is_retryable_processor_error
from payments.exceptions import ReconciliationLockError
from payments.models import Payment, Refund
from payments.services import ReconciliationService
from toolkit.helpers import format_minor_units
from toolkit.services.email import EmailService

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_SYNC_RETRIES = 3
RECEIPT_SUBJECT = "Payment Confirmation - Basketball Camp"
REFUND_SUBJECT = "Refund Processed - Basketball Camp"


# =============================================================================
# Refund Reconciliation Tasks
# =============================================================================


@shared_task(name="payments.tasks.sync_all_refunds")
def sync_all_refunds() -> dict:
    """
    Import refunds issued outside the site for every open ledger entry.

    Scheduled daily (02:00 by default) through django-celery-beat. A run
    that finds another sync holding the lock is skipped, not retried.
    """
    try:
        summary = ReconciliationService.sync_all()
    except ReconciliationLockError:
        logger.info("Refund sync skipped, another run holds the lock")
        return {"status": "skipped"}

    return {"status": "completed", **summary.to_dict()}


@shared_task(bind=True, max_retries=MAX_SYNC_RETRIES)
def sync_payment_refunds(self, payment_id: str) -> dict:
    """
    Import processor refunds for one ledger entry.

    Transient processor errors are retried with exponential backoff.
    """
    try:
        result = ReconciliationService.sync_one(payment_id)
    except Exception as e:
        if is_retryable_processor_error(e):
            logger.warning(
                "Refund sync hit a transient processor error, retrying",
                extra={"payment_id": payment_id, "attempt": self.request.retries},
            )
            raise self.retry(exc=e, countdown=backoff_delay(self.request.retries))
        raise

    return {"status": "completed" if result.found else "not_found", **result.to_dict()}


# =============================================================================
# Email Tasks
# =============================================================================


@shared_task
def send_payment_receipt_email(payment_id: str) -> dict:
    """Send the charge receipt to the buyer. Failures are logged only."""
    payment = Payment.objects.filter(pk=payment_id).first()
    if payment is None:
        logger.error("Payment not found for receipt email", extra={"payment_id": payment_id})
        return {"status": "not_found", "payment_id": payment_id}

    sent = EmailService.send(
        to=payment.buyer_email,
        subject=RECEIPT_SUBJECT,
        template_name="emails/payment_receipt",
        context={
            "processor_name": payment.get_processor_display(),
            "amount": format_minor_units(payment.amount_cents, payment.currency),
            "description": (payment.metadata or {}).get("description", ""),
            "player_count": payment.players.count(),
            "payment_id": payment.payment_id,
            "order_id": payment.order_id,
            "paid_at": payment.processed_at or payment.created_at,
            "receipt_url": payment.receipt_url,
        },
    )
    return {"status": "sent" if sent else "failed", "payment_id": payment_id}


@shared_task
def send_refund_confirmation_email(refund_id: str) -> dict:
    """Tell the buyer a refund was issued. Failures are logged only."""
    refund = Refund.objects.select_related("payment").filter(pk=refund_id).first()
    if refund is None:
        logger.error("Refund not found for confirmation email", extra={"refund_id": refund_id})
        return {"status": "not_found", "refund_id": refund_id}

    payment = refund.payment
    sent = EmailService.send(
        to=payment.buyer_email,
        subject=REFUND_SUBJECT,
        template_name="emails/refund_confirmation",
        context={
            "original_amount": format_minor_units(payment.amount_cents, payment.currency),
            "refund_amount": format_minor_units(refund.amount_cents, payment.currency),
            "reason": refund.reason,
            "refund_id": refund.external_refund_id or str(refund.pk),
            "payment_id": payment.payment_id,
            "processed_at": refund.processed_at or refund.updated_at,
        },
    )
    return {"status": "sent" if sent else "failed", "refund_id": refund_id}
