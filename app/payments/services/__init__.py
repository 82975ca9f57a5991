"""
Payment services.

This module provides:
- ProcessorConfigurationService: Admin CRUD and health checks for processors
- ChargeService: Charge a source token and write the ledger entry
- RefundService: Request and process refunds
- ReconciliationService: Import refunds issued outside the club site
- PaymentQueryService: Role-aware read models

Usage:
    from payments.services import ChargeInput, ChargeService

    outcome = ChargeService.charge(ChargeInput(...))

    from payments.services import RefundService

    refund = RefundService.request_refund(payment.pk, 5000, reason="goodwill")
    RefundService.process_refund(payment.pk, refund.pk, "approve", admin=admin)

    from payments.services import ReconciliationService

    summary = ReconciliationService.sync_all()
"""

from payments.services.charge_service import ChargeInput, ChargeOutcome, ChargeService
from payments.services.configuration_service import ProcessorConfigurationService
from payments.services.query_service import PaymentQueryService
from payments.services.reconciliation_service import (
    PaymentSyncResult,
    ReconciliationService,
    SyncSummary,
)
from payments.services.refund_service import RefundProcessOutcome, RefundService

__all__ = [
    "ChargeInput",
    "ChargeOutcome",
    "ChargeService",
    "PaymentQueryService",
    "PaymentSyncResult",
    "ProcessorConfigurationService",
    "ReconciliationService",
    "RefundProcessOutcome",
    "RefundService",
    "SyncSummary",
]
