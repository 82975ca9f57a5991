"""
Payment domain models.

- ProcessorConfiguration: Persisted processor accounts and the default flag
- Payment: Ledger entry for one processor charge
- Refund: Refund record attached to a ledger entry
- ReconciliationRun: History of refund sync runs
"""

from payments.models.payment import Payment, cents_to_decimal
from payments.models.processor_configuration import (
    REQUIRED_CREDENTIALS,
    ProcessorConfiguration,
)
from payments.models.reconciliation import (
    ReconciliationRun,
    ReconciliationRunStatus,
    ReconciliationScope,
)
from payments.models.refund import Refund

__all__ = [
    "Payment",
    "ProcessorConfiguration",
    "REQUIRED_CREDENTIALS",
    "ReconciliationRun",
    "ReconciliationRunStatus",
    "ReconciliationScope",
    "Refund",
    "cents_to_decimal",
]
