"""
State enums for payment models.

These are Django TextChoices for database storage and admin integration.
Processor adapters translate every processor-specific status string into
one of these closed sets; raw processor statuses are never persisted as
a status.

State Machines Overview:

Charge (in memory only, never persisted):
    new → submitted → completed | failed

Payment (ledger entry):
    created as completed; refund activity is tracked separately through
    RefundAggregateStatus

RefundRecord:
    pending → completed | failed | rejected (all terminal)
"""

from django.db import models


class ProcessorKind(models.TextChoices):
    """Supported external payment processors."""

    SQUARE = "square", "Square"
    CLOVER = "clover", "Clover"
    STRIPE = "stripe", "Stripe"
    PAYPAL = "paypal", "PayPal"


class ProcessorEnvironment(models.TextChoices):
    """Processor environment a configuration points at."""

    SANDBOX = "sandbox", "Sandbox"
    PRODUCTION = "production", "Production"


class Currency(models.TextChoices):
    """Currencies a configuration may charge in."""

    USD = "USD", "US Dollar"
    CAD = "CAD", "Canadian Dollar"
    EUR = "EUR", "Euro"
    GBP = "GBP", "British Pound"


class ChargeState(models.TextChoices):
    """
    Lifecycle of a single charge attempt.

    SUBMITTED exists only while the adapter call is in flight.
    """

    NEW = "new", "New"
    SUBMITTED = "submitted", "Submitted"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class PaymentStatus(models.TextChoices):
    """
    Status of a ledger entry.

    Adapters map processor statuses here (Square COMPLETED, Clover PAID or
    AUTHORIZED, Stripe succeeded, PayPal COMPLETED all become COMPLETED).
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"


class RefundStatus(models.TextChoices):
    """
    Status of a single refund record.

    Terminal states: COMPLETED, FAILED, REJECTED
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    REJECTED = "rejected", "Rejected"


class RefundAggregateStatus(models.TextChoices):
    """
    Refund state of a ledger entry, derived from its refund records.

    NONE: nothing refunded
    PARTIAL: 0 < refunded < amount
    FULL: refunded == amount
    PROCESSING: pending requests would cover the remaining balance
    """

    NONE = "none", "None"
    PARTIAL = "partial", "Partial"
    FULL = "full", "Full"
    PROCESSING = "processing", "Processing"


class RefundSource(models.TextChoices):
    """Where a refund record originated."""

    WEB = "web", "Web"
    ADMIN_DASHBOARD = "admin_dashboard", "Admin Dashboard"
    API = "api", "API"
    PROCESSOR_DASHBOARD = "processor_dashboard", "Processor Dashboard"


class RefundAction(models.TextChoices):
    """Admin decision on a pending refund."""

    APPROVE = "approve", "Approve"
    REJECT = "reject", "Reject"
