"""
Payment-specific exceptions for charge, refund and reconciliation operations.

Every processor adapter maps its SDK/HTTP errors to this shared taxonomy at
the adapter boundary. Orchestrators propagate these exceptions unchanged;
the DRF exception handler renders them using ``error_code`` and
``http_status``.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentValidationError - VALIDATION (400)
    ├── PaymentNotFoundError - PAYMENT_NOT_FOUND (404)
    ├── ConfigurationError - CONFIGURATION_ERROR (400)
    ├── RefundConflictError (400)
    │   ├── AlreadyRefundedError - ALREADY_REFUNDED
    │   ├── RefundAlreadyPendingError - REFUND_ALREADY_PENDING
    │   └── AmountExceedsRefundableError - AMOUNT_EXCEEDS_REFUNDABLE
    └── ProcessorError - Base for errors reported by a processor
        ├── ProcessorDeclinedError - PROCESSOR_DECLINED (402, permanent)
        ├── ProcessorAuthenticationError - CONFIGURATION_ERROR (503, permanent)
        ├── ProcessorUnavailableError - PROCESSOR_UNAVAILABLE (503, retryable)
        │   ├── ProcessorRateLimitError (503, retryable)
        │   └── ProcessorTimeoutError (408, retryable)
        ├── DuplicateChargeError - DUPLICATE (409)
        └── IndeterminateOutcomeError - INDETERMINATE (500)
    AlreadyProcessedError - ALREADY_PROCESSED (409, inherits ConflictError)
    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    ReconciliationLockError - A refund sync run is already in progress

Usage:
    from payments.exceptions import ProcessorDeclinedError

    raise ProcessorDeclinedError(
        "Card declined",
        processor="square",
        processor_code="CARD_DECLINED",
        reason="card_declined",
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    Example:
        try:
            ChargeService.charge(charge_input)
        except PaymentError as e:
            logger.warning(f"Charge failed: {e}")
            raise
    """

    default_error_code: str = "PAYMENT_ERROR"
    http_status: int = 500


class PaymentValidationError(PaymentError):
    """
    Raised when charge or refund inputs fail their preconditions.

    Use for:
    - Non-positive amounts
    - Malformed buyer email
    - Players not owned by the paying parent
    - Invalid refund action
    """

    default_error_code: str = "VALIDATION"
    http_status: int = 400


class PaymentNotFoundError(PaymentError):
    """
    Raised when a ledger entry or refund record is unknown, locally or at
    the processor.

    Example:
        payment = Payment.objects.filter(payment_id=external_id).first()
        if not payment:
            raise PaymentNotFoundError(
                f"Payment {external_id} not found",
                details={"payment_id": external_id},
            )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"
    http_status: int = 404


class ConfigurationError(PaymentError):
    """
    Raised when no usable processor configuration exists.

    Use for:
    - No active ProcessorConfiguration
    - Credentials missing for the configuration's processor kind
    - Deleting the last active configuration
    - A deleted configuration whose processor cannot be resolved otherwise
    """

    default_error_code: str = "CONFIGURATION_ERROR"
    http_status: int = 400


# -----------------------------------------------------------------------------
# Refund conflicts (client errors, 400)
# -----------------------------------------------------------------------------


class RefundConflictError(PaymentError):
    """Base for refund requests that conflict with the ledger entry's state."""

    default_error_code: str = "REFUND_CONFLICT"
    http_status: int = 400


class AlreadyRefundedError(RefundConflictError):
    """The ledger entry is already fully refunded."""

    default_error_code: str = "ALREADY_REFUNDED"


class RefundAlreadyPendingError(RefundConflictError):
    """Pending requests already cover the whole unrefunded balance."""

    default_error_code: str = "REFUND_ALREADY_PENDING"


class AmountExceedsRefundableError(RefundConflictError):
    """
    Requested refund exceeds the available balance.

    ``details`` carries requested_amount and available_amount (minor units).
    """

    default_error_code: str = "AMOUNT_EXCEEDS_REFUNDABLE"


# =============================================================================
# Processor Exceptions
# =============================================================================


class ProcessorError(PaymentError):
    """
    Base exception for errors reported by an external processor.

    Attributes:
        processor: Processor kind that raised the error (square, clover, ...)
        processor_code: The processor's own error code, if any
        is_retryable: Whether the same call may be retried with backoff

    Example:
        try:
            adapter.refund(payment.payment_id, 2500, "goodwill")
        except ProcessorError as e:
            if e.is_retryable:
                schedule_retry()
    """

    default_error_code: str = "PROCESSOR_ERROR"
    http_status: int = 502
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        processor: str | None = None,
        processor_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if processor:
            details["processor"] = processor
        if processor_code:
            details["processor_code"] = processor_code
        super().__init__(message, error_code=error_code, details=details)
        self.processor = processor
        self.processor_code = processor_code


class ProcessorDeclinedError(ProcessorError):
    """
    The processor rejected the payment source.

    ``reason`` narrows the decline: card_declined, insufficient_funds or
    invalid_source. Permanent; do not retry with the same token.
    """

    default_error_code: str = "PROCESSOR_DECLINED"
    http_status: int = 402

    def __init__(
        self,
        message: str,
        reason: str = "card_declined",
        **kwargs: Any,
    ):
        details = kwargs.pop("details", None) or {}
        details["reason"] = reason
        super().__init__(message, details=details, **kwargs)
        self.reason = reason


class ProcessorAuthenticationError(ProcessorError):
    """
    The processor refused our credentials.

    Surfaces as CONFIGURATION_ERROR because an admin must fix the
    configuration before any charge can succeed.
    """

    default_error_code: str = "CONFIGURATION_ERROR"
    http_status: int = 503


class ProcessorUnavailableError(ProcessorError):
    """
    Processor is temporarily unreachable (network failure, 5xx).

    Transient; safe to retry with the same idempotency key.
    """

    default_error_code: str = "PROCESSOR_UNAVAILABLE"
    http_status: int = 503
    is_retryable: bool = True


class ProcessorRateLimitError(ProcessorUnavailableError):
    """Rate limited by the processor."""


class ProcessorTimeoutError(ProcessorUnavailableError):
    """
    Processor call did not answer within PAYMENT_PROCESSOR_TIMEOUT_SECONDS.

    The operation may have succeeded remotely. The refund sync converges the
    ledger on its next run.
    """

    http_status: int = 408


class DuplicateChargeError(ProcessorError):
    """
    The processor reported an idempotency collision.

    ``existing_external_id`` holds the processor id of the original charge
    when the processor returned it; the charge orchestrator reuses it to
    finish local persistence.
    """

    default_error_code: str = "DUPLICATE"
    http_status: int = 409

    def __init__(
        self,
        message: str,
        existing_external_id: str | None = None,
        **kwargs: Any,
    ):
        details = kwargs.pop("details", None) or {}
        if existing_external_id:
            details["existing_external_id"] = existing_external_id
        super().__init__(message, details=details, **kwargs)
        self.existing_external_id = existing_external_id


class IndeterminateOutcomeError(ProcessorError):
    """
    The outcome of a processor call is unknown.

    Raised when a charge may have succeeded remotely but could not be
    persisted locally. Requires operator resolution; never retried
    automatically.
    """

    default_error_code: str = "INDETERMINATE"
    http_status: int = 500


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class AlreadyProcessedError(ConflictError):
    """
    Raised when a refund record already left the pending state.

    Two admins processing the same refund: the second one observes the
    first one's transition and receives this error.
    """

    default_error_code: str = "ALREADY_PROCESSED"


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    Attributes:
        details: Contains pk, expected_version, and current_version
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Attributes:
        details: Contains key and timeout information
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class ReconciliationLockError(PaymentError):
    """Raised when a full refund sync is already running elsewhere."""

    default_error_code: str = "RECONCILIATION_IN_PROGRESS"
    http_status: int = 409


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentValidationError",
    "PaymentNotFoundError",
    "ConfigurationError",
    "RefundConflictError",
    "AlreadyRefundedError",
    "RefundAlreadyPendingError",
    "AmountExceedsRefundableError",
    # Processor
    "ProcessorError",
    "ProcessorDeclinedError",
    "ProcessorAuthenticationError",
    "ProcessorUnavailableError",
    "ProcessorRateLimitError",
    "ProcessorTimeoutError",
    "DuplicateChargeError",
    "IndeterminateOutcomeError",
    # Concurrency control
    "AlreadyProcessedError",
    "StaleRecordError",
    "LockAcquisitionError",
    "ReconciliationLockError",
]
