"""
Processor adapter contract shared by every payment processor.

An adapter wraps one processor account (one ProcessorConfiguration, or the
environment fallback) and exposes the same five capabilities regardless of
vendor:

    charge(request)                      -> ChargeResult
    refund(external_payment_id, ...)     -> RefundResult
    fetch_payment(external_payment_id)   -> PaymentView
    list_refunds(payment_id=..., ...)    -> list[RefundView]
    health_check()                       -> HealthCheckResult

Adapters translate the processor's status strings into the local closed
sets (PaymentStatus, RefundStatus) and map SDK/HTTP errors to the shared
taxonomy in payments.exceptions inside a single ``_handle_error`` helper.
Nothing outside payments.adapters sees a vendor type or status string.

Usage:
    from payments.adapters import ChargeRequest, IdempotencyKeyGenerator
    from payments.registry import ProcessorRegistry

    adapter = ProcessorRegistry.get_adapter(config)
    result = adapter.charge(
        ChargeRequest(
            source_token="cnon:card-nonce-ok",
            amount_cents=12500,
            currency="USD",
            buyer_email="parent@example.com",
            idempotency_key=IdempotencyKeyGenerator.generate("charge"),
        )
    )
"""

from __future__ import annotations

import itertools
import logging
import random
import secrets
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, TypeVar

from django.conf import settings

from payments.exceptions import (
    ConfigurationError,
    PaymentError,
    ProcessorUnavailableError,
)
from payments.models.processor_configuration import REQUIRED_CREDENTIALS
from payments.state_machines import (
    Currency,
    PaymentStatus,
    ProcessorEnvironment,
    RefundStatus,
)

if TYPE_CHECKING:
    from payments.models import ProcessorConfiguration

T = TypeVar("T")


# =============================================================================
# Credentials
# =============================================================================


@dataclass(frozen=True)
class ProcessorCredentials:
    """
    Credentials and global settings one adapter instance is bound to.

    Built from a persisted ProcessorConfiguration, or from settings when a
    ledger entry's configuration no longer exists.

    Attributes:
        kind: Processor kind (square, clover, stripe, paypal)
        environment: sandbox or production
        access_token: Access token, API token, secret key or client secret
        application_id: Public application id, publishable key or client id
        location_id: Square location id
        merchant_id: Clover merchant id
        webhook_signature_key: Webhook signing key
        currency: Charge currency
        configuration_id: Source configuration (None for env credentials)
        version: Source configuration version (None for env credentials)
    """

    kind: str
    environment: str = ProcessorEnvironment.SANDBOX
    access_token: str = ""
    application_id: str = ""
    location_id: str = ""
    merchant_id: str = ""
    webhook_signature_key: str = ""
    currency: str = Currency.USD
    configuration_id: str | None = None
    version: int | None = None

    @classmethod
    def from_configuration(cls, config: ProcessorConfiguration) -> ProcessorCredentials:
        return cls(
            kind=config.kind,
            environment=config.environment,
            access_token=config.access_token,
            application_id=config.application_id,
            location_id=config.location_id,
            merchant_id=config.merchant_id,
            webhook_signature_key=config.webhook_signature_key,
            currency=config.currency,
            configuration_id=str(config.pk),
            version=config.version,
        )

    @classmethod
    def from_settings(cls, kind: str) -> ProcessorCredentials:
        """
        Read credentials for ``kind`` from settings (environment variables).

        Used only when a ledger entry's configuration was deleted and no
        active configuration of the same kind exists.
        """
        env_fields = {
            "square": {
                "access_token": "SQUARE_ACCESS_TOKEN",
                "application_id": "SQUARE_APPLICATION_ID",
                "location_id": "SQUARE_LOCATION_ID",
                "environment": "SQUARE_ENVIRONMENT",
            },
            "clover": {
                "access_token": "CLOVER_ACCESS_TOKEN",
                "merchant_id": "CLOVER_MERCHANT_ID",
                "environment": "CLOVER_ENVIRONMENT",
            },
            "stripe": {
                "access_token": "STRIPE_SECRET_KEY",
                "application_id": "STRIPE_PUBLISHABLE_KEY",
            },
            "paypal": {
                "application_id": "PAYPAL_CLIENT_ID",
                "access_token": "PAYPAL_CLIENT_SECRET",
                "environment": "PAYPAL_ENVIRONMENT",
            },
        }.get(kind, {})

        values = {name: getattr(settings, setting, "") or "" for name, setting in env_fields.items()}
        if not values.get("environment"):
            values["environment"] = ProcessorEnvironment.SANDBOX
        return cls(
            kind=kind,
            currency=getattr(settings, "PAYMENT_DEFAULT_CURRENCY", Currency.USD),
            **values,
        )

    def missing(self) -> list[str]:
        """Names of the credentials this kind requires but lacks."""
        return [name for name in REQUIRED_CREDENTIALS.get(self.kind, ()) if not getattr(self, name)]

    @property
    def is_production(self) -> bool:
        return self.environment == ProcessorEnvironment.PRODUCTION


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class ChargeRequest:
    """
    Canonical charge request.

    Attributes:
        source_token: Opaque one-time token from the processor's browser SDK
        amount_cents: Amount in smallest currency unit (e.g., cents)
        currency: ISO 4217 currency code
        buyer_email: Receipt address
        idempotency_key: Unique key for this call attempt
        buyer_reference: Caller reference attached to the charge (parent id)
        note: Free-form description shown in the processor dashboard
        metadata: Key-value pairs forwarded where the processor supports them
    """

    source_token: str
    amount_cents: int
    currency: str
    buyer_email: str
    idempotency_key: str
    buyer_reference: str = ""
    note: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if not self.source_token:
            raise ValueError("source_token is required")
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.currency:
            raise ValueError("currency is required")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")


@dataclass
class CardFingerprint:
    """Non-sensitive card description returned by the processor."""

    brand: str = ""
    last4: str = ""
    exp_month: int | None = None
    exp_year: int | None = None


@dataclass
class ChargeResult:
    """
    Canonical charge outcome.

    Attributes:
        external_id: Processor payment id
        status: Local PaymentStatus (completed, pending or failed)
        raw_status: Processor status string as received
        amount_cents: Charged amount
        currency: Currency code
        order_id: Processor order id, if the processor uses orders
        receipt_url: Processor receipt link, if any
        card: Card fingerprint, if the processor returned one
        processed_at: Processor completion time, if reported
        raw_response: Processor response (for debugging, never persisted)
    """

    external_id: str
    status: str
    raw_status: str
    amount_cents: int
    currency: str
    order_id: str = ""
    receipt_url: str = ""
    card: CardFingerprint | None = None
    processed_at: datetime | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == PaymentStatus.COMPLETED


@dataclass
class RefundResult:
    """
    Canonical refund outcome.

    Attributes:
        external_refund_id: Processor refund id
        status: Local RefundStatus (completed, pending or failed)
        raw_status: Processor status string as received
        amount_cents: Refunded amount
        raw_response: Processor response (for debugging, never persisted)
    """

    external_refund_id: str
    status: str
    raw_status: str
    amount_cents: int
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentView:
    """Remote view of a payment: amount, status and refund totals."""

    external_id: str
    status: str
    raw_status: str
    amount_cents: int
    currency: str
    refunded_amount_cents: int = 0
    order_id: str = ""
    card: CardFingerprint | None = None
    receipt_url: str = ""
    created_at: datetime | None = None


@dataclass
class RefundView:
    """Remote view of one refund."""

    external_refund_id: str
    external_payment_id: str
    amount_cents: int
    status: str
    raw_status: str
    reason: str = ""
    created_at: datetime | None = None


@dataclass
class HealthCheckResult:
    """
    Outcome of a non-mutating connectivity check.

    Attributes:
        ok: Whether the processor accepted our credentials and answered
        processor: Processor kind checked
        environment: sandbox or production
        message: Human-readable summary
        details: Processor-specific facts (location count, merchant name, ...)
        duration_ms: Check duration
    """

    ok: bool
    processor: str
    environment: str = ""
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "processor": self.processor,
            "environment": self.environment,
            "message": self.message,
            "details": self.details,
            "durationMs": round(self.duration_ms, 1),
        }


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate a fresh idempotency key for every processor call attempt.

    Format: "{operation}-{random hex}-{monotonic ns}-{sequence}"

    The random component comes from ``secrets``; the monotonic marker and
    the per-process sequence keep two keys generated in the same instant
    distinct. Processors cap key length at 45 (Square) to 255 characters,
    so keys are truncated to 45.

    Example:
        key = IdempotencyKeyGenerator.generate("refund")
        # Result: "refund-9f1c2e4a7b3d5c6e-183746529384-17"
    """

    MAX_LENGTH = 45

    _sequence = itertools.count(1)
    _sequence_lock = threading.Lock()

    @classmethod
    def generate(cls, operation: str) -> str:
        """
        Generate a unique idempotency key.

        Args:
            operation: The processor operation (charge, refund, ...)

        Returns:
            Idempotency key string
        """
        with cls._sequence_lock:
            sequence = next(cls._sequence)
        key = f"{operation}-{secrets.token_hex(8)}-{time.monotonic_ns()}-{sequence}"
        return key[: cls.MAX_LENGTH]


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def is_retryable_processor_error(error: Exception) -> bool:
    """
    Check if a processor error is transient.

    Use this in Celery tasks to decide whether to retry:

        @shared_task(bind=True, max_retries=3)
        def sync_payment_refunds(self, payment_id):
            try:
                ReconciliationService.sync_one(payment_id)
            except Exception as e:
                if is_retryable_processor_error(e):
                    raise self.retry(exc=e, countdown=backoff_delay(self.request.retries))
                raise
    """
    return bool(getattr(error, "is_retryable", False))


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


# =============================================================================
# Adapter Contract
# =============================================================================


class ProcessorAdapter(ABC):
    """
    Base class for processor adapters.

    Subclasses set ``kind`` and the two status maps, implement the five
    capabilities and ``_handle_error``. Instances are cached per
    configuration version by the registry and shared across threads, so
    they must not keep per-call state.
    """

    kind: str = ""

    # Processor status (upper-cased) -> local status
    PAYMENT_STATUS_MAP: dict[str, str] = {}
    REFUND_STATUS_MAP: dict[str, str] = {}

    def __init__(self, credentials: ProcessorCredentials, timeout: float | None = None):
        if credentials.kind != self.kind:
            raise ConfigurationError(
                f"{type(self).__name__} cannot use {credentials.kind} credentials",
                details={"processor": self.kind},
            )
        missing = credentials.missing()
        if missing:
            raise ConfigurationError(
                f"Missing {self.kind} credentials: {', '.join(missing)}",
                details={"processor": self.kind, "missing": missing},
            )
        self.credentials = credentials
        self.timeout = timeout or getattr(settings, "PAYMENT_PROCESSOR_TIMEOUT_SECONDS", 30)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(configuration={self.credentials.configuration_id}, "
            f"environment={self.credentials.environment})"
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Capabilities
    # =========================================================================

    @abstractmethod
    def charge(self, request: ChargeRequest) -> ChargeResult:
        """Charge a source token. Raises a ProcessorError subclass on failure."""

    @abstractmethod
    def refund(
        self,
        external_payment_id: str,
        amount_cents: int,
        reason: str,
        idempotency_key: str | None = None,
        currency: str | None = None,
    ) -> RefundResult:
        """
        Refund part or all of a payment.

        ``currency`` is the currency the payment was taken in; it defaults to
        the configuration currency. Processors that infer the currency from
        the original charge ignore it.
        """

    @abstractmethod
    def fetch_payment(self, external_payment_id: str) -> PaymentView:
        """Fetch the processor's view of a payment."""

    @abstractmethod
    def list_refunds(
        self,
        payment_id: str | None = None,
        begin_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> list[RefundView]:
        """List refunds by payment id and/or creation window."""

    @abstractmethod
    def health_check(self) -> HealthCheckResult:
        """Non-mutating check of credentials and connectivity."""

    @abstractmethod
    def _handle_error(
        self,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """Translate a vendor exception into the shared taxonomy. Always raises."""

    # =========================================================================
    # Status Translation
    # =========================================================================

    def map_payment_status(self, raw_status: str | None) -> str:
        """Local PaymentStatus for a processor payment status (unknown -> pending)."""
        return self.PAYMENT_STATUS_MAP.get((raw_status or "").upper(), PaymentStatus.PENDING)

    def map_refund_status(self, raw_status: str | None) -> str:
        """Local RefundStatus for a processor refund status (unknown -> pending)."""
        return self.REFUND_STATUS_MAP.get((raw_status or "").upper(), RefundStatus.PENDING)

    # =========================================================================
    # Call Wrapper
    # =========================================================================

    def _call(self, operation: str, log_context: dict[str, Any], func: Callable[[], T]) -> T:
        """
        Run one processor call with timing, structured logging and error
        translation.

        Errors already in the shared taxonomy pass through untouched.
        """
        logger = self.get_logger()
        log_context = {
            "operation": operation,
            "processor": self.kind,
            "configuration_id": self.credentials.configuration_id,
            **log_context,
        }

        start_time = time.time()
        logger.info(f"Starting {self.kind} operation", extra=log_context)

        try:
            result = func()
        except PaymentError:
            raise
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_error(e, log_context, duration_ms)
            raise ProcessorUnavailableError(
                f"Unexpected {self.kind} error: {e}",
                processor=self.kind,
                processor_code="unknown_error",
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"{self.kind} operation completed",
            extra={**log_context, "duration_ms": duration_ms},
        )
        return result

    def _unexpected_error(
        self,
        error: Exception,
        log_context: dict[str, Any],
    ) -> ProcessorUnavailableError:
        """Log and wrap an error no specific mapping covers."""
        self.get_logger().error(
            f"Unexpected error from {self.kind}: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        return ProcessorUnavailableError(
            f"Unexpected {self.kind} error: {error}",
            processor=self.kind,
            processor_code="unknown_error",
        )


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (or pass through a datetime)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def to_minor_units(value: Any) -> int:
    """Convert a decimal string such as "12.50" to minor units (1250)."""
    return int((Decimal(str(value)) * 100).quantize(Decimal("1")))


__all__ = [
    "ProcessorCredentials",
    "ChargeRequest",
    "CardFingerprint",
    "ChargeResult",
    "RefundResult",
    "PaymentView",
    "RefundView",
    "HealthCheckResult",
    "IdempotencyKeyGenerator",
    "is_retryable_processor_error",
    "backoff_delay",
    "ProcessorAdapter",
    "parse_timestamp",
    "to_minor_units",
]
