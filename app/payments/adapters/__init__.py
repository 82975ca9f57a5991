"""
Processor adapters.

One adapter per supported processor, all implementing ProcessorAdapter.
Use payments.registry.ProcessorRegistry to obtain cached instances bound
to a ProcessorConfiguration; build_adapter() constructs an uncached one.

Usage:
    from payments.adapters import ChargeRequest, build_adapter, ProcessorCredentials

    adapter = build_adapter(ProcessorCredentials.from_settings("stripe"))
"""

from payments.adapters.base import (
    CardFingerprint,
    ChargeRequest,
    ChargeResult,
    HealthCheckResult,
    IdempotencyKeyGenerator,
    PaymentView,
    ProcessorAdapter,
    ProcessorCredentials,
    RefundResult,
    RefundView,
    backoff_delay,
    is_retryable_processor_error,
)
from payments.adapters.clover_adapter import CloverAdapter
from payments.adapters.paypal_adapter import PayPalAdapter
from payments.adapters.square_adapter import SquareAdapter
from payments.adapters.stripe_adapter import StripeAdapter
from payments.exceptions import ConfigurationError
from payments.state_machines import ProcessorKind

ADAPTER_CLASSES: dict[str, type[ProcessorAdapter]] = {
    ProcessorKind.SQUARE: SquareAdapter,
    ProcessorKind.CLOVER: CloverAdapter,
    ProcessorKind.STRIPE: StripeAdapter,
    ProcessorKind.PAYPAL: PayPalAdapter,
}


def build_adapter(credentials: ProcessorCredentials) -> ProcessorAdapter:
    """Instantiate the adapter for ``credentials.kind``."""
    adapter_class = ADAPTER_CLASSES.get(credentials.kind)
    if adapter_class is None:
        raise ConfigurationError(
            f"Unsupported processor: {credentials.kind}",
            details={"processor": credentials.kind},
        )
    return adapter_class(credentials)


__all__ = [
    "ADAPTER_CLASSES",
    "build_adapter",
    "CardFingerprint",
    "ChargeRequest",
    "ChargeResult",
    "CloverAdapter",
    "HealthCheckResult",
    "IdempotencyKeyGenerator",
    "PaymentView",
    "PayPalAdapter",
    "ProcessorAdapter",
    "ProcessorCredentials",
    "RefundResult",
    "RefundView",
    "SquareAdapter",
    "StripeAdapter",
    "backoff_delay",
    "is_retryable_processor_error",
]
