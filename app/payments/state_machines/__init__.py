"""
State machine enums for payment models.

This module defines the closed status sets used by payment models with
django-fsm and by the processor adapters.
"""

from payments.state_machines.states import (
    ChargeState,
    Currency,
    PaymentStatus,
    ProcessorEnvironment,
    ProcessorKind,
    RefundAction,
    RefundAggregateStatus,
    RefundSource,
    RefundStatus,
)

__all__ = [
    "ChargeState",
    "Currency",
    "PaymentStatus",
    "ProcessorEnvironment",
    "ProcessorKind",
    "RefundAction",
    "RefundAggregateStatus",
    "RefundSource",
    "RefundStatus",
]
