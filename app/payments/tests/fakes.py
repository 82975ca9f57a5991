"""
In-memory processor adapter for payment tests.

FakeProcessorAdapter implements the adapter capabilities without network
access. Tests install it through the registry's adapter factory (see the
``fake_adapter`` fixture) and then script its behaviour:

    fake_adapter.charge_error = ProcessorDeclinedError("Card declined", processor="square")
    fake_adapter.add_remote_refund("sq_pay_000001", 2500)
"""

from __future__ import annotations

import itertools
from datetime import datetime

from django.utils import timezone

from payments.adapters import (
    CardFingerprint,
    ChargeRequest,
    ChargeResult,
    HealthCheckResult,
    PaymentView,
    RefundResult,
    RefundView,
)
from payments.exceptions import PaymentNotFoundError
from payments.state_machines import PaymentStatus, RefundStatus


class FakeProcessorAdapter:
    """
    Scriptable stand-in for a processor account.

    Charges are replayed per idempotency key the way real processors do:
    the same key returns the original payment instead of charging again.
    """

    def __init__(self, kind: str = "square"):
        self.kind = kind
        self.built_with = []

        # Scripted behaviour
        self.charge_error: Exception | None = None
        self.charge_status = PaymentStatus.COMPLETED
        self.refund_error: Exception | None = None
        self.refund_status = RefundStatus.COMPLETED
        self.list_error: Exception | None = None
        self.health = HealthCheckResult(
            ok=True,
            processor=kind,
            environment="sandbox",
            message="Connection successful",
            duration_ms=12.5,
        )

        # Recorded calls
        self.charge_calls: list[ChargeRequest] = []
        self.refund_calls: list[dict] = []
        self.list_calls: list[dict] = []

        self._payments: dict[str, ChargeResult] = {}
        self._by_idempotency_key: dict[str, ChargeResult] = {}
        self._remote_refunds: dict[str, list[RefundView]] = {}
        self._sequence = itertools.count(1)

    # =========================================================================
    # Capabilities
    # =========================================================================

    def charge(self, request: ChargeRequest) -> ChargeResult:
        self.charge_calls.append(request)
        if self.charge_error is not None:
            raise self.charge_error

        replay = self._by_idempotency_key.get(request.idempotency_key)
        if replay is not None:
            return replay

        n = next(self._sequence)
        result = ChargeResult(
            external_id=f"{self.kind}_pay_fake_{n}",
            status=self.charge_status,
            raw_status="COMPLETED" if self.charge_status == PaymentStatus.COMPLETED else "PENDING",
            amount_cents=request.amount_cents,
            currency=request.currency,
            order_id=f"{self.kind}_order_fake_{n}",
            receipt_url=f"https://receipts.example.com/{n}",
            card=CardFingerprint(brand="VISA", last4="1111", exp_month=11, exp_year=2031),
            processed_at=timezone.now(),
        )
        self._by_idempotency_key[request.idempotency_key] = result
        self._payments[result.external_id] = result
        return result

    def refund(
        self,
        external_payment_id: str,
        amount_cents: int,
        reason: str,
        idempotency_key: str | None = None,
        currency: str | None = None,
    ) -> RefundResult:
        self.refund_calls.append(
            {
                "payment_id": external_payment_id,
                "amount_cents": amount_cents,
                "reason": reason,
                "idempotency_key": idempotency_key,
                "currency": currency,
            }
        )
        if self.refund_error is not None:
            raise self.refund_error

        refund_id = f"{self.kind}_ref_fake_{next(self._sequence)}"
        if self.refund_status == RefundStatus.COMPLETED:
            self.add_remote_refund(external_payment_id, amount_cents, refund_id=refund_id)
        return RefundResult(
            external_refund_id=refund_id,
            status=self.refund_status,
            raw_status=self.refund_status.upper(),
            amount_cents=amount_cents,
        )

    def fetch_payment(self, external_payment_id: str) -> PaymentView:
        result = self._payments.get(external_payment_id)
        if result is None:
            raise PaymentNotFoundError(f"Payment {external_payment_id} not found at {self.kind}")
        return PaymentView(
            external_id=result.external_id,
            status=result.status,
            raw_status=result.raw_status,
            amount_cents=result.amount_cents,
            currency=result.currency,
            order_id=result.order_id,
            card=result.card,
            receipt_url=result.receipt_url,
            created_at=result.processed_at,
        )

    def list_refunds(
        self,
        payment_id: str | None = None,
        begin_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> list[RefundView]:
        self.list_calls.append({"payment_id": payment_id, "begin_time": begin_time, "end_time": end_time})
        if self.list_error is not None:
            raise self.list_error
        if payment_id:
            return list(self._remote_refunds.get(payment_id, []))
        return [view for views in self._remote_refunds.values() for view in views]

    def health_check(self) -> HealthCheckResult:
        return self.health

    # =========================================================================
    # Scripting Helpers
    # =========================================================================

    def add_remote_refund(
        self,
        payment_id: str,
        amount_cents: int,
        status: str = RefundStatus.COMPLETED,
        refund_id: str | None = None,
        reason: str = "",
    ) -> RefundView:
        """Record a refund the processor knows about (e.g. issued from its dashboard)."""
        view = RefundView(
            external_refund_id=refund_id or f"{self.kind}_dash_ref_{next(self._sequence)}",
            external_payment_id=payment_id,
            amount_cents=amount_cents,
            status=status,
            raw_status=status.upper(),
            reason=reason,
            created_at=timezone.now(),
        )
        self._remote_refunds.setdefault(payment_id, []).append(view)
        return view

    def remember_payment(self, result: ChargeResult) -> None:
        self._payments[result.external_id] = result
