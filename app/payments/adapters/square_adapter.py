"""
Square adapter.

Charges are a single Payments API call with autocomplete and an
idempotency key; refunds are a single Refunds API call. Square reports
statuses in upper case (COMPLETED, PENDING, ...), which are mapped to the
local closed sets here.

Square SDK errors arrive as ``square.core.api_error.ApiError`` carrying a
list of ``{category, code, detail}`` errors; network failures surface as
httpx exceptions from the SDK's HTTP client.

Usage:
    adapter = SquareAdapter(ProcessorCredentials.from_configuration(config))
    result = adapter.charge(request)
    refunds = adapter.list_refunds(payment_id=result.external_id)
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any

import httpx
from square import Square
from square.core.api_error import ApiError
from square.environment import SquareEnvironment

from payments.adapters.base import (
    CardFingerprint,
    ChargeRequest,
    ChargeResult,
    HealthCheckResult,
    IdempotencyKeyGenerator,
    PaymentView,
    ProcessorAdapter,
    RefundResult,
    RefundView,
    parse_timestamp,
)
from payments.exceptions import (
    AlreadyRefundedError,
    AmountExceedsRefundableError,
    DuplicateChargeError,
    PaymentError,
    PaymentNotFoundError,
    PaymentValidationError,
    ProcessorAuthenticationError,
    ProcessorDeclinedError,
    ProcessorRateLimitError,
    ProcessorTimeoutError,
    ProcessorUnavailableError,
    RefundAlreadyPendingError,
)
from payments.state_machines import PaymentStatus, ProcessorKind, RefundStatus

# Square error codes that mean the source itself was rejected
INVALID_SOURCE_CODES = frozenset(
    {
        "CVV_FAILURE",
        "ADDRESS_VERIFICATION_FAILURE",
        "INVALID_EXPIRATION",
        "INVALID_CARD",
        "INVALID_CARD_DATA",
        "CARD_EXPIRED",
        "CARD_TOKEN_EXPIRED",
        "CARD_TOKEN_USED",
        "INVALID_ACCOUNT",
        "BAD_EXPIRATION",
    }
)


def _money(amount_cents: int, currency: str) -> dict[str, Any]:
    return {"amount": amount_cents, "currency": currency.upper()}


def _amount_of(money: Any) -> int:
    if money is None:
        return 0
    return int(getattr(money, "amount", 0) or 0)


class SquareAdapter(ProcessorAdapter):
    """Adapter for the Square Payments, Refunds and Locations APIs."""

    kind = ProcessorKind.SQUARE

    PAYMENT_STATUS_MAP = {
        "COMPLETED": PaymentStatus.COMPLETED,
        "APPROVED": PaymentStatus.PENDING,
        "PENDING": PaymentStatus.PENDING,
        "CANCELED": PaymentStatus.FAILED,
        "FAILED": PaymentStatus.FAILED,
    }
    REFUND_STATUS_MAP = {
        "COMPLETED": RefundStatus.COMPLETED,
        "PENDING": RefundStatus.PENDING,
        "REJECTED": RefundStatus.FAILED,
        "FAILED": RefundStatus.FAILED,
    }

    def __init__(self, credentials, timeout=None):
        super().__init__(credentials, timeout)
        self._client = self._build_client()

    def _build_client(self) -> Square:
        environment = (
            SquareEnvironment.PRODUCTION
            if self.credentials.is_production
            else SquareEnvironment.SANDBOX
        )
        return Square(
            token=self.credentials.access_token,
            environment=environment,
            timeout=self.timeout,
        )

    # =========================================================================
    # Capabilities
    # =========================================================================

    def charge(self, request: ChargeRequest) -> ChargeResult:
        log_context = {
            "amount_cents": request.amount_cents,
            "currency": request.currency,
            "idempotency_key": request.idempotency_key,
            "buyer_reference": request.buyer_reference,
        }

        def _create():
            response = self._client.payments.create(
                source_id=request.source_token,
                idempotency_key=request.idempotency_key,
                amount_money=_money(request.amount_cents, request.currency),
                autocomplete=True,
                location_id=self.credentials.location_id,
                buyer_email_address=request.buyer_email or None,
                reference_id=request.buyer_reference[:40] or None,
                note=request.note[:500] or None,
            )
            return response.payment

        payment = self._call("charge", log_context, _create)
        raw_status = payment.status or ""
        return ChargeResult(
            external_id=payment.id,
            status=self.map_payment_status(raw_status),
            raw_status=raw_status,
            amount_cents=_amount_of(payment.amount_money),
            currency=getattr(payment.amount_money, "currency", request.currency) or request.currency,
            order_id=payment.order_id or "",
            receipt_url=payment.receipt_url or "",
            card=self._card_of(payment),
            processed_at=parse_timestamp(payment.updated_at or payment.created_at),
        )

    def refund(
        self,
        external_payment_id: str,
        amount_cents: int,
        reason: str,
        idempotency_key: str | None = None,
        currency: str | None = None,
    ) -> RefundResult:
        idempotency_key = idempotency_key or IdempotencyKeyGenerator.generate("refund")
        log_context = {
            "payment_id": external_payment_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }

        def _refund():
            response = self._client.refunds.refund_payment(
                idempotency_key=idempotency_key,
                payment_id=external_payment_id,
                amount_money=_money(amount_cents, currency or self.credentials.currency),
                reason=(reason or "")[:192] or None,
            )
            return response.refund

        refund = self._call("refund", log_context, _refund)
        raw_status = refund.status or ""
        return RefundResult(
            external_refund_id=refund.id,
            status=self.map_refund_status(raw_status),
            raw_status=raw_status,
            amount_cents=_amount_of(refund.amount_money),
        )

    def fetch_payment(self, external_payment_id: str) -> PaymentView:
        payment = self._call(
            "fetch_payment",
            {"payment_id": external_payment_id},
            lambda: self._client.payments.get(payment_id=external_payment_id).payment,
        )
        raw_status = payment.status or ""
        return PaymentView(
            external_id=payment.id,
            status=self.map_payment_status(raw_status),
            raw_status=raw_status,
            amount_cents=_amount_of(payment.amount_money),
            currency=getattr(payment.amount_money, "currency", "") or self.credentials.currency,
            refunded_amount_cents=_amount_of(payment.refunded_money),
            order_id=payment.order_id or "",
            card=self._card_of(payment),
            receipt_url=payment.receipt_url or "",
            created_at=parse_timestamp(payment.created_at),
        )

    def list_refunds(
        self,
        payment_id: str | None = None,
        begin_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> list[RefundView]:
        """
        List refunds.

        With ``payment_id`` the payment's refund ids are resolved one by one
        (the list endpoint cannot filter by payment); otherwise the list
        endpoint is paged for the time window.
        """
        log_context = {
            "payment_id": payment_id,
            "begin_time": begin_time.isoformat() if begin_time else None,
            "end_time": end_time.isoformat() if end_time else None,
        }

        def _list():
            if payment_id:
                payment = self._client.payments.get(payment_id=payment_id).payment
                return [
                    self._client.refunds.get(refund_id=refund_id).refund
                    for refund_id in (payment.refund_ids or [])
                ]
            pager = self._client.refunds.list(
                begin_time=begin_time.isoformat() if begin_time else None,
                end_time=end_time.isoformat() if end_time else None,
                location_id=self.credentials.location_id or None,
            )
            return list(pager)

        refunds = self._call("list_refunds", log_context, _list)
        views = []
        for refund in refunds:
            created_at = parse_timestamp(refund.created_at)
            if begin_time and created_at and created_at < begin_time:
                continue
            if end_time and created_at and created_at > end_time:
                continue
            raw_status = refund.status or ""
            views.append(
                RefundView(
                    external_refund_id=refund.id,
                    external_payment_id=refund.payment_id or payment_id or "",
                    amount_cents=_amount_of(refund.amount_money),
                    status=self.map_refund_status(raw_status),
                    raw_status=raw_status,
                    reason=refund.reason or "",
                    created_at=created_at,
                )
            )
        return views

    def health_check(self) -> HealthCheckResult:
        """List locations and confirm the configured location exists."""
        start_time = time.time()
        try:
            locations = self._call(
                "health_check",
                {},
                lambda: self._client.locations.list().locations or [],
            )
        except PaymentError as e:
            return self._health_failure(e.message, start_time)

        location_ids = [location.id for location in locations]
        location_found = self.credentials.location_id in location_ids
        return HealthCheckResult(
            ok=location_found,
            processor=self.kind,
            environment=self.credentials.environment,
            message=(
                "Square connection successful"
                if location_found
                else f"Location {self.credentials.location_id} not found for this account"
            ),
            details={"locationCount": len(location_ids), "locationFound": location_found},
            duration_ms=(time.time() - start_time) * 1000,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _health_failure(self, message: str, start_time: float) -> HealthCheckResult:
        return HealthCheckResult(
            ok=False,
            processor=self.kind,
            environment=self.credentials.environment,
            message=message,
            duration_ms=(time.time() - start_time) * 1000,
        )

    @staticmethod
    def _card_of(payment: Any) -> CardFingerprint | None:
        card_details = getattr(payment, "card_details", None)
        card = getattr(card_details, "card", None) if card_details else None
        if card is None:
            return None
        return CardFingerprint(
            brand=card.card_brand or "",
            last4=card.last4 or "",
            exp_month=card.exp_month,
            exp_year=card.exp_year,
        )

    @staticmethod
    def _errors_of(error: ApiError) -> list[dict[str, Any]]:
        errors = getattr(error, "errors", None)
        if errors:
            return [
                {
                    "category": getattr(e, "category", None),
                    "code": getattr(e, "code", None),
                    "detail": getattr(e, "detail", None),
                }
                for e in errors
            ]
        body = getattr(error, "body", None)
        if isinstance(body, dict):
            return list(body.get("errors") or [])
        return []

    # =========================================================================
    # Error Handling
    # =========================================================================

    def _handle_error(
        self,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Square SDK exceptions to domain exceptions.

        Raises:
            ProcessorDeclinedError: Card declined, insufficient funds, bad source
            DuplicateChargeError: Idempotency key reused with different params
            PaymentNotFoundError: Unknown payment id
            AlreadyRefundedError / AmountExceedsRefundableError /
                RefundAlreadyPendingError: Refund conflicts
            PaymentValidationError: Other invalid requests
            ProcessorAuthenticationError: Bad or revoked access token
            ProcessorRateLimitError / ProcessorTimeoutError /
                ProcessorUnavailableError: Transient failures
        """
        logger = self.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, httpx.TimeoutException):
            logger.error("Square request timed out", extra=log_context)
            raise ProcessorTimeoutError(
                f"Square did not respond within {self.timeout}s",
                processor=self.kind,
                processor_code="timeout",
            )

        if isinstance(error, httpx.TransportError):
            logger.error("Connection error to Square", extra=log_context, exc_info=True)
            raise ProcessorUnavailableError(
                "Could not connect to Square. Please retry.",
                processor=self.kind,
                processor_code="api_connection_error",
            )

        if not isinstance(error, ApiError):
            raise self._unexpected_error(error, log_context)

        errors = self._errors_of(error)
        first = errors[0] if errors else {}
        code = first.get("code") or ""
        category = first.get("category") or ""
        detail = first.get("detail") or str(error)
        status_code = getattr(error, "status_code", None)
        log_context = {
            **log_context,
            "square_code": code,
            "square_category": category,
            "status_code": status_code,
        }

        if code == "INSUFFICIENT_FUNDS":
            logger.warning("Card error from Square", extra=log_context)
            raise ProcessorDeclinedError(
                "Insufficient funds. Please use a different payment method.",
                reason="insufficient_funds",
                processor=self.kind,
                processor_code=code,
            )

        if code in INVALID_SOURCE_CODES:
            logger.warning("Card error from Square", extra=log_context)
            raise ProcessorDeclinedError(
                "Invalid card information. Please check your card details.",
                reason="invalid_source",
                processor=self.kind,
                processor_code=code,
            )

        if category == "PAYMENT_METHOD_ERROR" or code in ("CARD_DECLINED", "GENERIC_DECLINE"):
            logger.warning("Card error from Square", extra=log_context)
            raise ProcessorDeclinedError(
                "Card was declined. Please use a different card.",
                reason="card_declined",
                processor=self.kind,
                processor_code=code,
            )

        if code == "IDEMPOTENCY_KEY_REUSED":
            logger.error("Idempotency collision at Square", extra=log_context)
            raise DuplicateChargeError(
                "Square rejected a reused idempotency key",
                processor=self.kind,
                processor_code=code,
            )

        if code == "REFUND_ALREADY_PENDING":
            raise RefundAlreadyPendingError(detail, details={"processor": self.kind})

        if code == "PAYMENT_NOT_REFUNDABLE" and "refunded" in detail.lower():
            raise AlreadyRefundedError(detail, details={"processor": self.kind})

        if code in ("REFUND_AMOUNT_INVALID", "AMOUNT_TOO_HIGH"):
            raise AmountExceedsRefundableError(detail, details={"processor": self.kind})

        if code == "NOT_FOUND" or status_code == 404:
            logger.warning("Payment not found at Square", extra=log_context)
            raise PaymentNotFoundError(
                f"Square payment not found: {log_context.get('payment_id') or ''}".strip(),
                details={"processor": self.kind},
            )

        if category == "AUTHENTICATION_ERROR" or status_code in (401, 403):
            logger.critical("Square authentication failed - check access token", extra=log_context)
            raise ProcessorAuthenticationError(
                "Square authentication failed",
                processor=self.kind,
                processor_code=code or "authentication_error",
            )

        if category == "RATE_LIMIT_ERROR" or status_code == 429:
            logger.warning("Rate limited by Square", extra=log_context)
            raise ProcessorRateLimitError(
                "Square rate limit exceeded. Please retry.",
                processor=self.kind,
                processor_code=code or "rate_limit",
            )

        if category == "API_ERROR" or (status_code or 0) >= 500:
            logger.error("Square API error", extra=log_context)
            raise ProcessorUnavailableError(
                "Square service error. Please retry.",
                processor=self.kind,
                processor_code=code or "api_error",
            )

        logger.error("Invalid request to Square", extra=log_context)
        raise PaymentValidationError(detail, details={"processor": self.kind, "processor_code": code})
