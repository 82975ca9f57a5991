"""
Stripe API adapter for payment operations.

Charges create and confirm a PaymentIntent in one call using the source
token as the payment method; ``succeeded`` is the only success terminal.
Refunds go through the Refunds API against the PaymentIntent.

Each adapter instance passes its own secret key per request, so several
Stripe configurations can be active in one process.

Features:
- Configurable timeout on all API calls
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Idempotency support for safe retries

Usage:
    adapter = StripeAdapter(ProcessorCredentials.from_configuration(config))
    result = adapter.charge(request)
    refund = adapter.refund(result.external_id, 2500, "goodwill")
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

import stripe

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
)
from payments.state_machines import PaymentStatus, ProcessorKind, RefundStatus


def _from_epoch(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class StripeAdapter(ProcessorAdapter):
    """
    Adapter for Stripe PaymentIntents, Refunds and Balance.

    Configuration (via ProcessorConfiguration):
    - access_token: Stripe secret key
    - application_id: Publishable key (exposed to the browser SDK)
    """

    kind = ProcessorKind.STRIPE

    PAYMENT_STATUS_MAP = {
        "SUCCEEDED": PaymentStatus.COMPLETED,
        "PROCESSING": PaymentStatus.PENDING,
        "REQUIRES_PAYMENT_METHOD": PaymentStatus.PENDING,
        "REQUIRES_CONFIRMATION": PaymentStatus.PENDING,
        "REQUIRES_ACTION": PaymentStatus.PENDING,
        "REQUIRES_CAPTURE": PaymentStatus.PENDING,
        "CANCELED": PaymentStatus.FAILED,
    }
    REFUND_STATUS_MAP = {
        "SUCCEEDED": RefundStatus.COMPLETED,
        "PENDING": RefundStatus.PENDING,
        "REQUIRES_ACTION": RefundStatus.PENDING,
        "FAILED": RefundStatus.FAILED,
        "CANCELED": RefundStatus.FAILED,
    }

    def __init__(self, credentials, timeout=None):
        super().__init__(credentials, timeout)
        self._configure_stripe()

    def _configure_stripe(self) -> None:
        """Configure the Stripe HTTP client timeout."""
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)

    @property
    def _request_options(self) -> dict[str, Any]:
        return {"api_key": self.credentials.access_token}

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

        intent = self._call(
            "create_payment_intent",
            log_context,
            lambda: stripe.PaymentIntent.create(
                amount=request.amount_cents,
                currency=request.currency.lower(),
                payment_method=request.source_token,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                receipt_email=request.buyer_email or None,
                description=request.note or None,
                metadata={"buyer_reference": request.buyer_reference, **request.metadata},
                expand=["latest_charge"],
                idempotency_key=request.idempotency_key,
                **self._request_options,
            ),
        )
        charge = intent.latest_charge if not isinstance(intent.latest_charge, str) else None
        raw_status = intent.status or ""
        return ChargeResult(
            external_id=intent.id,
            status=self.map_payment_status(raw_status),
            raw_status=raw_status,
            amount_cents=intent.amount,
            currency=(intent.currency or request.currency).upper(),
            receipt_url=(getattr(charge, "receipt_url", None) or "") if charge else "",
            card=self._card_of(charge),
            processed_at=_from_epoch(getattr(charge, "created", None) or intent.created),
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
            "payment_intent_id": external_payment_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }

        refund = self._call(
            "create_refund",
            log_context,
            lambda: stripe.Refund.create(
                payment_intent=external_payment_id,
                amount=amount_cents,
                reason="requested_by_customer",
                metadata={"reason": (reason or "")[:500]},
                idempotency_key=idempotency_key,
                **self._request_options,
            ),
        )
        raw_status = refund.status or ""
        return RefundResult(
            external_refund_id=refund.id,
            status=self.map_refund_status(raw_status),
            raw_status=raw_status,
            amount_cents=refund.amount,
        )

    def fetch_payment(self, external_payment_id: str) -> PaymentView:
        intent = self._call(
            "retrieve_payment_intent",
            {"payment_intent_id": external_payment_id},
            lambda: stripe.PaymentIntent.retrieve(
                external_payment_id,
                expand=["latest_charge"],
                **self._request_options,
            ),
        )
        charge = intent.latest_charge if not isinstance(intent.latest_charge, str) else None
        raw_status = intent.status or ""
        return PaymentView(
            external_id=intent.id,
            status=self.map_payment_status(raw_status),
            raw_status=raw_status,
            amount_cents=intent.amount,
            currency=(intent.currency or self.credentials.currency).upper(),
            refunded_amount_cents=int(getattr(charge, "amount_refunded", 0) or 0) if charge else 0,
            card=self._card_of(charge),
            receipt_url=(getattr(charge, "receipt_url", None) or "") if charge else "",
            created_at=_from_epoch(intent.created),
        )

    def list_refunds(
        self,
        payment_id: str | None = None,
        begin_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> list[RefundView]:
        params: dict[str, Any] = {"limit": 100}
        if payment_id:
            params["payment_intent"] = payment_id
        created: dict[str, int] = {}
        if begin_time:
            created["gte"] = int(begin_time.timestamp())
        if end_time:
            created["lte"] = int(end_time.timestamp())
        if created:
            params["created"] = created

        refunds = self._call(
            "list_refunds",
            {"payment_intent_id": payment_id},
            lambda: list(stripe.Refund.list(**params, **self._request_options).auto_paging_iter()),
        )
        views = []
        for refund in refunds:
            raw_status = refund.status or ""
            views.append(
                RefundView(
                    external_refund_id=refund.id,
                    external_payment_id=refund.payment_intent or payment_id or "",
                    amount_cents=refund.amount,
                    status=self.map_refund_status(raw_status),
                    raw_status=raw_status,
                    reason=(refund.metadata or {}).get("reason") or refund.reason or "",
                    created_at=_from_epoch(refund.created),
                )
            )
        return views

    def health_check(self) -> HealthCheckResult:
        """Retrieve the account balance."""
        start_time = time.time()
        try:
            balance = self._call(
                "retrieve_balance",
                {},
                lambda: stripe.Balance.retrieve(**self._request_options),
            )
        except PaymentError as e:
            return HealthCheckResult(
                ok=False,
                processor=self.kind,
                environment=self.credentials.environment,
                message=e.message,
                duration_ms=(time.time() - start_time) * 1000,
            )

        currencies = sorted({entry.currency.upper() for entry in (balance.available or [])})
        return HealthCheckResult(
            ok=True,
            processor=self.kind,
            environment=self.credentials.environment,
            message="Stripe connection successful",
            details={"livemode": bool(balance.livemode), "availableCurrencies": currencies},
            duration_ms=(time.time() - start_time) * 1000,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _card_of(charge: Any) -> CardFingerprint | None:
        details = getattr(charge, "payment_method_details", None) if charge else None
        card = getattr(details, "card", None) if details else None
        if card is None:
            return None
        return CardFingerprint(
            brand=card.brand or "",
            last4=card.last4 or "",
            exp_month=card.exp_month,
            exp_year=card.exp_year,
        )

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
        Translate Stripe exceptions to domain exceptions.

        Maps Stripe SDK errors to appropriate domain exceptions
        with proper error categorization for retry decisions.

        Raises:
            ProcessorDeclinedError: Card declined, insufficient funds, bad source
            DuplicateChargeError: Idempotency key reused with different params
            PaymentNotFoundError: Unknown PaymentIntent
            AlreadyRefundedError / AmountExceedsRefundableError: Refund conflicts
            PaymentValidationError: Other invalid requests
            ProcessorRateLimitError: Rate limited
            ProcessorUnavailableError: API unavailable
            ProcessorTimeoutError: Request timed out
            ProcessorAuthenticationError: Invalid secret key
        """
        logger = self.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )

            if decline_code == "insufficient_funds":
                raise ProcessorDeclinedError(
                    str(error.user_message or error),
                    reason="insufficient_funds",
                    processor=self.kind,
                    processor_code=error.code,
                )

            if error.code in ("incorrect_cvc", "expired_card", "incorrect_number", "invalid_expiry_year"):
                raise ProcessorDeclinedError(
                    str(error.user_message or error),
                    reason="invalid_source",
                    processor=self.kind,
                    processor_code=error.code,
                )

            raise ProcessorDeclinedError(
                str(error.user_message or error),
                reason="card_declined",
                processor=self.kind,
                processor_code=error.code,
            )

        elif isinstance(error, stripe.IdempotencyError):
            logger.error("Idempotency collision at Stripe", extra=log_context)
            raise DuplicateChargeError(
                "Stripe rejected a reused idempotency key",
                processor=self.kind,
                processor_code="idempotency_error",
            )

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )

            if error.code == "charge_already_refunded":
                raise AlreadyRefundedError(str(error), details={"processor": self.kind})
            if error.code == "amount_too_large":
                raise AmountExceedsRefundableError(str(error), details={"processor": self.kind})
            if error.code == "resource_missing":
                raise PaymentNotFoundError(str(error), details={"processor": self.kind})
            if error.code == "payment_method_invalid" or error.param == "payment_method":
                raise ProcessorDeclinedError(
                    str(error),
                    reason="invalid_source",
                    processor=self.kind,
                    processor_code=error.code,
                )

            raise PaymentValidationError(
                str(error),
                details={"processor": self.kind, "processor_code": error.code},
            )

        elif isinstance(error, stripe.RateLimitError):
            logger.warning(
                "Rate limited by Stripe",
                extra=log_context,
            )
            raise ProcessorRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                processor=self.kind,
                processor_code="rate_limit",
            )

        elif isinstance(error, stripe.APIConnectionError):
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            if "timed out" in str(error).lower() or "timeout" in str(error).lower():
                raise ProcessorTimeoutError(
                    f"Stripe did not respond within {self.timeout}s",
                    processor=self.kind,
                    processor_code="timeout",
                )
            raise ProcessorUnavailableError(
                "Could not connect to Stripe. Please retry.",
                processor=self.kind,
                processor_code="api_connection_error",
            )

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise ProcessorAuthenticationError(
                "Stripe authentication failed",
                processor=self.kind,
                processor_code="authentication_error",
            )

        elif isinstance(error, stripe.APIError):
            logger.error(
                "Stripe API error",
                extra=log_context,
                exc_info=True,
            )
            raise ProcessorUnavailableError(
                "Stripe service error. Please retry.",
                processor=self.kind,
                processor_code="api_error",
            )

        raise self._unexpected_error(error, log_context)
