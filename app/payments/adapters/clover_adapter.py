"""
Clover adapter.

A Clover charge is two calls: create an order for the amount, then pay the
order with the source token. Clover reports PAID for captured payments and
AUTHORIZED for card-present style authorizations; both count as success.

Ecommerce calls (orders, pay, refunds, charges) go to the scl host; merchant
lookups and refund listings go to the REST platform host. Both accept the
configuration's API token as a bearer token.

Usage:
    adapter = CloverAdapter(ProcessorCredentials.from_configuration(config))
    result = adapter.charge(request)
    result.order_id   # Clover order id, persisted on the ledger entry
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

import requests

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

ECOMMERCE_HOSTS = {
    "sandbox": "https://scl-sandbox.dev.clover.com",
    "production": "https://scl.clover.com",
}
PLATFORM_HOSTS = {
    "sandbox": "https://apisandbox.dev.clover.com",
    "production": "https://api.clover.com",
}


class CloverAPIError(Exception):
    """Non-2xx answer from Clover, carrying the decoded error body."""

    def __init__(self, status_code: int, body: dict[str, Any]):
        self.status_code = status_code
        self.body = body
        error = body.get("error") if isinstance(body.get("error"), dict) else body
        self.code = (error or {}).get("code") or ""
        self.decline_code = (error or {}).get("declineCode") or (error or {}).get("decline_code") or ""
        self.detail = (error or {}).get("message") or body.get("message") or f"HTTP {status_code}"
        super().__init__(self.detail)


def _epoch_ms_to_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


class CloverAdapter(ProcessorAdapter):
    """Adapter for the Clover ecommerce and REST platform APIs."""

    kind = ProcessorKind.CLOVER

    PAYMENT_STATUS_MAP = {
        "PAID": PaymentStatus.COMPLETED,
        "AUTHORIZED": PaymentStatus.COMPLETED,
        "SUCCEEDED": PaymentStatus.COMPLETED,
        "PENDING": PaymentStatus.PENDING,
        "CREATED": PaymentStatus.PENDING,
        "FAILED": PaymentStatus.FAILED,
        "VOIDED": PaymentStatus.FAILED,
        "REFUNDED": PaymentStatus.REFUNDED,
    }
    REFUND_STATUS_MAP = {
        "SUCCEEDED": RefundStatus.COMPLETED,
        "SUCCESS": RefundStatus.COMPLETED,
        "PENDING": RefundStatus.PENDING,
        "FAILED": RefundStatus.FAILED,
    }

    def __init__(self, credentials, timeout=None):
        super().__init__(credentials, timeout)
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {credentials.access_token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

    @property
    def ecommerce_url(self) -> str:
        return ECOMMERCE_HOSTS["production" if self.credentials.is_production else "sandbox"]

    @property
    def platform_url(self) -> str:
        host = PLATFORM_HOSTS["production" if self.credentials.is_production else "sandbox"]
        return f"{host}/v3/merchants/{self.credentials.merchant_id}"

    def _request(
        self,
        method: str,
        url: str,
        idempotency_key: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        headers = {"idempotency-key": idempotency_key} if idempotency_key else None
        response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {"message": response.text[:500]}
            raise CloverAPIError(response.status_code, body if isinstance(body, dict) else {})
        if not response.content:
            return {}
        return response.json()

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

        def _create_order():
            return self._request(
                "POST",
                f"{self.ecommerce_url}/v1/orders",
                json={
                    "currency": request.currency.lower(),
                    "email": request.buyer_email,
                    "items": [
                        {
                            "amount": request.amount_cents,
                            "currency": request.currency.lower(),
                            "description": request.note or "Payment",
                            "quantity": 1,
                        }
                    ],
                },
            )

        order = self._call("create_order", log_context, _create_order)
        order_id = order.get("id") or ""

        def _pay_order():
            return self._request(
                "POST",
                f"{self.ecommerce_url}/v1/orders/{order_id}/pay",
                idempotency_key=request.idempotency_key,
                json={
                    "source": request.source_token,
                    "email": request.buyer_email,
                    "external_reference_id": request.buyer_reference[:12] or None,
                },
            )

        payment = self._call("pay_order", {**log_context, "order_id": order_id}, _pay_order)
        raw_status = (payment.get("status") or "").upper()
        source = payment.get("source") or {}
        return ChargeResult(
            external_id=payment.get("charge") or payment.get("id") or "",
            status=self.map_payment_status(raw_status),
            raw_status=raw_status,
            amount_cents=int(payment.get("amount") or request.amount_cents),
            currency=(payment.get("currency") or request.currency).upper(),
            order_id=order_id,
            card=CardFingerprint(
                brand=source.get("brand") or "",
                last4=source.get("last4") or "",
                exp_month=int(source["exp_month"]) if source.get("exp_month") else None,
                exp_year=int(source["exp_year"]) if source.get("exp_year") else None,
            )
            if source
            else None,
            processed_at=_epoch_ms_to_datetime(payment.get("created")),
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

        refund = self._call(
            "refund",
            log_context,
            lambda: self._request(
                "POST",
                f"{self.ecommerce_url}/v1/refunds",
                idempotency_key=idempotency_key,
                json={
                    "charge": external_payment_id,
                    "amount": amount_cents,
                    "reason": "requested_by_customer",
                    "metadata": {"reason": (reason or "")[:255]},
                },
            ),
        )
        raw_status = (refund.get("status") or "").upper()
        return RefundResult(
            external_refund_id=refund.get("id") or "",
            status=self.map_refund_status(raw_status),
            raw_status=raw_status,
            amount_cents=int(refund.get("amount") or amount_cents),
        )

    def fetch_payment(self, external_payment_id: str) -> PaymentView:
        charge = self._call(
            "fetch_payment",
            {"payment_id": external_payment_id},
            lambda: self._request("GET", f"{self.ecommerce_url}/v1/charges/{external_payment_id}"),
        )
        raw_status = (charge.get("status") or "").upper()
        return PaymentView(
            external_id=charge.get("id") or external_payment_id,
            status=self.map_payment_status(raw_status),
            raw_status=raw_status,
            amount_cents=int(charge.get("amount") or 0),
            currency=(charge.get("currency") or self.credentials.currency).upper(),
            refunded_amount_cents=int(charge.get("amount_refunded") or 0),
            order_id=charge.get("order") or "",
            created_at=_epoch_ms_to_datetime(charge.get("created")),
        )

    def list_refunds(
        self,
        payment_id: str | None = None,
        begin_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> list[RefundView]:
        log_context = {"payment_id": payment_id}
        params: list[tuple[str, str]] = []
        if payment_id:
            params.append(("filter", f"payment.id={payment_id}"))
        if begin_time:
            params.append(("filter", f"createdTime>={int(begin_time.timestamp() * 1000)}"))
        if end_time:
            params.append(("filter", f"createdTime<={int(end_time.timestamp() * 1000)}"))
        params.append(("expand", "payment"))

        body = self._call(
            "list_refunds",
            log_context,
            lambda: self._request("GET", f"{self.platform_url}/refunds", params=params),
        )
        views = []
        for refund in body.get("elements") or []:
            raw_status = (refund.get("status") or "SUCCEEDED").upper()
            views.append(
                RefundView(
                    external_refund_id=refund.get("id") or "",
                    external_payment_id=(refund.get("payment") or {}).get("id") or payment_id or "",
                    amount_cents=int(refund.get("amount") or 0),
                    status=self.map_refund_status(raw_status),
                    raw_status=raw_status,
                    reason=refund.get("reason") or "",
                    created_at=_epoch_ms_to_datetime(refund.get("createdTime")),
                )
            )
        return views

    def health_check(self) -> HealthCheckResult:
        """Fetch the merchant record."""
        start_time = time.time()
        try:
            merchant = self._call(
                "health_check",
                {},
                lambda: self._request("GET", self.platform_url),
            )
        except PaymentNotFoundError:
            return HealthCheckResult(
                ok=False,
                processor=self.kind,
                environment=self.credentials.environment,
                message=f"Merchant {self.credentials.merchant_id} not found",
                duration_ms=(time.time() - start_time) * 1000,
            )
        except PaymentError as e:
            return HealthCheckResult(
                ok=False,
                processor=self.kind,
                environment=self.credentials.environment,
                message=e.message,
                duration_ms=(time.time() - start_time) * 1000,
            )

        return HealthCheckResult(
            ok=True,
            processor=self.kind,
            environment=self.credentials.environment,
            message="Clover connection successful",
            details={"merchantId": merchant.get("id"), "merchantName": merchant.get("name")},
            duration_ms=(time.time() - start_time) * 1000,
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
        Translate requests exceptions and Clover error bodies to domain
        exceptions.
        """
        logger = self.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, requests.Timeout):
            logger.error("Clover request timed out", extra=log_context)
            raise ProcessorTimeoutError(
                f"Clover did not respond within {self.timeout}s",
                processor=self.kind,
                processor_code="timeout",
            )

        if isinstance(error, requests.ConnectionError):
            logger.error("Connection error to Clover", extra=log_context, exc_info=True)
            raise ProcessorUnavailableError(
                "Could not connect to Clover. Please retry.",
                processor=self.kind,
                processor_code="api_connection_error",
            )

        if not isinstance(error, CloverAPIError):
            raise self._unexpected_error(error, log_context)

        status_code = error.status_code
        code = error.code
        detail = error.detail
        message = detail.lower()
        log_context = {
            **log_context,
            "clover_code": code,
            "decline_code": error.decline_code,
            "status_code": status_code,
        }

        if code == "card_declined" or status_code == 402 or "declined" in message:
            logger.warning("Card error from Clover", extra=log_context)
            if error.decline_code == "insufficient_funds" or "insufficient funds" in message:
                raise ProcessorDeclinedError(
                    "Insufficient funds. Please use a different payment method.",
                    reason="insufficient_funds",
                    processor=self.kind,
                    processor_code=code or error.decline_code,
                )
            raise ProcessorDeclinedError(
                "Card was declined. Please use a different card.",
                reason="card_declined",
                processor=self.kind,
                processor_code=code or error.decline_code,
            )

        if code in ("invalid_card", "expired_card", "incorrect_cvc", "invalid_token") or "invalid card" in message:
            logger.warning("Card error from Clover", extra=log_context)
            raise ProcessorDeclinedError(
                "Invalid card information. Please check your card details.",
                reason="invalid_source",
                processor=self.kind,
                processor_code=code,
            )

        if status_code == 409 or "idempotency" in message:
            logger.error("Idempotency collision at Clover", extra=log_context)
            raise DuplicateChargeError(
                "Clover rejected a reused idempotency key",
                processor=self.kind,
                processor_code=code or "duplicate",
            )

        if code == "charge_already_refunded" or "already been refunded" in message:
            raise AlreadyRefundedError(detail, details={"processor": self.kind})

        if code == "amount_too_large" or "greater than" in message:
            raise AmountExceedsRefundableError(detail, details={"processor": self.kind})

        if status_code == 404:
            logger.warning("Resource not found at Clover", extra=log_context)
            raise PaymentNotFoundError(
                f"Clover payment not found: {log_context.get('payment_id') or ''}".strip(),
                details={"processor": self.kind},
            )

        if status_code in (401, 403):
            logger.critical("Clover authentication failed - check API token", extra=log_context)
            raise ProcessorAuthenticationError(
                "Clover authentication failed",
                processor=self.kind,
                processor_code=code or "authentication_error",
            )

        if status_code == 429:
            logger.warning("Rate limited by Clover", extra=log_context)
            raise ProcessorRateLimitError(
                "Clover rate limit exceeded. Please retry.",
                processor=self.kind,
                processor_code=code or "rate_limit",
            )

        if status_code >= 500:
            logger.error("Clover API error", extra=log_context)
            raise ProcessorUnavailableError(
                "Clover service error. Please retry.",
                processor=self.kind,
                processor_code=code or "api_error",
            )

        logger.error("Invalid request to Clover", extra=log_context)
        raise PaymentValidationError(detail, details={"processor": self.kind, "processor_code": code})
