"""
PayPal adapter.

Charges create an order with intent CAPTURE for the source token and then
capture it; the capture id is the external payment id and the order id is
kept alongside. A capture in COMPLETED state is success.

Authentication is OAuth2 client credentials: the configuration's
application_id is the client id and access_token is the client secret. The
bearer token is cached on the instance until shortly before it expires.

Usage:
    adapter = PayPalAdapter(ProcessorCredentials.from_configuration(config))
    result = adapter.charge(request)
    refund = adapter.refund(result.external_id, 2500, "goodwill")
"""

from __future__ import annotations

import threading
import time
from datetime import datetime
from decimal import Decimal
from typing import Any

import requests

from payments.adapters.base import (
    ChargeRequest,
    ChargeResult,
    HealthCheckResult,
    IdempotencyKeyGenerator,
    PaymentView,
    ProcessorAdapter,
    RefundResult,
    RefundView,
    parse_timestamp,
    to_minor_units,
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

API_HOSTS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "production": "https://api-m.paypal.com",
}

# Transaction search event code for refunds
REFUND_EVENT_CODE = "T1107"


class PayPalAPIError(Exception):
    """Non-2xx answer from PayPal, carrying the decoded error body."""

    def __init__(self, status_code: int, body: dict[str, Any]):
        self.status_code = status_code
        self.body = body
        details = body.get("details") or []
        self.name = body.get("name") or body.get("error") or ""
        self.issue = (details[0].get("issue") if details else "") or ""
        self.detail = (
            (details[0].get("description") if details else "")
            or body.get("message")
            or body.get("error_description")
            or f"HTTP {status_code}"
        )
        super().__init__(self.detail)


def _format_amount(amount_cents: int) -> str:
    return "%.2f" % (Decimal(amount_cents) / Decimal(100))


class PayPalAdapter(ProcessorAdapter):
    """Adapter for PayPal Orders v2, Payments v2 and Transaction Search."""

    kind = ProcessorKind.PAYPAL

    PAYMENT_STATUS_MAP = {
        "COMPLETED": PaymentStatus.COMPLETED,
        "PARTIALLY_REFUNDED": PaymentStatus.COMPLETED,
        "REFUNDED": PaymentStatus.REFUNDED,
        "PENDING": PaymentStatus.PENDING,
        "APPROVED": PaymentStatus.PENDING,
        "CREATED": PaymentStatus.PENDING,
        "DECLINED": PaymentStatus.FAILED,
        "FAILED": PaymentStatus.FAILED,
        "VOIDED": PaymentStatus.FAILED,
    }
    REFUND_STATUS_MAP = {
        "COMPLETED": RefundStatus.COMPLETED,
        "S": RefundStatus.COMPLETED,
        "PENDING": RefundStatus.PENDING,
        "P": RefundStatus.PENDING,
        "FAILED": RefundStatus.FAILED,
        "CANCELLED": RefundStatus.FAILED,
        "D": RefundStatus.FAILED,
    }

    # Refresh the bearer token this many seconds before PayPal expires it
    TOKEN_EXPIRY_MARGIN = 60

    def __init__(self, credentials, timeout=None):
        super().__init__(credentials, timeout)
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    @property
    def base_url(self) -> str:
        return API_HOSTS["production" if self.credentials.is_production else "sandbox"]

    def _access_token(self) -> str:
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            response = self.session.post(
                f"{self.base_url}/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self.credentials.application_id, self.credentials.access_token),
                timeout=self.timeout,
            )
            if response.status_code >= 400:
                raise PayPalAPIError(response.status_code, self._decode(response))
            body = response.json()
            self._token = body["access_token"]
            expires_in = int(body.get("expires_in") or 0)
            self._token_expires_at = time.monotonic() + max(expires_in - self.TOKEN_EXPIRY_MARGIN, 0)
            return self._token

    @staticmethod
    def _decode(response: requests.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {"message": response.text[:500]}
        return body if isinstance(body, dict) else {}

    def _request(
        self,
        method: str,
        path: str,
        request_id: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        response = self.session.request(
            method,
            f"{self.base_url}{path}",
            headers=headers,
            timeout=self.timeout,
            **kwargs,
        )
        if response.status_code >= 400:
            raise PayPalAPIError(response.status_code, self._decode(response))
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

        order = self._call(
            "create_order",
            log_context,
            lambda: self._request(
                "POST",
                "/v2/checkout/orders",
                request_id=f"{request.idempotency_key}-order",
                json={
                    "intent": "CAPTURE",
                    "purchase_units": [
                        {
                            "amount": {
                                "currency_code": request.currency.upper(),
                                "value": _format_amount(request.amount_cents),
                            },
                            "custom_id": request.buyer_reference[:127] or None,
                            "description": request.note[:127] or None,
                        }
                    ],
                    "payment_source": {"token": {"id": request.source_token, "type": "BILLING_AGREEMENT"}},
                },
            ),
        )
        order_id = order.get("id") or ""

        if (order.get("status") or "").upper() != "COMPLETED":
            order = self._call(
                "capture_order",
                {**log_context, "order_id": order_id},
                lambda: self._request(
                    "POST",
                    f"/v2/checkout/orders/{order_id}/capture",
                    request_id=f"{request.idempotency_key}-capture",
                    json={},
                ),
            )

        capture = self._first_capture(order)
        raw_status = (capture.get("status") or order.get("status") or "").upper()
        amount = capture.get("amount") or {}
        return ChargeResult(
            external_id=capture.get("id") or order_id,
            status=self.map_payment_status(raw_status),
            raw_status=raw_status,
            amount_cents=to_minor_units(amount["value"]) if amount.get("value") else request.amount_cents,
            currency=(amount.get("currency_code") or request.currency).upper(),
            order_id=order_id,
            processed_at=parse_timestamp(capture.get("create_time")),
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
            "capture_id": external_payment_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }

        refund = self._call(
            "refund_capture",
            log_context,
            lambda: self._request(
                "POST",
                f"/v2/payments/captures/{external_payment_id}/refund",
                request_id=idempotency_key,
                json={
                    "amount": {
                        "value": _format_amount(amount_cents),
                        "currency_code": (currency or self.credentials.currency).upper(),
                    },
                    "note_to_payer": (reason or "")[:255] or None,
                },
            ),
        )
        raw_status = (refund.get("status") or "").upper()
        amount = refund.get("amount") or {}
        return RefundResult(
            external_refund_id=refund.get("id") or "",
            status=self.map_refund_status(raw_status),
            raw_status=raw_status,
            amount_cents=to_minor_units(amount["value"]) if amount.get("value") else amount_cents,
        )

    def fetch_payment(self, external_payment_id: str) -> PaymentView:
        capture = self._call(
            "get_capture",
            {"capture_id": external_payment_id},
            lambda: self._request("GET", f"/v2/payments/captures/{external_payment_id}"),
        )
        order_id = ((capture.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id") or ""
        refunds = self._order_refunds(order_id, external_payment_id) if order_id else []
        raw_status = (capture.get("status") or "").upper()
        amount = capture.get("amount") or {}
        return PaymentView(
            external_id=capture.get("id") or external_payment_id,
            status=self.map_payment_status(raw_status),
            raw_status=raw_status,
            amount_cents=to_minor_units(amount.get("value") or "0"),
            currency=(amount.get("currency_code") or self.credentials.currency).upper(),
            refunded_amount_cents=sum(
                refund.amount_cents for refund in refunds if refund.status == RefundStatus.COMPLETED
            ),
            order_id=order_id,
            created_at=parse_timestamp(capture.get("create_time")),
        )

    def list_refunds(
        self,
        payment_id: str | None = None,
        begin_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> list[RefundView]:
        """
        List refunds.

        With ``payment_id`` (a capture id) refunds are read from the capture's
        order; otherwise Transaction Search is queried for refund events in
        the window (PayPal requires both ends of the window).
        """
        if payment_id:
            capture = self._call(
                "get_capture",
                {"capture_id": payment_id},
                lambda: self._request("GET", f"/v2/payments/captures/{payment_id}"),
            )
            order_id = ((capture.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id")
            if not order_id:
                return []
            refunds = self._order_refunds(order_id, payment_id)
            return [
                refund
                for refund in refunds
                if not (begin_time and refund.created_at and refund.created_at < begin_time)
                and not (end_time and refund.created_at and refund.created_at > end_time)
            ]

        if not (begin_time and end_time):
            raise PaymentValidationError(
                "PayPal refund listing needs a payment id or a full time range",
                details={"processor": self.kind},
            )

        body = self._call(
            "search_transactions",
            {"begin_time": begin_time.isoformat(), "end_time": end_time.isoformat()},
            lambda: self._request(
                "GET",
                "/v1/reporting/transactions",
                params={
                    "start_date": begin_time.isoformat(),
                    "end_date": end_time.isoformat(),
                    "transaction_type": REFUND_EVENT_CODE,
                    "fields": "transaction_info",
                    "page_size": 500,
                },
            ),
        )
        views = []
        for detail in body.get("transaction_details") or []:
            info = detail.get("transaction_info") or {}
            if info.get("transaction_event_code") != REFUND_EVENT_CODE:
                continue
            raw_status = (info.get("transaction_status") or "").upper()
            amount = info.get("transaction_amount") or {}
            views.append(
                RefundView(
                    external_refund_id=info.get("transaction_id") or "",
                    external_payment_id=info.get("paypal_reference_id") or "",
                    amount_cents=abs(to_minor_units(amount.get("value") or "0")),
                    status=self.map_refund_status(raw_status),
                    raw_status=raw_status,
                    created_at=parse_timestamp(info.get("transaction_initiation_date")),
                )
            )
        return views

    def health_check(self) -> HealthCheckResult:
        """Acquire an OAuth2 token."""
        start_time = time.time()
        try:
            self._call("acquire_token", {}, self._access_token)
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
            message="PayPal connection successful",
            details={"tokenAcquired": True},
            duration_ms=(time.time() - start_time) * 1000,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _first_capture(order: dict[str, Any]) -> dict[str, Any]:
        for unit in order.get("purchase_units") or []:
            captures = (unit.get("payments") or {}).get("captures") or []
            if captures:
                return captures[0]
        return {}

    def _order_refunds(self, order_id: str, capture_id: str) -> list[RefundView]:
        order = self._call(
            "get_order",
            {"order_id": order_id},
            lambda: self._request("GET", f"/v2/checkout/orders/{order_id}"),
        )
        views = []
        for unit in order.get("purchase_units") or []:
            for refund in (unit.get("payments") or {}).get("refunds") or []:
                raw_status = (refund.get("status") or "").upper()
                amount = refund.get("amount") or {}
                views.append(
                    RefundView(
                        external_refund_id=refund.get("id") or "",
                        external_payment_id=capture_id,
                        amount_cents=to_minor_units(amount.get("value") or "0"),
                        status=self.map_refund_status(raw_status),
                        raw_status=raw_status,
                        reason=refund.get("note_to_payer") or "",
                        created_at=parse_timestamp(refund.get("create_time")),
                    )
                )
        return views

    # =========================================================================
    # Error Handling
    # =========================================================================

    def _handle_error(
        self,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """Translate requests exceptions and PayPal error bodies to domain exceptions."""
        logger = self.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, requests.Timeout):
            logger.error("PayPal request timed out", extra=log_context)
            raise ProcessorTimeoutError(
                f"PayPal did not respond within {self.timeout}s",
                processor=self.kind,
                processor_code="timeout",
            )

        if isinstance(error, requests.ConnectionError):
            logger.error("Connection error to PayPal", extra=log_context, exc_info=True)
            raise ProcessorUnavailableError(
                "Could not connect to PayPal. Please retry.",
                processor=self.kind,
                processor_code="api_connection_error",
            )

        if not isinstance(error, PayPalAPIError):
            raise self._unexpected_error(error, log_context)

        status_code = error.status_code
        issue = error.issue
        log_context = {
            **log_context,
            "paypal_name": error.name,
            "paypal_issue": issue,
            "status_code": status_code,
        }

        if issue in ("INSTRUMENT_DECLINED", "TRANSACTION_REFUSED", "PAYER_CANNOT_PAY"):
            logger.warning("Payment source declined by PayPal", extra=log_context)
            raise ProcessorDeclinedError(
                "Payment was declined. Please use a different payment method.",
                reason="card_declined",
                processor=self.kind,
                processor_code=issue,
            )

        if issue in ("INSUFFICIENT_FUNDS", "PAYER_ACCOUNT_RESTRICTED"):
            logger.warning("Payment source declined by PayPal", extra=log_context)
            raise ProcessorDeclinedError(
                "Insufficient funds. Please use a different payment method.",
                reason="insufficient_funds",
                processor=self.kind,
                processor_code=issue,
            )

        if issue in ("ORDER_NOT_APPROVED", "TOKEN_NOT_FOUND", "INVALID_PAYMENT_SOURCE"):
            logger.warning("Invalid payment source for PayPal", extra=log_context)
            raise ProcessorDeclinedError(
                error.detail,
                reason="invalid_source",
                processor=self.kind,
                processor_code=issue,
            )

        if issue in ("DUPLICATE_INVOICE_ID", "DUPLICATE_REQUEST_ID"):
            logger.error("Idempotency collision at PayPal", extra=log_context)
            raise DuplicateChargeError(
                "PayPal rejected a duplicate request",
                processor=self.kind,
                processor_code=issue,
            )

        if issue == "CAPTURE_FULLY_REFUNDED":
            raise AlreadyRefundedError(error.detail, details={"processor": self.kind})

        if issue in ("REFUND_AMOUNT_EXCEEDED", "REFUND_EXCEEDED_TRANSACTION_AMOUNT"):
            raise AmountExceedsRefundableError(error.detail, details={"processor": self.kind})

        if status_code == 404 or issue == "INVALID_RESOURCE_ID":
            logger.warning("Resource not found at PayPal", extra=log_context)
            raise PaymentNotFoundError(error.detail, details={"processor": self.kind})

        if status_code == 401 or error.name == "invalid_client":
            logger.critical("PayPal authentication failed - check client credentials", extra=log_context)
            raise ProcessorAuthenticationError(
                "PayPal authentication failed",
                processor=self.kind,
                processor_code=error.name or "authentication_error",
            )

        if status_code == 429 or error.name == "RATE_LIMIT_REACHED":
            logger.warning("Rate limited by PayPal", extra=log_context)
            raise ProcessorRateLimitError(
                "PayPal rate limit exceeded. Please retry.",
                processor=self.kind,
                processor_code="rate_limit",
            )

        if status_code >= 500:
            logger.error("PayPal API error", extra=log_context)
            raise ProcessorUnavailableError(
                "PayPal service error. Please retry.",
                processor=self.kind,
                processor_code=error.name or "api_error",
            )

        logger.error("Invalid request to PayPal", extra=log_context)
        raise PaymentValidationError(
            error.detail,
            details={"processor": self.kind, "processor_code": issue or error.name},
        )
