"""
Read models over the ledger.

Ownership checks live here so views stay thin: admins see every ledger
entry, everyone else only the entries they paid for. Field-level filtering
(external ids, card fingerprint) is done by the serializers.
"""

from __future__ import annotations

import math
from typing import Any

from django.db.models import QuerySet

from core.exceptions import PermissionDeniedError
from core.services import BaseService
from payments.exceptions import PaymentValidationError
from payments.models import Payment, Refund
from payments.services.refund_service import RefundService
from payments.state_machines import PaymentStatus, RefundStatus

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def is_admin(user) -> bool:
    return bool(user and user.is_authenticated and getattr(user, "is_admin", False))


class PaymentQueryService(BaseService):
    """Role-aware lookups for ledger entries and refund records."""

    @classmethod
    def get_for_user(cls, payment_ref: Any, user) -> Payment:
        """
        Load a ledger entry the user may see.

        Raises:
            PaymentNotFoundError: Unknown entry
            PermissionDeniedError: Not an admin and not the paying parent
        """
        payment = RefundService.get_payment(payment_ref)
        if not is_admin(user) and payment.parent_id != getattr(user, "pk", None):
            raise PermissionDeniedError(
                "You do not have access to this payment",
                details={"payment_id": str(payment.pk)},
            )
        return payment

    @classmethod
    def refund_eligibility(cls, payment: Payment, user) -> dict[str, Any]:
        """Refund balance of ``payment``. Only admins may refund."""
        return {
            "canRefund": is_admin(user)
            and payment.status == PaymentStatus.COMPLETED
            and payment.available_refund_cents > 0,
            "availableAmount": payment.available_refund_cents,
            "originalAmount": payment.amount_cents,
            "alreadyRefunded": payment.refunded_amount_cents,
            "pendingAmount": payment.pending_refund_cents,
            "refundStatus": payment.refund_status,
            "currency": payment.currency,
            "createdAt": payment.created_at,
        }

    @classmethod
    def list_for_parent(cls, parent_id: Any, user) -> QuerySet[Payment]:
        if not is_admin(user) and str(parent_id) != str(getattr(user, "pk", "")):
            raise PermissionDeniedError(
                "You can only list your own payments",
                details={"parent_id": str(parent_id)},
            )
        return (
            Payment.objects.filter(parent_id=parent_id)
            .prefetch_related("refunds", "players")
            .order_by("-created_at")
        )

    @classmethod
    def admin_list(
        cls,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        parent_id: Any = None,
        status: str | None = None,
    ) -> dict[str, Any]:
        """Paginated ledger listing: {payments, totalPages, currentPage, total}."""
        if page < 1 or limit < 1:
            raise PaymentValidationError(
                "page and limit must be positive",
                details={"page": page, "limit": limit},
            )
        if status and status not in PaymentStatus.values:
            raise PaymentValidationError(
                f"Unknown payment status: {status}",
                details={"status": status, "allowed": list(PaymentStatus.values)},
            )
        if parent_id not in (None, ""):
            try:
                parent_id = int(parent_id)
            except (TypeError, ValueError):
                raise PaymentValidationError(
                    f"Invalid parent id: {parent_id}",
                    details={"parentId": parent_id},
                ) from None
        limit = min(limit, MAX_PAGE_SIZE)

        payments = Payment.objects.select_related("parent").prefetch_related("refunds", "players")
        if parent_id:
            payments = payments.filter(parent_id=parent_id)
        if status:
            payments = payments.filter(status=status)

        total = payments.count()
        offset = (page - 1) * limit
        return {
            "payments": list(payments.order_by("-created_at")[offset : offset + limit]),
            "totalPages": math.ceil(total / limit) if total else 0,
            "currentPage": page,
            "total": total,
        }

    @classmethod
    def payments_with_refunds(cls) -> QuerySet[Payment]:
        return (
            Payment.objects.filter(refunds__isnull=False)
            .distinct()
            .prefetch_related("refunds")
            .order_by("-created_at")
        )

    @classmethod
    def pending_refunds(cls) -> QuerySet[Refund]:
        return (
            Refund.objects.filter(status=RefundStatus.PENDING)
            .select_related("payment", "requested_by")
            .order_by("created_at")
        )


__all__ = ["DEFAULT_PAGE_SIZE", "PaymentQueryService", "is_admin"]
