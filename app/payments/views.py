"""
DRF views for payments app.

This module provides API views for:
- Charging a card token and reading ledger entries
- Requesting, approving and rejecting refunds
- Admin-triggered refund reconciliation
- Processor configuration management and health checks

Related files:
    - services/: ChargeService, RefundService, ReconciliationService,
      PaymentQueryService, ProcessorConfigurationService
    - serializers.py: Request/response serializers
    - urls.py: URL routing

Endpoints:
    POST   /api/v1/payments/charge/                          - Charge a source token
    GET    /api/v1/payments/                                 - Admin ledger listing
    GET    /api/v1/payments/parent/{parent_id}/              - A parent's ledger entries
    GET    /api/v1/payments/{payment_id}/details/            - Role-filtered entry
    GET    /api/v1/payments/{payment_id}/refund-eligibility/ - Refund balance
    POST   /api/v1/payments/{payment_id}/sync-refunds/       - Sync one entry
    POST   /api/v1/payments/sync/refunds/                    - Sync all open entries
    POST   /api/v1/payments/sync/refunds/by-date/            - Sync a creation window
    GET    /api/v1/payments/sync/unknown-refunds/            - Refunds for unknown payments
    POST   /api/v1/refunds/request/                          - File a refund request
    POST   /api/v1/refunds/process/                          - Approve or reject
    GET    /api/v1/refunds/all/                              - Entries with refunds
    GET    /api/v1/refunds/pending/                          - Pending refund records
    GET    /api/v1/payment-config/frontend/config/           - Browser SDK settings
    GET    /api/v1/payment-config/system/active/             - Active processor summary
    GET    /api/v1/payment-config/                           - List configurations
    POST   /api/v1/payment-config/                           - Create configuration
    GET    /api/v1/payment-config/{id}/                      - Get configuration
    PUT    /api/v1/payment-config/{id}/                      - Update configuration
    DELETE /api/v1/payment-config/{id}/                      - Delete configuration
    POST   /api/v1/payment-config/{id}/activate/             - Make default
    POST   /api/v1/payment-config/{id}/test/                 - Health check one
    POST   /api/v1/payment-config/test/all/                  - Health check all active

Security:
    - Everything except frontend/config requires authentication
    - Refund decisions, listings, reconciliation and configuration are admin only
    - Errors raised by services are rendered by core.exception_handler
"""

from __future__ import annotations

import logging

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import PermissionDeniedError
from payments.adapters import CardFingerprint
from payments.permissions import IsAdminRole
from payments.serializers import (
    ChargeRequestSerializer,
    ChargeResponseSerializer,
    DateRangeSerializer,
    OptionalDateRangeSerializer,
    PaymentAdminSerializer,
    PaymentSerializer,
    PendingRefundSerializer,
    ProcessorConfigurationSerializer,
    ProcessorConfigurationUpdateSerializer,
    RefundAdminSerializer,
    RefundProcessSerializer,
    RefundRequestSerializer,
    RefundSerializer,
)
from payments.services import (
    ChargeInput,
    ChargeService,
    PaymentQueryService,
    ProcessorConfigurationService,
    ReconciliationService,
    RefundService,
)
from payments.services.query_service import DEFAULT_PAGE_SIZE, is_admin
from payments.state_machines import RefundSource

logger = logging.getLogger(__name__)

PAYMENT_REF_PARAMETER = OpenApiParameter(
    name="payment_ref",
    type=OpenApiTypes.STR,
    location=OpenApiParameter.PATH,
    description="Ledger id (UUID) or processor payment id",
)


def payment_serializer_for(user):
    """Admins get the full ledger entry, parents the filtered view."""
    return PaymentAdminSerializer if is_admin(user) else PaymentSerializer


def refund_serializer_for(user):
    return RefundAdminSerializer if is_admin(user) else RefundSerializer


def parse_positive_int(value, default: int) -> int:
    try:
        return int(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        return 0


# =============================================================================
# Charges & Ledger
# =============================================================================


class ChargeView(APIView):
    """
    Charge a card token and record the ledger entry.

    POST /api/v1/payments/charge/

    Request body:
        {
            "sourceToken": "cnon:card-nonce-ok",
            "amount": 12500,
            "parentId": 42,
            "playerIds": ["<uuid>"],
            "season": "Spring",
            "year": 2025,
            "buyerEmail": "a@b.com",
            "cardDetails": {"last_4": "1111", "card_brand": "VISA", "exp_month": 12, "exp_year": 2030}
        }

    Returns:
        {"success": true, "payment": {...}}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_charge",
        summary="Charge a card",
        description=(
            "Charge a source token through the active processor. On success the ledger "
            "entry is written and the parent, players and registrations are marked paid "
            "in the same transaction. A receipt email is queued after commit."
        ),
        request=ChargeRequestSerializer,
        responses={
            201: OpenApiResponse(response=ChargeResponseSerializer, description="Charge recorded"),
            200: OpenApiResponse(response=ChargeResponseSerializer, description="Earlier charge replayed"),
            400: OpenApiResponse(description="Validation error"),
            402: OpenApiResponse(description="Processor declined the card"),
            403: OpenApiResponse(description="Caller may not pay for this parent"),
            500: OpenApiResponse(description="Charged but not recorded (INDETERMINATE)"),
        },
        tags=["Payments - Charges"],
    )
    def post(self, request):
        serializer = ChargeRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if not is_admin(request.user) and data["parentId"] != request.user.pk:
            raise PermissionDeniedError(
                "You can only pay for your own account",
                details={"parent_id": str(data["parentId"])},
            )

        card_details = data.get("cardDetails") or {}
        outcome = ChargeService.charge(
            ChargeInput(
                source_token=data["sourceToken"],
                amount_cents=data["amount"],
                buyer_email=data["buyerEmail"],
                parent_id=data["parentId"],
                player_ids=data["playerIds"],
                season=data["season"],
                year=data.get("year"),
                tryout_id=data["tryoutId"],
                currency=data.get("currency"),
                card=CardFingerprint(
                    brand=card_details.get("card_brand", ""),
                    last4=card_details.get("last_4", ""),
                    exp_month=card_details.get("exp_month"),
                    exp_year=card_details.get("exp_year"),
                ),
                description=data["description"],
                metadata=data["metadata"],
                preferred_processor=data.get("preferredProcessor"),
                idempotency_key=data.get("idempotencyKey") or None,
            )
        )

        payment = outcome.payment
        body = {
            "id": payment.pk,
            "externalId": payment.payment_id,
            "amount": payment.amount_cents,
            "currency": payment.currency,
            "status": payment.status,
            "receiptUrl": payment.receipt_url,
            "playersUpdated": outcome.summary.players_updated,
            "parentUpdated": outcome.summary.parent_updated,
            "replayed": outcome.replayed,
        }
        return Response(
            {"success": True, "payment": ChargeResponseSerializer(body).data},
            status=status.HTTP_200_OK if outcome.replayed else status.HTTP_201_CREATED,
        )


class PaymentListView(APIView):
    """
    Admin ledger listing.

    GET /api/v1/payments/?page=1&limit=50&parentId=42&status=completed
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="list_payments",
        summary="List payments",
        parameters=[
            OpenApiParameter(name="page", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY),
            OpenApiParameter(
                name="limit",
                type=OpenApiTypes.INT,
                location=OpenApiParameter.QUERY,
                description=f"Page size (default {DEFAULT_PAGE_SIZE})",
            ),
            OpenApiParameter(name="parentId", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY),
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY),
        ],
        responses={200: OpenApiResponse(description="{payments, totalPages, currentPage, total}")},
        tags=["Payments - Ledger"],
    )
    def get(self, request):
        params = request.query_params
        listing = PaymentQueryService.admin_list(
            page=parse_positive_int(params.get("page"), 1),
            limit=parse_positive_int(params.get("limit"), DEFAULT_PAGE_SIZE),
            parent_id=params.get("parentId") or None,
            status=params.get("status") or None,
        )
        listing["payments"] = PaymentAdminSerializer(listing["payments"], many=True).data
        return Response(listing)


class ParentPaymentListView(APIView):
    """
    Ledger entries paid by one parent.

    GET /api/v1/payments/parent/{parent_id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_parent_payments",
        summary="List a parent's payments",
        responses={200: PaymentSerializer(many=True)},
        tags=["Payments - Ledger"],
    )
    def get(self, request, parent_id):
        payments = PaymentQueryService.list_for_parent(parent_id, request.user)
        serializer_class = payment_serializer_for(request.user)
        return Response(serializer_class(payments, many=True).data)


class PaymentDetailView(APIView):
    """
    One ledger entry, filtered by role.

    GET /api/v1/payments/{payment_ref}/details/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_payment",
        summary="Get payment details",
        parameters=[PAYMENT_REF_PARAMETER],
        responses={
            200: PaymentAdminSerializer,
            403: OpenApiResponse(description="Not the paying parent"),
            404: OpenApiResponse(description="Payment not found"),
        },
        tags=["Payments - Ledger"],
    )
    def get(self, request, payment_ref):
        payment = PaymentQueryService.get_for_user(payment_ref, request.user)
        return Response(payment_serializer_for(request.user)(payment).data)


class RefundEligibilityView(APIView):
    """
    Refund balance of a ledger entry.

    GET /api/v1/payments/{payment_ref}/refund-eligibility/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_refund_eligibility",
        summary="Get refund eligibility",
        parameters=[PAYMENT_REF_PARAMETER],
        responses={200: OpenApiResponse(description="Refund balance; canRefund is true only for admins")},
        tags=["Payments - Ledger"],
    )
    def get(self, request, payment_ref):
        payment = PaymentQueryService.get_for_user(payment_ref, request.user)
        return Response(PaymentQueryService.refund_eligibility(payment, request.user))


# =============================================================================
# Refunds
# =============================================================================


class RefundRequestView(APIView):
    """
    File a pending refund request.

    POST /api/v1/refunds/request/

    Request body:
        {"paymentId": "sq_pay_123", "amount": 5000, "reason": "goodwill", "notes": ""}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="request_refund",
        summary="Request a refund",
        request=RefundRequestSerializer,
        responses={
            201: RefundSerializer,
            400: OpenApiResponse(description="Amount exceeds balance, already refunded or already pending"),
            404: OpenApiResponse(description="Payment not found"),
        },
        tags=["Refunds"],
    )
    def post(self, request):
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payment = PaymentQueryService.get_for_user(data["paymentId"], request.user)
        refund = RefundService.request_refund(
            payment.pk,
            data["amount"],
            reason=data["reason"],
            notes=data["notes"],
            requested_by=request.user,
            source=RefundSource.ADMIN_DASHBOARD if is_admin(request.user) else RefundSource.WEB,
        )
        return Response(
            {"success": True, "refund": refund_serializer_for(request.user)(refund).data},
            status=status.HTTP_201_CREATED,
        )


class RefundProcessView(APIView):
    """
    Approve or reject a pending refund.

    POST /api/v1/refunds/process/

    Request body:
        {"paymentId": "sq_pay_123", "refundId": "<uuid>", "action": "approve", "adminNotes": ""}
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="process_refund",
        summary="Approve or reject a refund",
        description=(
            "Approving calls the processor that took the original charge. A full refund "
            "also marks the parent, players and registrations refunded."
        ),
        request=RefundProcessSerializer,
        responses={
            200: OpenApiResponse(description="{success, refund, payment}"),
            402: OpenApiResponse(description="Processor rejected the refund"),
            409: OpenApiResponse(description="Refund already processed"),
        },
        tags=["Refunds"],
    )
    def post(self, request):
        serializer = RefundProcessSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        outcome = RefundService.process_refund(
            data["paymentId"],
            data["refundId"],
            data["action"],
            admin_notes=data["adminNotes"],
            admin=request.user,
        )
        return Response(
            {
                "success": True,
                "refund": RefundAdminSerializer(outcome.refund).data,
                "payment": PaymentAdminSerializer(outcome.payment).data,
                "playersUpdated": outcome.summary.players_updated,
                "parentUpdated": outcome.summary.parent_updated,
            }
        )


class RefundedPaymentListView(APIView):
    """
    Ledger entries having any refund record.

    GET /api/v1/refunds/all/
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="list_refunded_payments",
        summary="List payments with refunds",
        responses={200: PaymentAdminSerializer(many=True)},
        tags=["Refunds"],
    )
    def get(self, request):
        payments = PaymentQueryService.payments_with_refunds()
        return Response(PaymentAdminSerializer(payments, many=True).data)


class PendingRefundListView(APIView):
    """
    Pending refund records, oldest first.

    GET /api/v1/refunds/pending/
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="list_pending_refunds",
        summary="List pending refunds",
        responses={200: PendingRefundSerializer(many=True)},
        tags=["Refunds"],
    )
    def get(self, request):
        refunds = PaymentQueryService.pending_refunds()
        return Response(PendingRefundSerializer(refunds, many=True).data)


# =============================================================================
# Reconciliation
# =============================================================================


class PaymentRefundSyncView(APIView):
    """
    Import processor refunds for one ledger entry.

    POST /api/v1/payments/{payment_ref}/sync-refunds/
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="sync_payment_refunds",
        summary="Sync refunds for a payment",
        parameters=[PAYMENT_REF_PARAMETER],
        request=None,
        responses={200: OpenApiResponse(description="Sync result for the payment")},
        tags=["Payments - Reconciliation"],
    )
    def post(self, request, payment_ref):
        result = ReconciliationService.sync_one(payment_ref)
        return Response({"success": result.found, **result.to_dict()})


class RefundSyncAllView(APIView):
    """
    Sync every completed entry that is not fully refunded.

    POST /api/v1/payments/sync/refunds/

    Runs in the request; a concurrent run answers 409.
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="sync_all_refunds",
        summary="Sync refunds for all open payments",
        request=None,
        responses={
            200: OpenApiResponse(description="Sync summary"),
            409: OpenApiResponse(description="Another sync is running"),
        },
        tags=["Payments - Reconciliation"],
    )
    def post(self, request):
        summary = ReconciliationService.sync_all()
        return Response({"success": True, **summary.to_dict()})


class RefundSyncByDateView(APIView):
    """
    Sync completed entries created inside a window.

    POST /api/v1/payments/sync/refunds/by-date/

    Request body:
        {"startDate": "2025-01-01T00:00:00Z", "endDate": "2025-01-31T23:59:59Z"}
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="sync_refunds_by_date",
        summary="Sync refunds for a date range",
        request=DateRangeSerializer,
        responses={200: OpenApiResponse(description="Sync summary")},
        tags=["Payments - Reconciliation"],
    )
    def post(self, request):
        serializer = DateRangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        summary = ReconciliationService.sync_by_date_range(
            serializer.validated_data["startDate"],
            serializer.validated_data["endDate"],
        )
        return Response({"success": True, **summary.to_dict()})


class UnknownPaymentRefundsView(APIView):
    """
    Processor refunds whose payment is not in the ledger.

    GET /api/v1/payments/sync/unknown-refunds/?startDate=...&endDate=...

    Reported only; nothing is imported.
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="find_unknown_payment_refunds",
        summary="Find refunds for unknown payments",
        parameters=[
            OpenApiParameter(name="startDate", type=OpenApiTypes.DATETIME, location=OpenApiParameter.QUERY),
            OpenApiParameter(name="endDate", type=OpenApiTypes.DATETIME, location=OpenApiParameter.QUERY),
        ],
        responses={200: OpenApiResponse(description="Unknown refunds report")},
        tags=["Payments - Reconciliation"],
    )
    def get(self, request):
        serializer = OptionalDateRangeSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        report = ReconciliationService.find_refunds_for_unknown_payments(
            start=serializer.validated_data.get("startDate"),
            end=serializer.validated_data.get("endDate"),
        )
        return Response(report)


# =============================================================================
# Processor Configuration
# =============================================================================


class FrontendConfigView(APIView):
    """
    Non-sensitive settings for the browser payment SDK.

    GET /api/v1/payment-config/frontend/config/?processor=square
    """

    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="get_frontend_payment_config",
        summary="Get browser SDK settings",
        parameters=[
            OpenApiParameter(
                name="processor",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                description="Preferred processor kind, if several are active",
            ),
        ],
        responses={200: OpenApiResponse(description="{processor, applicationId, locationId, environment, currency}")},
        tags=["Payments - Configuration"],
    )
    def get(self, request):
        return Response(ProcessorConfigurationService.public_config(request.query_params.get("processor") or None))


class ActiveConfigurationView(APIView):
    """
    Which processor new charges will use.

    GET /api/v1/payment-config/system/active/
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="get_active_payment_config",
        summary="Get active processor",
        responses={200: OpenApiResponse(description="Active configuration summary")},
        tags=["Payments - Configuration"],
    )
    def get(self, request):
        return Response(ProcessorConfigurationService.active_summary())


class ConfigurationListView(APIView):
    """
    GET  /api/v1/payment-config/ - List configurations
    POST /api/v1/payment-config/ - Create configuration
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="list_payment_configs",
        summary="List processor configurations",
        responses={200: ProcessorConfigurationSerializer(many=True)},
        tags=["Payments - Configuration"],
    )
    def get(self, request):
        configs = ProcessorConfigurationService.list_configurations()
        return Response(ProcessorConfigurationSerializer(configs, many=True).data)

    @extend_schema(
        operation_id="create_payment_config",
        summary="Create processor configuration",
        request=ProcessorConfigurationSerializer,
        responses={
            201: ProcessorConfigurationSerializer,
            400: OpenApiResponse(description="Missing credentials for the processor"),
        },
        tags=["Payments - Configuration"],
    )
    def post(self, request):
        serializer = ProcessorConfigurationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        config = ProcessorConfigurationService.create(serializer.validated_data, user=request.user)
        return Response(ProcessorConfigurationSerializer(config).data, status=status.HTTP_201_CREATED)


class ConfigurationDetailView(APIView):
    """
    GET    /api/v1/payment-config/{id}/ - Get configuration
    PUT    /api/v1/payment-config/{id}/ - Update configuration (partial)
    DELETE /api/v1/payment-config/{id}/ - Delete configuration
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="get_payment_config",
        summary="Get processor configuration",
        responses={200: ProcessorConfigurationSerializer},
        tags=["Payments - Configuration"],
    )
    def get(self, request, pk):
        config = ProcessorConfigurationService.get(pk)
        return Response(ProcessorConfigurationSerializer(config).data)

    @extend_schema(
        operation_id="update_payment_config",
        summary="Update processor configuration",
        description="Blank credential fields keep the stored value.",
        request=ProcessorConfigurationUpdateSerializer,
        responses={
            200: ProcessorConfigurationSerializer,
            400: OpenApiResponse(description="Missing credentials or last active configuration"),
            409: OpenApiResponse(description="Configuration changed since expectedVersion"),
        },
        tags=["Payments - Configuration"],
    )
    def put(self, request, pk):
        config = ProcessorConfigurationService.get(pk)
        serializer = ProcessorConfigurationUpdateSerializer(config, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        expected_version = data.pop("expectedVersion", None)

        config = ProcessorConfigurationService.update(
            config,
            data,
            user=request.user,
            expected_version=expected_version,
        )
        return Response(ProcessorConfigurationSerializer(config).data)

    @extend_schema(
        operation_id="delete_payment_config",
        summary="Delete processor configuration",
        responses={
            204: OpenApiResponse(description="Deleted"),
            400: OpenApiResponse(description="Cannot delete the only active configuration"),
        },
        tags=["Payments - Configuration"],
    )
    def delete(self, request, pk):
        config = ProcessorConfigurationService.get(pk)
        ProcessorConfigurationService.delete(config, user=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


class ConfigurationActivateView(APIView):
    """
    Make a configuration active and the default.

    POST /api/v1/payment-config/{id}/activate/
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="activate_payment_config",
        summary="Activate processor configuration",
        request=None,
        responses={200: ProcessorConfigurationSerializer},
        tags=["Payments - Configuration"],
    )
    def post(self, request, pk):
        config = ProcessorConfigurationService.get(pk)
        config = ProcessorConfigurationService.activate(config, user=request.user)
        return Response(ProcessorConfigurationSerializer(config).data)


class ConfigurationTestView(APIView):
    """
    Run the processor health check for one configuration.

    POST /api/v1/payment-config/{id}/test/

    Always answers 200; ``success`` reports the connectivity check outcome.
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="test_payment_config",
        summary="Test processor configuration",
        request=None,
        responses={200: OpenApiResponse(description="{success, message, details}")},
        tags=["Payments - Configuration"],
    )
    def post(self, request, pk):
        config = ProcessorConfigurationService.get(pk)
        result = ProcessorConfigurationService.test(config)
        body = {"success": result.success, "id": str(config.pk), "processor": config.kind}
        if result.data is not None:
            body.update(result.data.to_dict())
        else:
            body["message"] = result.error
            body["errorCode"] = result.error_code
        return Response(body)


class ConfigurationTestAllView(APIView):
    """
    Run health checks for every active configuration.

    POST /api/v1/payment-config/test/all/
    """

    permission_classes = [IsAuthenticated, IsAdminRole]

    @extend_schema(
        operation_id="test_all_payment_configs",
        summary="Test all active processor configurations",
        request=None,
        responses={200: OpenApiResponse(description="{allPassed, results[]}")},
        tags=["Payments - Configuration"],
    )
    def post(self, request):
        return Response(ProcessorConfigurationService.test_all())
