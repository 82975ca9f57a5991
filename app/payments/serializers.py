"""
DRF serializers for payments app.

This module provides serializers for:
- Ledger entries (admin and parent views) and their refund records
- Charge, refund request and refund decision payloads
- Processor configuration CRUD (credentials are write-only)
- Reconciliation date ranges

Request and response keys are camelCase, matching the club frontend.

Related files:
    - views.py: Payment API views
    - services/: Business logic the views delegate to

Usage:
    serializer = ChargeRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    data = PaymentAdminSerializer(payment).data
"""

from __future__ import annotations

from rest_framework import serializers

from payments.models import Payment, ProcessorConfiguration, Refund
from payments.state_machines import (
    Currency,
    ProcessorEnvironment,
    ProcessorKind,
    RefundAction,
)

# =============================================================================
# Ledger Read Serializers
# =============================================================================


class RefundSerializer(serializers.ModelSerializer):
    """
    Refund record as shown to the paying parent.

    The processor refund id is left out; RefundAdminSerializer adds it.

    Fields:
        id: Local refund id
        amount: Amount in minor units
        reason, status, source, notes: Record details
        processedAt: When the record left the pending state
    """

    amount = serializers.IntegerField(source="amount_cents", read_only=True)
    processedAt = serializers.DateTimeField(source="processed_at", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    requestedBy = serializers.IntegerField(source="requested_by_id", read_only=True, allow_null=True)
    refundedBy = serializers.IntegerField(source="refunded_by_id", read_only=True, allow_null=True)

    class Meta:
        model = Refund
        fields = [
            "id",
            "amount",
            "reason",
            "status",
            "source",
            "notes",
            "processedAt",
            "createdAt",
            "requestedBy",
            "refundedBy",
        ]
        read_only_fields = fields


class RefundAdminSerializer(RefundSerializer):
    """Refund record for admins, with the processor refund id (null while pending)."""

    refundId = serializers.CharField(source="external_refund_id", read_only=True, allow_null=True)

    class Meta(RefundSerializer.Meta):
        fields = ["id", "refundId"] + RefundSerializer.Meta.fields[1:]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    """
    Ledger entry as shown to the paying parent.

    Processor identifiers, the card fingerprint, buyer email and parent are
    left out; PaymentAdminSerializer adds them.
    """

    amount = serializers.IntegerField(source="amount_cents", read_only=True)
    refundedAmount = serializers.IntegerField(source="refunded_amount_cents", read_only=True)
    refundStatus = serializers.CharField(source="refund_status", read_only=True)
    receiptUrl = serializers.URLField(source="receipt_url", read_only=True)
    playerIds = serializers.PrimaryKeyRelatedField(source="players", many=True, read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    refunds = RefundSerializer(many=True, read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "processor",
            "amount",
            "currency",
            "status",
            "refundedAmount",
            "refundStatus",
            "receiptUrl",
            "playerIds",
            "metadata",
            "createdAt",
            "refunds",
        ]
        read_only_fields = fields


class PaymentAdminSerializer(PaymentSerializer):
    """Full ledger entry for admins."""

    paymentId = serializers.CharField(source="payment_id", read_only=True)
    orderId = serializers.CharField(source="order_id", read_only=True)
    configurationId = serializers.UUIDField(source="configuration_id", read_only=True, allow_null=True)
    parentId = serializers.IntegerField(source="parent_id", read_only=True, allow_null=True)
    buyerEmail = serializers.EmailField(source="buyer_email", read_only=True)
    rawStatus = serializers.CharField(source="raw_status", read_only=True)
    processedAt = serializers.DateTimeField(source="processed_at", read_only=True)
    cardDetails = serializers.SerializerMethodField()
    version = serializers.IntegerField(read_only=True)
    refunds = RefundAdminSerializer(many=True, read_only=True)

    class Meta(PaymentSerializer.Meta):
        fields = PaymentSerializer.Meta.fields + [
            "paymentId",
            "orderId",
            "configurationId",
            "parentId",
            "buyerEmail",
            "rawStatus",
            "processedAt",
            "cardDetails",
            "version",
        ]
        read_only_fields = fields

    def get_cardDetails(self, obj: Payment) -> dict:
        return {
            "card_brand": obj.card_brand,
            "last_4": obj.card_last4,
            "exp_month": obj.card_exp_month,
            "exp_year": obj.card_exp_year,
        }


class PendingRefundSerializer(RefundAdminSerializer):
    """Pending refund record with enough of its ledger entry for the admin queue."""

    paymentId = serializers.CharField(source="payment.payment_id", read_only=True)
    ledgerId = serializers.UUIDField(source="payment.id", read_only=True)
    paymentAmount = serializers.IntegerField(source="payment.amount_cents", read_only=True)
    refundedAmount = serializers.IntegerField(source="payment.refunded_amount_cents", read_only=True)
    currency = serializers.CharField(source="payment.currency", read_only=True)
    buyerEmail = serializers.EmailField(source="payment.buyer_email", read_only=True)

    class Meta(RefundAdminSerializer.Meta):
        fields = RefundAdminSerializer.Meta.fields + [
            "paymentId",
            "ledgerId",
            "paymentAmount",
            "refundedAmount",
            "currency",
            "buyerEmail",
        ]
        read_only_fields = fields


# =============================================================================
# Charge Serializers
# =============================================================================


class CardDetailsSerializer(serializers.Serializer):
    """Card fingerprint reported by the browser SDK."""

    last_4 = serializers.CharField(max_length=4, required=False, allow_blank=True)
    card_brand = serializers.CharField(max_length=50, required=False, allow_blank=True)
    exp_month = serializers.IntegerField(min_value=1, max_value=12, required=False, allow_null=True)
    exp_year = serializers.IntegerField(min_value=2000, max_value=2100, required=False, allow_null=True)


class ChargeRequestSerializer(serializers.Serializer):
    """
    Serializer for charge requests.

    Amounts are in minor currency units (cents). Player ownership and the
    parent lookup are checked by ChargeService, not here.
    """

    sourceToken = serializers.CharField(max_length=512)
    amount = serializers.IntegerField(min_value=1)
    parentId = serializers.IntegerField(min_value=1)
    playerIds = serializers.ListField(child=serializers.UUIDField(), required=False, default=list)
    season = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")
    year = serializers.IntegerField(min_value=2000, max_value=2100, required=False, allow_null=True)
    tryoutId = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    buyerEmail = serializers.EmailField()
    cardDetails = CardDetailsSerializer(required=False)
    currency = serializers.ChoiceField(choices=Currency.choices, required=False)
    description = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    preferredProcessor = serializers.ChoiceField(choices=ProcessorKind.choices, required=False, allow_null=True)
    idempotencyKey = serializers.CharField(max_length=45, required=False, allow_blank=True)
    metadata = serializers.DictField(required=False, default=dict)


class ChargeResponseSerializer(serializers.Serializer):
    """Payment block of a successful charge response."""

    id = serializers.UUIDField()
    externalId = serializers.CharField()
    amount = serializers.IntegerField()
    currency = serializers.CharField()
    status = serializers.CharField()
    receiptUrl = serializers.CharField(allow_blank=True)
    playersUpdated = serializers.IntegerField()
    parentUpdated = serializers.BooleanField()
    replayed = serializers.BooleanField()


# =============================================================================
# Refund Serializers
# =============================================================================


class RefundRequestSerializer(serializers.Serializer):
    """Serializer for refund requests (amount in minor units)."""

    paymentId = serializers.CharField(max_length=255)
    amount = serializers.IntegerField(min_value=1)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class RefundProcessSerializer(serializers.Serializer):
    """Serializer for an admin approve/reject decision."""

    paymentId = serializers.CharField(max_length=255)
    refundId = serializers.UUIDField()
    action = serializers.ChoiceField(choices=RefundAction.choices)
    adminNotes = serializers.CharField(required=False, allow_blank=True, default="")


class DateRangeSerializer(serializers.Serializer):
    """Creation-time window for reconciliation and refund lookups."""

    startDate = serializers.DateTimeField()
    endDate = serializers.DateTimeField()

    def validate(self, attrs):
        if attrs["startDate"] > attrs["endDate"]:
            raise serializers.ValidationError({"endDate": "endDate must not be before startDate"})
        return attrs


class OptionalDateRangeSerializer(serializers.Serializer):
    startDate = serializers.DateTimeField(required=False)
    endDate = serializers.DateTimeField(required=False)


# =============================================================================
# Configuration Serializers
# =============================================================================


class ProcessorConfigurationSerializer(serializers.ModelSerializer):
    """
    Processor configuration for admins.

    Credentials are write-only: they are accepted on create/update and
    never rendered. ``hasAccessToken`` and ``hasWebhookSignatureKey`` tell
    the admin form whether a secret is stored.
    """

    isActive = serializers.BooleanField(source="is_active", required=False)
    isDefault = serializers.BooleanField(source="is_default", required=False)
    accessToken = serializers.CharField(
        source="access_token", write_only=True, required=False, allow_blank=True, max_length=512
    )
    applicationId = serializers.CharField(source="application_id", required=False, allow_blank=True)
    locationId = serializers.CharField(source="location_id", required=False, allow_blank=True)
    merchantId = serializers.CharField(source="merchant_id", required=False, allow_blank=True)
    webhookSignatureKey = serializers.CharField(
        source="webhook_signature_key", write_only=True, required=False, allow_blank=True
    )
    taxRate = serializers.DecimalField(
        source="tax_rate", max_digits=5, decimal_places=2, min_value=0, max_value=100, required=False
    )
    defaultDescription = serializers.CharField(source="default_description", required=False, allow_blank=True)
    hasAccessToken = serializers.SerializerMethodField()
    hasWebhookSignatureKey = serializers.SerializerMethodField()
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    updatedAt = serializers.DateTimeField(source="updated_at", read_only=True)

    class Meta:
        model = ProcessorConfiguration
        fields = [
            "id",
            "kind",
            "name",
            "isActive",
            "isDefault",
            "environment",
            "accessToken",
            "applicationId",
            "locationId",
            "merchantId",
            "webhookSignatureKey",
            "currency",
            "taxRate",
            "defaultDescription",
            "hasAccessToken",
            "hasWebhookSignatureKey",
            "version",
            "createdAt",
            "updatedAt",
        ]
        read_only_fields = ["id", "version", "createdAt", "updatedAt"]

    def get_hasAccessToken(self, obj: ProcessorConfiguration) -> bool:
        return bool(obj.access_token)

    def get_hasWebhookSignatureKey(self, obj: ProcessorConfiguration) -> bool:
        return bool(obj.webhook_signature_key)


class ProcessorConfigurationUpdateSerializer(ProcessorConfigurationSerializer):
    """Partial update; ``expectedVersion`` guards against concurrent admin edits."""

    expectedVersion = serializers.IntegerField(required=False, min_value=1, write_only=True)
    kind = serializers.ChoiceField(choices=ProcessorKind.choices, required=False)
    environment = serializers.ChoiceField(choices=ProcessorEnvironment.choices, required=False)

    class Meta(ProcessorConfigurationSerializer.Meta):
        fields = ProcessorConfigurationSerializer.Meta.fields + ["expectedVersion"]
