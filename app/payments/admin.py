"""
Payment admin configuration.

Registers the ledger, refund records, processor configurations and
reconciliation runs with the Django admin. Ledger entries and refunds are
read-mostly here: refund decisions go through RefundService so the
processor call and the bookkeeping stay together.
"""

from django.contrib import admin

from payments.models import Payment, ProcessorConfiguration, ReconciliationRun, Refund
from toolkit.helpers import format_minor_units

__all__ = [
    "PaymentAdmin",
    "ProcessorConfigurationAdmin",
    "ReconciliationRunAdmin",
    "RefundAdmin",
]


class RefundInline(admin.TabularInline):
    """Refund records shown on their ledger entry (read-only)."""

    model = Refund
    fk_name = "payment"
    extra = 0
    can_delete = False
    fields = ["id", "amount_cents", "status", "source", "external_refund_id", "reason", "processed_at"]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payment.

    Provides visibility into ledger entries and their refund bookkeeping.
    Ledger entries are never deleted.
    """

    list_display = [
        "payment_id",
        "processor",
        "amount_display",
        "status",
        "refund_status",
        "refunded_display",
        "parent",
        "created_at",
    ]
    list_filter = ["processor", "status", "refund_status", "currency", "created_at"]
    search_fields = ["id", "payment_id", "order_id", "buyer_email", "parent__email"]
    readonly_fields = [
        "id",
        "payment_id",
        "order_id",
        "processor",
        "configuration",
        "amount_cents",
        "currency",
        "status",
        "raw_status",
        "refunded_amount_cents",
        "refund_status",
        "processed_at",
        "created_at",
        "updated_at",
        "version",
    ]
    raw_id_fields = ["parent"]
    filter_horizontal = ["players"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [RefundInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "payment_id", "order_id", "processor", "configuration"),
            },
        ),
        (
            "Amount",
            {
                "fields": ("amount_cents", "currency", "status", "raw_status", "processed_at"),
            },
        ),
        (
            "Refunds",
            {
                "fields": ("refunded_amount_cents", "refund_status"),
            },
        ),
        (
            "Buyer",
            {
                "fields": ("buyer_email", "parent", "players", "receipt_url"),
            },
        ),
        (
            "Card",
            {
                "fields": ("card_brand", "card_last4", "card_exp_month", "card_exp_year"),
                "classes": ("collapse",),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata", "version"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def amount_display(self, obj: Payment) -> str:
        """Display the amount formatted as currency."""
        return format_minor_units(obj.amount_cents, obj.currency)

    amount_display.short_description = "Amount"

    def refunded_display(self, obj: Payment) -> str:
        return format_minor_units(obj.refunded_amount_cents, obj.currency)

    refunded_display.short_description = "Refunded"

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for ledger entries (audit trail)."""
        return False


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    """
    Admin configuration for Refund.

    Provides visibility into refund status and history. Status is managed
    by django-fsm and cannot be edited here.
    """

    list_display = [
        "id",
        "payment",
        "amount_display",
        "status",
        "source",
        "reason",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "source", "created_at"]
    search_fields = [
        "id",
        "external_refund_id",
        "payment__payment_id",
        "reason",
    ]
    readonly_fields = [
        "id",
        "payment",
        "amount_cents",
        "status",
        "source",
        "external_refund_id",
        "requested_by",
        "refunded_by",
        "processed_at",
        "created_at",
        "updated_at",
        "version",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "payment", "status", "source"),
            },
        ),
        (
            "Refund Details",
            {
                "fields": ("amount_cents", "reason", "external_refund_id", "notes"),
            },
        ),
        (
            "Audit",
            {
                "fields": ("requested_by", "refunded_by", "processed_at", "version"),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def amount_display(self, obj: Refund) -> str:
        """Display the amount formatted as currency."""
        return format_minor_units(obj.amount_cents, obj.payment.currency)

    amount_display.short_description = "Amount"

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for refunds (audit trail)."""
        return False


@admin.register(ProcessorConfiguration)
class ProcessorConfigurationAdmin(admin.ModelAdmin):
    """
    Admin configuration for ProcessorConfiguration.

    Credentials are excluded; they are managed through the payment-config
    API so the single-default and last-active rules are enforced.
    """

    list_display = ["name", "kind", "environment", "is_active", "is_default", "currency", "updated_at"]
    list_filter = ["kind", "environment", "is_active", "is_default"]
    search_fields = ["name", "location_id", "merchant_id"]
    exclude = ["access_token", "webhook_signature_key"]
    readonly_fields = [
        "id",
        "kind",
        "is_active",
        "is_default",
        "created_by",
        "last_modified_by",
        "created_at",
        "updated_at",
        "version",
    ]
    ordering = ["-is_default", "-updated_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(ReconciliationRun)
class ReconciliationRunAdmin(admin.ModelAdmin):
    """
    Admin configuration for ReconciliationRun.

    Provides visibility into refund sync history and results.
    Runs are created by the reconciliation service and should not be
    manually modified.
    """

    list_display = [
        "id",
        "started_at",
        "scope",
        "status",
        "duration_display",
        "payments_processed",
        "refunds_added",
        "error_count",
    ]
    list_filter = ["status", "scope", "started_at"]
    search_fields = ["id"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "started_at",
        "completed_at",
        "duration_display",
        "scope",
        "range_start",
        "range_end",
        "payments_processed",
        "refunds_added",
        "amount_added_cents",
        "error_count",
        "errors",
        "status",
        "error_message",
    ]
    date_hierarchy = "started_at"
    ordering = ["-started_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "status", "scope", "duration_display"),
            },
        ),
        (
            "Range",
            {
                "fields": ("range_start", "range_end"),
            },
        ),
        (
            "Results Summary",
            {
                "fields": (
                    "payments_processed",
                    "refunds_added",
                    "amount_added_cents",
                    "error_count",
                ),
            },
        ),
        (
            "Timing",
            {
                "fields": ("started_at", "completed_at"),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("errors", "error_message"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def duration_display(self, obj: ReconciliationRun) -> str:
        """Display the run duration in human-readable format."""
        if obj.duration_seconds is not None:
            return f"{obj.duration_seconds:.1f}s"
        return "Running..."

    duration_display.short_description = "Duration"

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for reconciliation runs (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        """Disable adding reconciliation runs through admin."""
        return False
