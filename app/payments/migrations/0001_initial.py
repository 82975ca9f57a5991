import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models

UUID_PK = (
    "id",
    models.UUIDField(
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
        primary_key=True,
        serialize=False,
    ),
)


def timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"),
        ),
        (
            "updated_at",
            models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
        ),
    ]


PROCESSOR_CHOICES = [("square", "Square"), ("clover", "Clover"), ("stripe", "Stripe"), ("paypal", "PayPal")]
CURRENCY_CHOICES = [("USD", "US Dollar"), ("CAD", "Canadian Dollar"), ("EUR", "Euro"), ("GBP", "British Pound")]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("registrations", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="ProcessorConfiguration",
            fields=[
                UUID_PK,
                *timestamps(),
                (
                    "kind",
                    models.CharField(
                        choices=PROCESSOR_CHOICES,
                        db_index=True,
                        help_text="Processor this configuration connects to",
                        max_length=20,
                    ),
                ),
                ("name", models.CharField(blank=True, help_text="Admin-facing label", max_length=100)),
                (
                    "is_active",
                    models.BooleanField(
                        db_index=True,
                        default=True,
                        help_text="Whether charges may be routed through this configuration",
                    ),
                ),
                (
                    "is_default",
                    models.BooleanField(
                        default=False,
                        help_text="Default configuration when no processor is requested (at most one)",
                    ),
                ),
                (
                    "environment",
                    models.CharField(
                        choices=[("sandbox", "Sandbox"), ("production", "Production")],
                        default="sandbox",
                        help_text="Processor environment",
                        max_length=20,
                    ),
                ),
                (
                    "access_token",
                    models.CharField(
                        blank=True,
                        help_text="Access token, API token, secret key or client secret",
                        max_length=512,
                    ),
                ),
                (
                    "application_id",
                    models.CharField(
                        blank=True,
                        help_text="Public application id, publishable key or client id",
                        max_length=255,
                    ),
                ),
                ("location_id", models.CharField(blank=True, help_text="Square location id", max_length=255)),
                ("merchant_id", models.CharField(blank=True, help_text="Clover merchant id", max_length=255)),
                (
                    "webhook_signature_key",
                    models.CharField(blank=True, help_text="Webhook signing key", max_length=255),
                ),
                (
                    "currency",
                    models.CharField(
                        choices=CURRENCY_CHOICES, default="USD", help_text="ISO 4217 currency code", max_length=3
                    ),
                ),
                (
                    "tax_rate",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0"),
                        help_text="Tax rate percentage (0-100)",
                        max_digits=5,
                        validators=[
                            django.core.validators.MinValueValidator(Decimal("0")),
                            django.core.validators.MaxValueValidator(Decimal("100")),
                        ],
                    ),
                ),
                (
                    "default_description",
                    models.CharField(
                        blank=True,
                        help_text="Note attached to charges without their own description",
                        max_length=255,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1, help_text="Version for optimistic locking - incremented on each save"
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Admin who created this configuration",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "last_modified_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Admin who last modified this configuration",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Processor configuration",
                "verbose_name_plural": "Processor configurations",
                "ordering": ["-is_default", "-updated_at"],
                "indexes": [models.Index(fields=["kind", "is_active"], name="proc_config_kind_active_idx")],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(is_default=True),
                        fields=("is_default",),
                        name="single_default_processor_configuration",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(tax_rate__gte=0) & models.Q(tax_rate__lte=100),
                        name="processor_configuration_tax_rate_range",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                UUID_PK,
                *timestamps(),
                ("payment_id", models.CharField(help_text="Processor payment id", max_length=255, unique=True)),
                (
                    "order_id",
                    models.CharField(
                        blank=True, help_text="Processor order id, if the processor uses orders", max_length=255
                    ),
                ),
                (
                    "processor",
                    models.CharField(
                        choices=PROCESSOR_CHOICES, help_text="Processor that performed the charge", max_length=20
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Charged amount in smallest currency unit (e.g., cents)"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        choices=CURRENCY_CHOICES, default="USD", help_text="ISO 4217 currency code", max_length=3
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="completed",
                        help_text="Ledger status",
                        max_length=20,
                    ),
                ),
                (
                    "raw_status",
                    models.CharField(blank=True, help_text="Processor status string as received", max_length=50),
                ),
                ("receipt_url", models.URLField(blank=True, help_text="Processor receipt link", max_length=500)),
                (
                    "processed_at",
                    models.DateTimeField(blank=True, help_text="When the processor completed the charge", null=True),
                ),
                ("card_brand", models.CharField(blank=True, help_text="Card brand", max_length=50)),
                ("card_last4", models.CharField(blank=True, help_text="Last four card digits", max_length=4)),
                (
                    "card_exp_month",
                    models.PositiveSmallIntegerField(blank=True, help_text="Card expiry month", null=True),
                ),
                (
                    "card_exp_year",
                    models.PositiveSmallIntegerField(blank=True, help_text="Card expiry year", null=True),
                ),
                ("buyer_email", models.EmailField(help_text="Receipt email address", max_length=254)),
                (
                    "refunded_amount_cents",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Sum of completed refunds in smallest currency unit"
                    ),
                ),
                (
                    "refund_status",
                    models.CharField(
                        choices=[
                            ("none", "None"),
                            ("partial", "Partial"),
                            ("full", "Full"),
                            ("processing", "Processing"),
                        ],
                        db_index=True,
                        default="none",
                        help_text="Refund state derived from refund records",
                        max_length=20,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Season, year, tryout, team ids, tournament, player count",
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1, help_text="Version for optimistic locking - incremented on each save"
                    ),
                ),
                (
                    "configuration",
                    models.ForeignKey(
                        blank=True,
                        help_text="Configuration used for the charge",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="payments",
                        to="payments.processorconfiguration",
                    ),
                ),
                (
                    "parent",
                    models.ForeignKey(
                        blank=True,
                        help_text="Parent account that paid",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "players",
                    models.ManyToManyField(
                        blank=True,
                        help_text="Players covered by this payment",
                        related_name="payments",
                        to="registrations.player",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["parent", "status"], name="payment_parent_status_idx"),
                    models.Index(fields=["parent", "-created_at"], name="payment_parent_created_idx"),
                    models.Index(fields=["-created_at"], name="payment_created_desc_idx"),
                    models.Index(fields=["status", "refund_status"], name="payment_status_refund_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(amount_cents__gt=0), name="payment_amount_positive"),
                    models.CheckConstraint(
                        condition=models.Q(refunded_amount_cents__lte=models.F("amount_cents")),
                        name="payment_refunded_not_above_amount",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Refund",
            fields=[
                UUID_PK,
                *timestamps(),
                (
                    "external_refund_id",
                    models.CharField(
                        blank=True, db_index=True, help_text="Processor refund id", max_length=255, null=True
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(help_text="Refund amount in smallest currency unit (e.g., cents)"),
                ),
                ("reason", models.CharField(blank=True, help_text="Reason for the refund", max_length=255)),
                (
                    "notes",
                    models.TextField(blank=True, help_text="Request notes, admin notes and failure messages"),
                ),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("web", "Web"),
                            ("admin_dashboard", "Admin Dashboard"),
                            ("api", "API"),
                            ("processor_dashboard", "Processor Dashboard"),
                        ],
                        default="web",
                        help_text="Where this refund record originated",
                        max_length=30,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("rejected", "Rejected"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the refund (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(blank=True, help_text="When the refund left the pending state", null=True),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1, help_text="Version for optimistic locking - incremented on each save"
                    ),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        help_text="Ledger entry being refunded",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="payments.payment",
                    ),
                ),
                (
                    "refunded_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Admin that approved or rejected the refund",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="processed_refunds",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "requested_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Account that requested the refund",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="requested_refunds",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund",
                "verbose_name_plural": "Refunds",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["payment", "status"], name="refund_payment_status_idx"),
                    models.Index(fields=["status", "created_at"], name="refund_status_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(amount_cents__gt=0), name="refund_amount_positive"),
                    models.UniqueConstraint(
                        condition=models.Q(external_refund_id__isnull=False),
                        fields=("payment", "external_refund_id"),
                        name="refund_external_id_unique_per_payment",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationRun",
            fields=[
                UUID_PK,
                *timestamps(),
                ("started_at", models.DateTimeField(help_text="When this run started")),
                (
                    "completed_at",
                    models.DateTimeField(blank=True, help_text="When this run completed (or failed)", null=True),
                ),
                (
                    "scope",
                    models.CharField(
                        choices=[("all", "All open payments"), ("date_range", "Date range")],
                        default="all",
                        help_text="Which ledger entries this run covered",
                        max_length=20,
                    ),
                ),
                (
                    "range_start",
                    models.DateTimeField(
                        blank=True, help_text="Start of the creation window for date-ranged runs", null=True
                    ),
                ),
                (
                    "range_end",
                    models.DateTimeField(
                        blank=True, help_text="End of the creation window for date-ranged runs", null=True
                    ),
                ),
                (
                    "payments_processed",
                    models.PositiveIntegerField(default=0, help_text="Ledger entries checked against the processor"),
                ),
                (
                    "refunds_added",
                    models.PositiveIntegerField(default=0, help_text="Refund records imported from the processor"),
                ),
                (
                    "amount_added_cents",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Total amount of imported refunds in smallest currency unit"
                    ),
                ),
                (
                    "error_count",
                    models.PositiveIntegerField(default=0, help_text="Ledger entries that failed to sync"),
                ),
                (
                    "errors",
                    models.JSONField(
                        blank=True, default=list, help_text="Per-payment errors: [{payment_id, error_code, message}]"
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("running", "Running"), ("completed", "Completed"), ("failed", "Failed")],
                        db_index=True,
                        default="running",
                        help_text="Current status of this run",
                        max_length=20,
                    ),
                ),
                ("error_message", models.TextField(blank=True, help_text="Error message if the run failed")),
            ],
            options={
                "ordering": ["-started_at"],
                "indexes": [
                    models.Index(fields=["status", "started_at"], name="recon_run_status_started_idx"),
                ],
            },
        ),
    ]
