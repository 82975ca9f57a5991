"""
Tests for payment models.

Covers refund bookkeeping on the ledger entry, the refund state machine,
processor configuration helpers and database constraints.
"""

from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction
from django_fsm import TransitionNotAllowed

from payments.models import (
    Payment,
    ProcessorConfiguration,
    ReconciliationRun,
    ReconciliationRunStatus,
    Refund,
    cents_to_decimal,
)
from payments.services import SyncSummary
from payments.state_machines import (
    PaymentStatus,
    ProcessorKind,
    RefundAggregateStatus,
    RefundStatus,
)
from payments.tests.factories import (
    PaymentFactory,
    ProcessorConfigurationFactory,
    RefundFactory,
)


# =============================================================================
# Payment
# =============================================================================


class TestCentsToDecimal:
    def test_two_places(self):
        assert cents_to_decimal(12500) == Decimal("125.00")
        assert cents_to_decimal(1) == Decimal("0.01")
        assert cents_to_decimal(0) == Decimal("0.00")


@pytest.mark.django_db
class TestPaymentRefundTotals:
    """recompute_refund_totals() derives totals from refund records only."""

    def test_no_refunds_is_none(self):
        payment = PaymentFactory(amount_cents=10000)

        payment.recompute_refund_totals()

        assert payment.refunded_amount_cents == 0
        assert payment.refund_status == RefundAggregateStatus.NONE

    def test_completed_partial_refund(self):
        payment = PaymentFactory(amount_cents=10000)
        RefundFactory(payment=payment, amount_cents=2500, status=RefundStatus.COMPLETED)

        payment.recompute_refund_totals()

        assert payment.refunded_amount_cents == 2500
        assert payment.refund_status == RefundAggregateStatus.PARTIAL
        assert payment.status == PaymentStatus.COMPLETED

    def test_completed_full_refund_marks_entry_refunded(self):
        payment = PaymentFactory(amount_cents=10000)
        RefundFactory(payment=payment, amount_cents=4000, status=RefundStatus.COMPLETED)
        RefundFactory(payment=payment, amount_cents=6000, status=RefundStatus.COMPLETED)

        payment.recompute_refund_totals()

        assert payment.refunded_amount_cents == 10000
        assert payment.refund_status == RefundAggregateStatus.FULL
        assert payment.status == PaymentStatus.REFUNDED

    def test_pending_covering_balance_is_processing(self):
        payment = PaymentFactory(amount_cents=10000)
        RefundFactory(payment=payment, amount_cents=3000, status=RefundStatus.COMPLETED)
        RefundFactory(payment=payment, amount_cents=7000, status=RefundStatus.PENDING)

        payment.recompute_refund_totals()

        assert payment.refunded_amount_cents == 3000
        assert payment.refund_status == RefundAggregateStatus.PROCESSING

    def test_pending_below_balance_keeps_partial(self):
        payment = PaymentFactory(amount_cents=10000)
        RefundFactory(payment=payment, amount_cents=3000, status=RefundStatus.COMPLETED)
        RefundFactory(payment=payment, amount_cents=1000, status=RefundStatus.PENDING)

        payment.recompute_refund_totals()

        assert payment.refund_status == RefundAggregateStatus.PARTIAL

    def test_failed_and_rejected_do_not_count(self):
        payment = PaymentFactory(amount_cents=10000)
        RefundFactory(payment=payment, amount_cents=5000, status=RefundStatus.FAILED)
        RefundFactory(payment=payment, amount_cents=5000, status=RefundStatus.REJECTED)

        payment.recompute_refund_totals()

        assert payment.refunded_amount_cents == 0
        assert payment.refund_status == RefundAggregateStatus.NONE

    def test_available_and_pending_amounts(self):
        payment = PaymentFactory(amount_cents=10000, refunded_amount_cents=2500)
        RefundFactory(payment=payment, amount_cents=1500)

        assert payment.available_refund_cents == 7500
        assert payment.pending_refund_cents == 1500
        assert payment.amount == Decimal("100.00")
        assert payment.refunded_amount == Decimal("25.00")


@pytest.mark.django_db
class TestPaymentPersistence:
    def test_save_increments_version(self):
        payment = PaymentFactory()
        assert payment.version == 1

        payment.receipt_url = "https://receipts.example.com/1"
        payment.save()

        assert payment.version == 2
        assert Payment.objects.get(pk=payment.pk).version == 2

    def test_payment_id_unique(self):
        PaymentFactory(payment_id="sq_pay_dupe")

        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentFactory(payment_id="sq_pay_dupe")

    def test_refunded_cannot_exceed_amount(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentFactory(amount_cents=1000, refunded_amount_cents=1001)

    def test_deleting_configuration_keeps_payment(self):
        config = ProcessorConfigurationFactory()
        payment = PaymentFactory(configuration=config)

        config.delete()

        payment = Payment.objects.get(pk=payment.pk)
        assert payment.configuration_id is None
        assert payment.processor == ProcessorKind.SQUARE


# =============================================================================
# Refund
# =============================================================================


@pytest.mark.django_db
class TestRefundStateMachine:
    """Admin rejection is the one model transition; terminal states are final."""

    def test_reject(self, admin_user):
        refund = RefundFactory()

        refund.reject(admin_notes="Outside refund window", refunded_by=admin_user)

        assert refund.status == RefundStatus.REJECTED
        assert refund.notes == "Outside refund window"
        assert refund.refunded_by == admin_user

    def test_reject_keeps_earlier_notes(self):
        refund = RefundFactory(notes="Requested by parent")

        refund.reject(admin_notes="Outside refund window")

        assert refund.notes == "Requested by parent\nOutside refund window"
        assert refund.processed_at is not None

    @pytest.mark.parametrize("terminal", [RefundStatus.COMPLETED, RefundStatus.FAILED, RefundStatus.REJECTED])
    def test_terminal_states_are_final(self, terminal):
        refund = RefundFactory(status=terminal)

        with pytest.raises(TransitionNotAllowed):
            refund.reject()

    def test_status_cannot_be_assigned_directly(self):
        refund = RefundFactory()

        with pytest.raises(AttributeError):
            refund.status = RefundStatus.COMPLETED

    def test_amount_must_be_positive(self):
        payment = PaymentFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            Refund.objects.create(payment=payment, amount_cents=0)

    def test_external_id_unique_per_payment(self):
        payment = PaymentFactory()
        RefundFactory(payment=payment, external_refund_id="sq_ref_9", status=RefundStatus.COMPLETED)

        with pytest.raises(IntegrityError), transaction.atomic():
            RefundFactory(payment=payment, external_refund_id="sq_ref_9", status=RefundStatus.COMPLETED)

    def test_pending_refunds_without_external_id_allowed(self):
        payment = PaymentFactory()
        RefundFactory(payment=payment, amount_cents=100)
        RefundFactory(payment=payment, amount_cents=100)

        assert payment.refunds.filter(external_refund_id__isnull=True).count() == 2


# =============================================================================
# ProcessorConfiguration
# =============================================================================


@pytest.mark.django_db
class TestProcessorConfiguration:
    def test_missing_credentials_per_kind(self):
        square = ProcessorConfigurationFactory.build(location_id="")
        clover = ProcessorConfigurationFactory.build(clover=True, merchant_id="")
        stripe = ProcessorConfigurationFactory.build(stripe=True)
        paypal = ProcessorConfigurationFactory.build(paypal=True, application_id="")

        assert square.missing_credentials() == ["location_id"]
        assert clover.missing_credentials() == ["merchant_id"]
        assert stripe.missing_credentials() == []
        assert paypal.missing_credentials() == ["application_id"]

    def test_public_config_has_no_secrets(self):
        config = ProcessorConfigurationFactory(webhook_signature_key="whsec")

        public = config.public_config()

        assert public == {
            "processor": "square",
            "applicationId": "sandbox-sq0idb-app",
            "locationId": "L-SANDBOX",
            "environment": "sandbox",
            "currency": "USD",
        }
        assert config.access_token not in public.values()

    def test_single_default(self):
        ProcessorConfigurationFactory(is_default=True)

        with pytest.raises(IntegrityError), transaction.atomic():
            ProcessorConfigurationFactory(is_default=True)

    def test_many_non_default_allowed(self):
        ProcessorConfigurationFactory()
        ProcessorConfigurationFactory()

        assert ProcessorConfiguration.objects.filter(is_default=False).count() == 2

    def test_tax_rate_range(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            ProcessorConfigurationFactory(tax_rate=Decimal("101"))

    def test_save_increments_version(self):
        config = ProcessorConfigurationFactory()

        config.name = "Renamed"
        config.save()

        assert config.version == 2


# =============================================================================
# ReconciliationRun
# =============================================================================


@pytest.mark.django_db
class TestReconciliationRun:
    def test_mark_completed_stores_summary(self):
        from django.utils import timezone

        run = ReconciliationRun.objects.create(started_at=timezone.now())
        summary = SyncSummary(
            payments_processed=3,
            refunds_added=2,
            amount_added_cents=4500,
            errors=[{"payment_id": "sq_pay_1", "error_code": "PROCESSOR_UNAVAILABLE", "message": "down"}],
        )

        run.mark_completed(summary)

        run.refresh_from_db()
        assert run.status == ReconciliationRunStatus.COMPLETED
        assert run.payments_processed == 3
        assert run.refunds_added == 2
        assert run.amount_added_cents == 4500
        assert run.error_count == 1
        assert run.duration_seconds is not None

    def test_mark_failed(self):
        from django.utils import timezone

        run = ReconciliationRun.objects.create(started_at=timezone.now())

        run.mark_failed("database went away")

        run.refresh_from_db()
        assert run.status == ReconciliationRunStatus.FAILED
        assert run.error_message == "database went away"
