"""
Tests for ChargeService.

The processor is the FakeProcessorAdapter from the fake_adapter fixture.
"""

from unittest.mock import patch

import pytest
from django.contrib.auth import get_user_model
from django.core import mail
from django.db import DatabaseError

from payments.adapters import ChargeResult
from payments.exceptions import (
    ConfigurationError,
    DuplicateChargeError,
    IndeterminateOutcomeError,
    PaymentValidationError,
    ProcessorDeclinedError,
    ProcessorUnavailableError,
)
from payments.models import Payment
from payments.services import ChargeInput, ChargeService
from payments.state_machines import PaymentStatus, RefundAggregateStatus
from registrations.models import Player, PlayerPaymentStatus, PlayerSeason, Registration
from registrations.tests.factories import PlayerFactory

User = get_user_model()


def make_input(parent, players, **overrides):
    values = {
        "source_token": "cnon:card-nonce-ok",
        "amount_cents": 12500,
        "buyer_email": parent.email,
        "parent_id": parent.pk,
        "player_ids": [player.pk for player in players],
        "season": "Spring",
        "year": 2025,
    }
    values.update(overrides)
    return ChargeInput(**values)


@pytest.mark.django_db
class TestChargeSuccess:
    def test_creates_ledger_entry(self, parent, players, square_config, fake_adapter):
        outcome = ChargeService.charge(make_input(parent, players))

        payment = outcome.payment
        assert outcome.replayed is False
        assert payment.payment_id == "square_pay_fake_1"
        assert payment.order_id == "square_order_fake_1"
        assert payment.processor == "square"
        assert payment.configuration == square_config
        assert payment.amount_cents == 12500
        assert payment.currency == "USD"
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.refund_status == RefundAggregateStatus.NONE
        assert payment.refunded_amount_cents == 0
        assert payment.card_brand == "VISA"
        assert payment.card_last4 == "1111"
        assert payment.buyer_email == parent.email
        assert payment.parent == parent
        assert set(payment.players.all()) == set(players)
        assert payment.metadata["season"] == "Spring"
        assert payment.metadata["year"] == 2025

    def test_marks_domain_records_paid(self, parent, players, registrations, square_config, fake_adapter):
        outcome = ChargeService.charge(make_input(parent, players))

        assert outcome.summary.parent_updated is True
        assert outcome.summary.players_updated == 2
        assert outcome.summary.registrations_updated == 2
        assert User.objects.get(pk=parent.pk).payment_complete is True
        assert all(
            status == PlayerPaymentStatus.PAID
            for status in Player.objects.filter(parent=parent).values_list("payment_status", flat=True)
        )
        assert PlayerSeason.objects.filter(payment=outcome.payment).count() == 2
        assert Registration.objects.filter(payment=outcome.payment, payment_complete=True).count() == 2

    def test_sends_processor_request(self, parent, players, square_config, fake_adapter):
        ChargeService.charge(
            make_input(parent, players, description="Spring camp", idempotency_key="charge_abc")
        )

        request = fake_adapter.charge_calls[0]
        assert request.source_token == "cnon:card-nonce-ok"
        assert request.amount_cents == 12500
        assert request.currency == "USD"
        assert request.idempotency_key == "charge_abc"
        assert request.buyer_reference == str(parent.pk)
        assert request.note == "Spring camp"
        assert request.metadata["player_count"] == "2"

    def test_generated_idempotency_key(self, parent, players, square_config, fake_adapter):
        ChargeService.charge(make_input(parent, players))

        key = fake_adapter.charge_calls[0].idempotency_key
        assert key.startswith("charge")
        assert len(key) <= 45

    def test_preferred_processor(self, parent, players, square_config, clover_config, fake_adapter):
        outcome = ChargeService.charge(make_input(parent, players, preferred_processor="clover"))

        assert outcome.payment.processor == "clover"
        assert outcome.payment.configuration == clover_config

    def test_receipt_email_after_commit(
        self, parent, players, square_config, fake_adapter, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            outcome = ChargeService.charge(make_input(parent, players))

        assert len(mail.outbox) == 1
        message = mail.outbox[0]
        assert message.subject == "Payment Confirmation - Basketball Camp"
        assert message.to == [parent.email]
        assert outcome.payment.payment_id in message.body

    def test_no_players_charge(self, parent, square_config, fake_adapter):
        outcome = ChargeService.charge(make_input(parent, []))

        assert outcome.payment.players.count() == 0
        assert outcome.summary.parent_updated is True


@pytest.mark.django_db
class TestChargeValidation:
    @pytest.mark.parametrize("amount", [0, -100, 12.5, "12500", True])
    def test_invalid_amount(self, parent, players, square_config, fake_adapter, amount):
        with pytest.raises(PaymentValidationError):
            ChargeService.charge(make_input(parent, players, amount_cents=amount))

        assert fake_adapter.charge_calls == []

    def test_missing_token(self, parent, players, square_config, fake_adapter):
        with pytest.raises(PaymentValidationError) as exc_info:
            ChargeService.charge(make_input(parent, players, source_token=""))

        assert "source_token" in exc_info.value.details["errors"]

    def test_invalid_email(self, parent, players, square_config, fake_adapter):
        with pytest.raises(PaymentValidationError):
            ChargeService.charge(make_input(parent, players, buyer_email="not-an-email"))

    def test_unknown_parent(self, parent, square_config, fake_adapter):
        with pytest.raises(PaymentValidationError):
            ChargeService.charge(make_input(parent, [], parent_id=999999))

    def test_foreign_player(self, parent, players, square_config, fake_adapter):
        stranger = PlayerFactory()

        with pytest.raises(PaymentValidationError) as exc_info:
            ChargeService.charge(make_input(parent, [*players, stranger]))

        assert exc_info.value.details["foreign_players"] == [str(stranger.pk)]
        assert fake_adapter.charge_calls == []
        assert not Payment.objects.exists()

    def test_missing_player(self, parent, players, square_config, fake_adapter):
        import uuid

        ghost = uuid.uuid4()

        with pytest.raises(PaymentValidationError) as exc_info:
            ChargeService.charge(make_input(parent, players, player_ids=[players[0].pk, ghost]))

        assert exc_info.value.details["missing_players"] == [str(ghost)]

    def test_no_active_configuration(self, parent, players, fake_adapter):
        with pytest.raises(ConfigurationError):
            ChargeService.charge(make_input(parent, players))


@pytest.mark.django_db
class TestChargeFailures:
    def test_decline_leaves_no_rows(self, parent, players, registrations, square_config, fake_adapter):
        fake_adapter.charge_error = ProcessorDeclinedError(
            "Card declined", processor="square", reason="card_declined"
        )

        with pytest.raises(ProcessorDeclinedError):
            ChargeService.charge(make_input(parent, players))

        assert not Payment.objects.exists()
        assert not PlayerSeason.objects.exists()
        assert User.objects.get(pk=parent.pk).payment_complete is False

    def test_unavailable_propagates(self, parent, players, square_config, fake_adapter):
        fake_adapter.charge_error = ProcessorUnavailableError("Square is down", processor="square")

        with pytest.raises(ProcessorUnavailableError):
            ChargeService.charge(make_input(parent, players))

        assert not Payment.objects.exists()

    def test_not_completed_is_declined(self, parent, players, square_config, fake_adapter):
        fake_adapter.charge_status = PaymentStatus.PENDING

        with pytest.raises(ProcessorDeclinedError) as exc_info:
            ChargeService.charge(make_input(parent, players))

        assert exc_info.value.details["raw_status"] == "PENDING"
        assert not Payment.objects.exists()

    def test_persist_failure_is_indeterminate(self, parent, players, square_config, fake_adapter):
        with patch(
            "payments.services.charge_service.PaymentStatusService.mark_paid",
            side_effect=DatabaseError("connection lost"),
        ):
            with pytest.raises(IndeterminateOutcomeError) as exc_info:
                ChargeService.charge(make_input(parent, players, idempotency_key="charge_retry"))

        assert exc_info.value.details["external_id"] == "square_pay_fake_1"
        assert not Payment.objects.exists()


@pytest.mark.django_db
class TestChargeRetries:
    def test_same_key_replays_existing_entry(self, parent, players, square_config, fake_adapter):
        first = ChargeService.charge(make_input(parent, players, idempotency_key="charge_same"))

        second = ChargeService.charge(make_input(parent, players, idempotency_key="charge_same"))

        assert second.replayed is True
        assert second.payment.pk == first.payment.pk
        assert Payment.objects.count() == 1
        assert PlayerSeason.objects.count() == 2

    def test_retry_after_indeterminate_persists_once(self, parent, players, square_config, fake_adapter):
        with patch(
            "payments.services.charge_service.PaymentStatusService.mark_paid",
            side_effect=DatabaseError("connection lost"),
        ):
            with pytest.raises(IndeterminateOutcomeError):
                ChargeService.charge(make_input(parent, players, idempotency_key="charge_retry"))

        outcome = ChargeService.charge(make_input(parent, players, idempotency_key="charge_retry"))

        assert outcome.replayed is False
        assert outcome.payment.payment_id == "square_pay_fake_1"
        assert Payment.objects.count() == 1

    def test_duplicate_error_reads_original_payment(self, parent, players, square_config, fake_adapter):
        original = ChargeResult(
            external_id="square_pay_original",
            status=PaymentStatus.COMPLETED,
            raw_status="COMPLETED",
            amount_cents=12500,
            currency="USD",
        )
        fake_adapter.remember_payment(original)
        fake_adapter.charge_error = DuplicateChargeError(
            "Idempotency key reused",
            processor="square",
            existing_external_id="square_pay_original",
        )

        outcome = ChargeService.charge(make_input(parent, players))

        assert outcome.payment.payment_id == "square_pay_original"
        assert Payment.objects.count() == 1

    def test_duplicate_error_without_original_propagates(self, parent, players, square_config, fake_adapter):
        fake_adapter.charge_error = DuplicateChargeError("Idempotency key reused", processor="square")

        with pytest.raises(DuplicateChargeError):
            ChargeService.charge(make_input(parent, players))
