"""
Tests for PaymentStatusService.
"""

import pytest
from django.contrib.auth import get_user_model

from payments.state_machines import PaymentStatus, RefundAggregateStatus
from payments.tests.factories import PaymentFactory
from registrations.models import Player, PlayerPaymentStatus, PlayerSeason, Registration
from registrations.services import PaymentStatusService
from registrations.tests.factories import PlayerFactory, RegistrationFactory

User = get_user_model()


@pytest.mark.django_db
class TestMarkPaid:
    def test_marks_parent_players_and_registrations(self, parent, players, registrations):
        payment = PaymentFactory(parent=parent, players=players)

        summary = PaymentStatusService.mark_paid(
            payment=payment,
            players=players,
            season="Spring",
            year=2025,
        )

        assert summary.parent_updated is True
        assert summary.players_updated == 2
        assert summary.seasons_updated == 2
        assert summary.registrations_updated == 2

        parent.refresh_from_db()
        assert parent.payment_complete is True
        assert parent.last_payment_date is not None
        for player in Player.objects.filter(parent=parent):
            assert player.payment_complete is True
            assert player.payment_status == PlayerPaymentStatus.PAID
        seasons = PlayerSeason.objects.filter(payment=payment)
        assert seasons.count() == 2
        assert all(season.season == "Spring" and season.year == 2025 for season in seasons)
        for registration in Registration.objects.filter(parent=parent):
            assert registration.payment_id == payment.pk
            assert registration.payment_complete is True

    def test_only_matching_season_registrations(self, parent, players):
        autumn = RegistrationFactory(player=players[0], season="Fall", year=2025)
        spring = RegistrationFactory(player=players[0], season="Spring", year=2025)
        payment = PaymentFactory(parent=parent, players=players[:1])

        summary = PaymentStatusService.mark_paid(
            payment=payment, players=players[:1], season="Spring", year=2025
        )

        assert summary.registrations_updated == 1
        assert Registration.objects.get(pk=spring.pk).payment_complete is True
        assert Registration.objects.get(pk=autumn.pk).payment_complete is False

    def test_tryout_filters_registrations(self, parent, players):
        tryout = RegistrationFactory(player=players[0], tryout_id="tryout-7")
        RegistrationFactory(player=players[0], tryout_id="tryout-8")
        payment = PaymentFactory(parent=parent, players=players[:1])

        summary = PaymentStatusService.mark_paid(
            payment=payment, players=players[:1], season="Spring", year=2025, tryout_id="tryout-7"
        )

        assert summary.registrations_updated == 1
        assert Registration.objects.get(pk=tryout.pk).payment_complete is True

    def test_already_paid_registration_untouched(self, parent, players):
        first = PaymentFactory(parent=parent, players=players[:1])
        registration = RegistrationFactory(player=players[0])
        PaymentStatusService.mark_paid(payment=first, players=players[:1], season="Spring", year=2025)
        second = PaymentFactory(parent=parent, players=players[:1])

        summary = PaymentStatusService.mark_paid(
            payment=second, players=players[:1], season="Spring", year=2025
        )

        assert summary.registrations_updated == 0
        assert Registration.objects.get(pk=registration.pk).payment_id == first.pk

    def test_without_players_only_parent(self, parent):
        payment = PaymentFactory(parent=parent)

        summary = PaymentStatusService.mark_paid(payment=payment)

        assert summary.parent_updated is True
        assert summary.players_updated == 0
        assert not PlayerSeason.objects.exists()


@pytest.mark.django_db
class TestMarkRefunded:
    def _paid(self, parent, players):
        payment = PaymentFactory(parent=parent, players=players)
        PaymentStatusService.mark_paid(payment=payment, players=players, season="Spring", year=2025)
        return payment

    def _fully_refund(self, payment):
        payment.status = PaymentStatus.REFUNDED
        payment.refund_status = RefundAggregateStatus.FULL
        payment.refunded_amount_cents = payment.amount_cents
        payment.save()

    def test_clears_flags_when_nothing_else_covers(self, parent, players, registrations):
        payment = self._paid(parent, players)
        self._fully_refund(payment)

        summary = PaymentStatusService.mark_refunded(payment)

        assert summary.parent_updated is True
        assert summary.players_updated == 2
        assert summary.seasons_updated == 2
        assert summary.registrations_updated == 2
        assert User.objects.get(pk=parent.pk).payment_complete is False
        assert set(Player.objects.values_list("payment_status", flat=True)) == {PlayerPaymentStatus.REFUNDED}
        assert set(Registration.objects.values_list("payment_status", flat=True)) == {
            PlayerPaymentStatus.REFUNDED
        }

    def test_other_live_payment_keeps_flags(self, parent, players):
        refunded = self._paid(parent, players)
        self._paid(parent, players[:1])
        self._fully_refund(refunded)

        summary = PaymentStatusService.mark_refunded(refunded)

        assert summary.parent_updated is False
        assert summary.players_updated == 1
        assert User.objects.get(pk=parent.pk).payment_complete is True
        assert Player.objects.get(pk=players[0].pk).payment_complete is True
        assert Player.objects.get(pk=players[1].pk).payment_complete is False

    def test_season_history_kept(self, parent, players):
        payment = self._paid(parent, players)
        self._fully_refund(payment)

        PaymentStatusService.mark_refunded(payment)

        seasons = PlayerSeason.objects.filter(payment=payment)
        assert seasons.count() == 2
        assert not any(season.payment_complete for season in seasons)

    def test_other_parents_untouched(self, parent, players):
        other_player = PlayerFactory()
        other_payment = PaymentFactory(parent=other_player.parent, players=[other_player])
        PaymentStatusService.mark_paid(payment=other_payment, players=[other_player])
        payment = self._paid(parent, players)
        self._fully_refund(payment)

        PaymentStatusService.mark_refunded(payment)

        assert Player.objects.get(pk=other_player.pk).payment_complete is True
        assert User.objects.get(pk=other_player.parent_id).payment_complete is True
