"""
Payment status updates for registration records.

PaymentStatusService is the only writer of the payment flags on parents,
players, player seasons and registrations. It does not open its own
transaction: callers (the charge and refund orchestrators) invoke it inside
the transaction that writes the ledger entry, so a crash can never leave a
paid charge with unpaid domain flags or the other way round.

All writes are targeted update()/bulk operations by id.

Usage:
    from registrations.services import PaymentStatusService

    with transaction.atomic():
        payment = Payment.objects.create(...)
        summary = PaymentStatusService.mark_paid(
            payment=payment,
            players=players,
            season="Spring",
            year=2025,
            tryout_id="",
        )
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.utils import timezone

from core.services import BaseService
from payments.state_machines import PaymentStatus, RefundAggregateStatus
from registrations.models import Player, PlayerPaymentStatus, PlayerSeason, Registration

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from payments.models import Payment


@dataclass
class DomainUpdateSummary:
    """Counts of linked records touched by a payment status change."""

    parent_updated: bool = False
    players_updated: int = 0
    seasons_updated: int = 0
    registrations_updated: int = 0


class PaymentStatusService(BaseService):
    """Flip registration payment flags for charges and full refunds."""

    @classmethod
    def mark_paid(
        cls,
        payment: Payment,
        players: Sequence[Player] = (),
        season: str = "",
        year: int | None = None,
        tryout_id: str = "",
        paid_at: datetime | None = None,
    ) -> DomainUpdateSummary:
        """
        Mark the parent, players and matching registrations as paid.

        Args:
            payment: The ledger entry that was just created
            players: Players covered by the charge (already ownership-checked)
            season: Season label for the new season entries
            year: Season year
            tryout_id: Tryout the charge is for, if any
            paid_at: Payment time (defaults to now)

        Returns:
            DomainUpdateSummary with counts of touched records
        """
        paid_at = paid_at or timezone.now()
        summary = DomainUpdateSummary()

        if payment.parent_id:
            updated = get_user_model().objects.filter(pk=payment.parent_id).update(
                payment_complete=True,
                last_payment_date=paid_at,
            )
            summary.parent_updated = bool(updated)

        player_ids = [player.pk for player in players]
        if not player_ids:
            return summary

        summary.players_updated = Player.objects.filter(pk__in=player_ids).update(
            payment_complete=True,
            payment_status=PlayerPaymentStatus.PAID,
            updated_at=paid_at,
        )

        PlayerSeason.objects.bulk_create(
            [
                PlayerSeason(
                    player_id=player_id,
                    season=season or "",
                    year=year,
                    tryout_id=tryout_id or "",
                    payment_complete=True,
                    payment_status=PlayerPaymentStatus.PAID,
                    payment_date=paid_at,
                    payment=payment,
                )
                for player_id in player_ids
            ]
        )
        summary.seasons_updated = len(player_ids)

        registrations = Registration.objects.filter(
            player_id__in=player_ids,
            payment_complete=False,
        )
        if payment.parent_id:
            registrations = registrations.filter(parent_id=payment.parent_id)
        if season:
            registrations = registrations.filter(season=season)
        if year is not None:
            registrations = registrations.filter(year=year)
        if tryout_id:
            registrations = registrations.filter(tryout_id=tryout_id)

        summary.registrations_updated = registrations.update(
            payment=payment,
            payment_status=PlayerPaymentStatus.PAID,
            payment_complete=True,
            payment_date=paid_at,
            updated_at=paid_at,
        )

        cls.get_logger().info(
            "Marked registration records paid",
            extra={
                "payment_id": str(payment.pk),
                "parent_updated": summary.parent_updated,
                "players_updated": summary.players_updated,
                "registrations_updated": summary.registrations_updated,
            },
        )
        return summary

    @classmethod
    def mark_refunded(
        cls,
        payment: Payment,
        refunded_at: datetime | None = None,
    ) -> DomainUpdateSummary:
        """
        Reverse the paid flags after a full refund of ``payment``.

        Season entries and registrations paid by this ledger entry are marked
        refunded. Parent and player flags are cleared only when no other
        completed, not fully refunded ledger entry still covers them.

        Returns:
            DomainUpdateSummary with counts of touched records
        """
        refunded_at = refunded_at or timezone.now()
        summary = DomainUpdateSummary()

        live_payments = (
            type(payment)
            .objects.filter(status=PaymentStatus.COMPLETED)
            .exclude(refund_status=RefundAggregateStatus.FULL)
            .exclude(pk=payment.pk)
        )

        if payment.parent_id and not live_payments.filter(parent_id=payment.parent_id).exists():
            updated = get_user_model().objects.filter(pk=payment.parent_id).update(
                payment_complete=False,
            )
            summary.parent_updated = bool(updated)

        summary.seasons_updated = PlayerSeason.objects.filter(payment=payment).update(
            payment_complete=False,
            payment_status=PlayerPaymentStatus.REFUNDED,
            updated_at=refunded_at,
        )

        player_ids = list(payment.players.values_list("pk", flat=True))
        still_covered = set(
            live_payments.filter(players__in=player_ids).values_list("players", flat=True)
        )
        refunded_ids = [pk for pk in player_ids if pk not in still_covered]
        if refunded_ids:
            summary.players_updated = Player.objects.filter(pk__in=refunded_ids).update(
                payment_complete=False,
                payment_status=PlayerPaymentStatus.REFUNDED,
                updated_at=refunded_at,
            )

        summary.registrations_updated = Registration.objects.filter(payment=payment).update(
            payment_complete=False,
            payment_status=PlayerPaymentStatus.REFUNDED,
            updated_at=refunded_at,
        )

        cls.get_logger().info(
            "Marked registration records refunded",
            extra={
                "payment_id": str(payment.pk),
                "parent_updated": summary.parent_updated,
                "players_updated": summary.players_updated,
                "registrations_updated": summary.registrations_updated,
            },
        )
        return summary


__all__ = ["DomainUpdateSummary", "PaymentStatusService"]
