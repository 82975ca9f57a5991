"""
Registration domain models.

- Player: A child registered by a parent account
- PlayerSeason: One season entry per player, carrying payment attribution
- Registration: A tryout/season registration awaiting or holding payment

The payment fields on these models are written only by
registrations.services.PaymentStatusService, which the payment
orchestrators call inside their own transaction.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class PlayerPaymentStatus(models.TextChoices):
    """Payment status shown on players, seasons and registrations."""

    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"


class Player(UUIDPrimaryKeyMixin, BaseModel):
    """
    A player registered by a parent.

    Fields:
        parent: Owning parent account
        full_name: Player's name
        payment_complete: Whether a live payment covers this player
        payment_status: Latest payment status for the player
    """

    parent = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="players",
        help_text="Parent account that owns this player",
    )
    full_name = models.CharField(
        max_length=150,
        help_text="Player's full name",
    )
    payment_complete = models.BooleanField(
        default=False,
        help_text="Whether a completed, unrefunded payment covers this player",
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PlayerPaymentStatus.choices,
        default=PlayerPaymentStatus.PENDING,
        db_index=True,
        help_text="Latest payment status for this player",
    )

    class Meta:
        ordering = ["full_name"]
        indexes = [
            models.Index(fields=["parent", "payment_status"], name="player_parent_status_idx"),
        ]

    def __str__(self) -> str:
        return self.full_name


class PlayerSeason(UUIDPrimaryKeyMixin, BaseModel):
    """
    A player's entry for one season.

    A charge appends an entry marked paid and pointing at the ledger entry;
    a full refund of that ledger entry marks the entry refunded. Entries are
    never deleted so the history stays visible to admins.
    """

    player = models.ForeignKey(
        Player,
        on_delete=models.CASCADE,
        related_name="seasons",
        help_text="Player this season entry belongs to",
    )
    season = models.CharField(
        max_length=50,
        blank=True,
        help_text="Season label, e.g. 'Spring'",
    )
    year = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Season year",
    )
    tryout_id = models.CharField(
        max_length=100,
        blank=True,
        help_text="Tryout this season entry was created for",
    )
    registration_date = models.DateTimeField(
        auto_now_add=True,
        help_text="When the player was registered for the season",
    )
    payment_complete = models.BooleanField(
        default=False,
        help_text="Whether the season is paid",
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PlayerPaymentStatus.choices,
        default=PlayerPaymentStatus.PENDING,
        help_text="Payment status for this season",
    )
    payment_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the season was paid",
    )
    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="player_seasons",
        help_text="Ledger entry that paid this season",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["player", "season", "year"], name="player_season_lookup_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.player} {self.season} {self.year or ''}".strip()


class Registration(UUIDPrimaryKeyMixin, BaseModel):
    """
    A registration of a player for a season or tryout.

    Fields:
        player: Registered player
        parent: Parent who registered the player
        season, year, tryout_id: What the registration is for
        payment_status, payment_complete, payment_date: Payment flags
        payment: Ledger entry that paid the registration
    """

    player = models.ForeignKey(
        Player,
        on_delete=models.CASCADE,
        related_name="registrations",
        help_text="Registered player",
    )
    parent = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="registrations",
        help_text="Parent who registered the player",
    )
    season = models.CharField(
        max_length=50,
        blank=True,
        help_text="Season label",
    )
    year = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Season year",
    )
    tryout_id = models.CharField(
        max_length=100,
        blank=True,
        help_text="Tryout identifier",
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PlayerPaymentStatus.choices,
        default=PlayerPaymentStatus.PENDING,
        db_index=True,
        help_text="Payment status for this registration",
    )
    payment_complete = models.BooleanField(
        default=False,
        help_text="Whether the registration is paid",
    )
    payment_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the registration was paid",
    )
    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="registrations",
        help_text="Ledger entry that paid this registration",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["parent", "season", "year"], name="registration_parent_season_idx"),
            models.Index(fields=["player", "payment_status"], name="registration_player_status_idx"),
        ]

    def __str__(self) -> str:
        return f"Registration({self.player}, {self.season} {self.year or ''})"
