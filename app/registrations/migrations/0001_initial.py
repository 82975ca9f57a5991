import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Player",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
                ),
                ("full_name", models.CharField(help_text="Player's full name", max_length=150)),
                (
                    "payment_complete",
                    models.BooleanField(
                        default=False, help_text="Whether a completed, unrefunded payment covers this player"
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Latest payment status for this player",
                        max_length=20,
                    ),
                ),
                (
                    "parent",
                    models.ForeignKey(
                        help_text="Parent account that owns this player",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="players",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["full_name"],
                "indexes": [models.Index(fields=["parent", "payment_status"], name="player_parent_status_idx")],
            },
        ),
        migrations.CreateModel(
            name="PlayerSeason",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
                ),
                ("season", models.CharField(blank=True, help_text="Season label, e.g. 'Spring'", max_length=50)),
                ("year", models.PositiveIntegerField(blank=True, help_text="Season year", null=True)),
                (
                    "tryout_id",
                    models.CharField(
                        blank=True, help_text="Tryout this season entry was created for", max_length=100
                    ),
                ),
                (
                    "registration_date",
                    models.DateTimeField(
                        auto_now_add=True, help_text="When the player was registered for the season"
                    ),
                ),
                ("payment_complete", models.BooleanField(default=False, help_text="Whether the season is paid")),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                        ],
                        default="pending",
                        help_text="Payment status for this season",
                        max_length=20,
                    ),
                ),
                (
                    "payment_date",
                    models.DateTimeField(blank=True, help_text="When the season was paid", null=True),
                ),
                (
                    "player",
                    models.ForeignKey(
                        help_text="Player this season entry belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="seasons",
                        to="registrations.player",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["player", "season", "year"], name="player_season_lookup_idx")],
            },
        ),
        migrations.CreateModel(
            name="Registration",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
                ),
                ("season", models.CharField(blank=True, help_text="Season label", max_length=50)),
                ("year", models.PositiveIntegerField(blank=True, help_text="Season year", null=True)),
                ("tryout_id", models.CharField(blank=True, help_text="Tryout identifier", max_length=100)),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Payment status for this registration",
                        max_length=20,
                    ),
                ),
                (
                    "payment_complete",
                    models.BooleanField(default=False, help_text="Whether the registration is paid"),
                ),
                (
                    "payment_date",
                    models.DateTimeField(blank=True, help_text="When the registration was paid", null=True),
                ),
                (
                    "parent",
                    models.ForeignKey(
                        help_text="Parent who registered the player",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="registrations",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "player",
                    models.ForeignKey(
                        help_text="Registered player",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="registrations",
                        to="registrations.player",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["parent", "season", "year"], name="registration_parent_season_idx"),
                    models.Index(fields=["player", "payment_status"], name="registration_player_status_idx"),
                ],
            },
        ),
    ]
