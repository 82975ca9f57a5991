import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("payments", "0001_initial"),
        ("registrations", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="playerseason",
            name="payment",
            field=models.ForeignKey(
                blank=True,
                help_text="Ledger entry that paid this season",
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="player_seasons",
                to="payments.payment",
            ),
        ),
        migrations.AddField(
            model_name="registration",
            name="payment",
            field=models.ForeignKey(
                blank=True,
                help_text="Ledger entry that paid this registration",
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="registrations",
                to="payments.payment",
            ),
        ),
    ]
