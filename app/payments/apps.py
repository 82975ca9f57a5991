"""
Payments app configuration.

This app provides the unified payment and refund subsystem:
- Processor adapters (Square, Clover, Stripe, PayPal)
- Processor configuration registry
- Charge and refund orchestrators over the local ledger
- Scheduled refund reconciliation
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
