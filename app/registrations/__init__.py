"""
Registrations application.

Players, their per-season entries and tryout/season registrations. These
records are owned by the club's registration flows; the payment subsystem
flips their payment flags when a charge completes or is fully refunded.

Key components:
    - Player, PlayerSeason, Registration models
    - PaymentStatusService: mark paid / mark refunded

Usage:
    from registrations.models import Player, Registration
    from registrations.services import PaymentStatusService
"""

default_app_config = "registrations.apps.RegistrationsConfig"
