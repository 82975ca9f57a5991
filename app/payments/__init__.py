"""
Payments app: the unified payment and refund subsystem.

This app handles:
- Charging card tokens through Square, Clover, Stripe or PayPal
- The local payment ledger and its refund records
- Refund requests and admin approve/reject decisions
- Daily reconciliation of refunds issued from processor dashboards
- Processor configuration management and health checks

Related apps:
    - authentication: User model (the paying parent)
    - registrations: Players, season entries and registrations marked
      paid or refunded alongside the ledger

Usage:
    from payments.services import ChargeInput, ChargeService, RefundService

    outcome = ChargeService.charge(ChargeInput(...))
    refund = RefundService.request_refund(outcome.payment.pk, 5000, reason="goodwill")
"""
