"""
Helper functions for domain-specific operations.

This module provides domain-aware utility functions for:
- Data masking (email addresses in logs)
- Money formatting for emails and admin displays

Usage:
    from toolkit.helpers import format_minor_units, mask_email

    masked = mask_email("user@example.com")  # u***@example.com
    label = format_minor_units(12500, "USD")  # "$125.00"
"""

from __future__ import annotations

from decimal import Decimal

CURRENCY_SYMBOLS = {
    "USD": "$",
    "CAD": "CA$",
    "EUR": "€",
    "GBP": "£",
}


def mask_email(email: str) -> str:
    """
    Mask email for display.

    Keeps first character, domain, and TLD visible.

    Args:
        email: Email address to mask

    Returns:
        Masked email (e.g., "j***@example.com")

    Example:
        masked = mask_email("john.doe@example.com")  # "j***@example.com"
    """
    if not email or "@" not in email:
        return "***"

    local, domain = email.rsplit("@", 1)

    if len(local) > 1:
        masked_local = local[0] + "***"
    else:
        masked_local = "***"

    return f"{masked_local}@{domain}"


def format_minor_units(amount_cents: int, currency: str = "USD") -> str:
    """Format an amount in minor units with its currency symbol."""
    amount = (Decimal(amount_cents or 0) / Decimal(100)).quantize(Decimal("0.01"))
    symbol = CURRENCY_SYMBOLS.get((currency or "").upper())
    if symbol is None:
        return f"{amount:,} {currency}"
    return f"{symbol}{amount:,}"
