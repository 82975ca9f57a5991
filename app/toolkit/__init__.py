"""
Toolkit - Domain-Specific Utilities & Services.

This app provides domain-aware utilities and services:
- EmailService: Centralized email sending with templates
- Helper functions: PII masking, money formatting

Key components:
    - services/email.py: EmailService class
    - helpers.py: Domain-aware utility functions (mask_email, format_minor_units)

Usage:
    from toolkit.services.email import EmailService
    from toolkit.helpers import format_minor_units, mask_email

Note:
    - This app has no models. It's focused on domain-specific utilities.
    - For model-layer patterns, see core/ (BaseModel, model_mixins).
"""
