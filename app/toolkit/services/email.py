"""
Email service for centralized email sending.

This module provides the EmailService class for sending emails with:
- Django template rendering for HTML and plain text
- Best-effort delivery: failures are logged and reported as False

Related files:
    - payments/tasks.py: Receipt and refund confirmation tasks
    - payments/templates/emails/: Payment email templates

Configuration:
    Email settings are read from Django settings:
    - EMAIL_BACKEND
    - EMAIL_HOST, EMAIL_PORT
    - DEFAULT_FROM_EMAIL

Usage:
    from toolkit.services.email import EmailService

    EmailService.send(
        to="parent@example.com",
        subject="Payment Confirmation - Basketball Camp",
        template_name="emails/payment_receipt",
        context={"payment": payment},
    )
"""

from __future__ import annotations

import logging
from smtplib import SMTPException

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string
from django.utils.html import strip_tags

from toolkit.helpers import mask_email

logger = logging.getLogger(__name__)


class EmailService:
    """
    Centralized email sending with template support.

    Sending never raises for delivery problems: a mail outage must not undo
    a committed charge or refund, so callers only get a boolean back.
    """

    @staticmethod
    def send(
        to: str | list[str],
        subject: str,
        template_name: str,
        context: dict,
        from_email: str | None = None,
        reply_to: str | None = None,
    ) -> bool:
        """
        Send email using a template.

        Args:
            to: Recipient email address(es)
            subject: Email subject line
            template_name: Name of template (without extension)
                           Looks for: {template_name}.html and {template_name}.txt
            context: Template context variables
            from_email: Sender email (defaults to DEFAULT_FROM_EMAIL)
            reply_to: Reply-to address

        Returns:
            True if email was sent successfully
        """
        recipients = [to] if isinstance(to, str) else list(to)
        recipients = [address for address in recipients if address]
        if not recipients:
            logger.warning(f"Email '{subject}' skipped: no recipients")
            return False

        html_content = render_to_string(f"{template_name}.html", context)
        try:
            text_content = render_to_string(f"{template_name}.txt", context)
        except TemplateDoesNotExist:
            text_content = strip_tags(html_content)

        email = EmailMultiAlternatives(
            subject=subject,
            body=text_content,
            from_email=from_email or settings.DEFAULT_FROM_EMAIL,
            to=recipients,
            reply_to=[reply_to] if reply_to else None,
        )
        email.attach_alternative(html_content, "text/html")

        masked = ", ".join(mask_email(address) for address in recipients)
        try:
            email.send(fail_silently=False)
        except (SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {masked}: {e}")
            return False

        logger.info(f"Email sent to {masked}: {subject}")
        return True
