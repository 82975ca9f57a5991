"""
DRF exception handler that renders application errors.

Service-layer exceptions (core.exceptions.BaseApplicationError and its
subclasses) carry their own error code and HTTP status. This handler turns
them into a uniform JSON envelope:

    {"success": false, "error": {"code": "PAYMENT_NOT_FOUND", "message": "..."}}

``details`` is included only when settings.DEBUG is on so production never
leaks processor internals.

DRF errors (serializer validation, authentication, 404) are rendered in the
same envelope, with field errors under ``details``. Unhandled
exceptions propagate to Django, which answers 500.

Configuration:
    REST_FRAMEWORK = {
        "EXCEPTION_HANDLER": "core.exception_handler.custom_exception_handler",
    }
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings
from rest_framework import exceptions
from rest_framework.response import Response
from rest_framework.views import exception_handler

from .exceptions import BaseApplicationError

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)

# DRF errors rendered with the same codes as service errors
DRF_ERROR_CODES = {
    exceptions.NotAuthenticated: "UNAUTHORIZED",
    exceptions.AuthenticationFailed: "UNAUTHORIZED",
    exceptions.PermissionDenied: "UNAUTHORIZED",
    exceptions.NotFound: "NOT_FOUND",
}


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response | None:
    """
    Convert application errors into API responses.

    Args:
        exc: The raised exception
        context: DRF handler context (view, request, args, kwargs)

    Returns:
        Response for handled errors, None to let Django answer 500
    """
    if isinstance(exc, BaseApplicationError):
        view = context.get("view")
        log_level = logging.ERROR if exc.http_status >= 500 else logging.INFO
        logger.log(
            log_level,
            f"Application error in {view.__class__.__name__ if view else 'unknown view'}: {exc}",
            extra={
                "error_code": exc.error_code,
                "http_status": exc.http_status,
            },
        )
        return Response(
            {
                "success": False,
                "error": exc.to_dict(include_details=settings.DEBUG),
            },
            status=exc.http_status,
        )

    response = exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, exceptions.ValidationError):
        error = {"code": "VALIDATION", "message": "Invalid request", "details": response.data}
    else:
        code = DRF_ERROR_CODES.get(type(exc), getattr(exc, "default_code", "error").upper())
        detail = response.data.get("detail", "") if isinstance(response.data, dict) else response.data
        error = {"code": code, "message": str(detail)}
    response.data = {"success": False, "error": error}
    return response
