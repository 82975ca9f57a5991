"""
Permission classes for payments API.

- IsAdminRole: Club admins (role=admin) or Django staff

Ownership checks for parents (a parent may only see their own ledger
entries) live in PaymentQueryService so the same rule applies outside
the API.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView


class IsAdminRole(permissions.BasePermission):
    """Allows access only to club admins."""

    message = "Admin role required."

    def has_permission(self, request: Request, view: APIView) -> bool:
        user = request.user
        return bool(user and user.is_authenticated and getattr(user, "is_admin", False))
