"""
Django admin configuration for authentication models.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from authentication.models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Admin configuration for User model.

    Customized for email-based authentication. The payment flags are
    read-only here; they are owned by the payment subsystem.
    """

    list_display = (
        "email",
        "full_name",
        "role",
        "payment_complete",
        "is_active",
        "date_joined",
    )
    list_filter = (
        "role",
        "payment_complete",
        "is_active",
        "is_staff",
    )
    search_fields = ("email", "full_name")
    ordering = ("-date_joined",)
    readonly_fields = ("payment_complete", "last_payment_date", "date_joined", "last_login")

    fieldsets = (
        (None, {"fields": ("email", "password", "full_name")}),
        ("Club", {"fields": ("role", "payment_complete", "last_payment_date")}),
        (
            "Status",
            {"fields": ("is_active", "is_staff", "is_superuser")},
        ),
        ("Permissions", {"fields": ("groups", "user_permissions")}),
        ("Important dates", {"fields": ("date_joined", "last_login")}),
    )

    add_fieldsets = (
        (
            None,
            {
                "classes": ("wide",),
                "fields": ("email", "full_name", "role", "password1", "password2"),
            },
        ),
    )
