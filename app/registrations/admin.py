"""
Django admin configuration for registration models.
"""

from django.contrib import admin

from registrations.models import Player, PlayerSeason, Registration


class PlayerSeasonInline(admin.TabularInline):
    model = PlayerSeason
    extra = 0
    readonly_fields = ("payment", "payment_status", "payment_complete", "payment_date")


@admin.register(Player)
class PlayerAdmin(admin.ModelAdmin):
    list_display = ("full_name", "parent", "payment_status", "payment_complete", "created_at")
    list_filter = ("payment_status", "payment_complete")
    search_fields = ("full_name", "parent__email")
    raw_id_fields = ("parent",)
    inlines = [PlayerSeasonInline]


@admin.register(Registration)
class RegistrationAdmin(admin.ModelAdmin):
    list_display = ("player", "parent", "season", "year", "payment_status", "payment_date")
    list_filter = ("payment_status", "season", "year")
    search_fields = ("player__full_name", "parent__email", "tryout_id")
    raw_id_fields = ("player", "parent", "payment")
