"""
Admin site configuration for the users app.

Exposes the biometric account state so administrators can inspect lockouts
and consent without touching the database directly.
"""

from django.contrib import admin

from .models import Account


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    """Admin configuration for per-user biometric account state."""

    list_display = (
        "user",
        "role",
        "company_id",
        "face_registered",
        "face_enabled",
        "face_failure_count",
        "face_locked_until",
    )
    list_filter = ("role", "face_registered", "face_enabled", "biometric_consent")
    search_fields = ("user__username", "user__email", "company_id")
    readonly_fields = ("created_at", "updated_at", "face_failure_count", "face_locked_until")
