"""Admin registrations for the biometrics app."""

from django.contrib import admin

from .models import (
    AuditEntry,
    ClientAuditTrail,
    DeviceFingerprint,
    FaceProfile,
    OfflineVerification,
    VerificationAttempt,
)


class ReadOnlyLedgerAdmin(admin.ModelAdmin):
    """Ledger rows are written by the services only."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(FaceProfile)
class FaceProfileAdmin(ReadOnlyLedgerAdmin):
    """Profile metadata; the encrypted template and key never leave the database."""

    list_display = (
        "user",
        "is_active",
        "quality_score",
        "verification_count",
        "last_verification_at",
        "created_at",
    )
    list_filter = ("is_active",)
    search_fields = ("user__username", "user__email")
    exclude = ("encrypted_template", "key_reference")
    ordering = ("-created_at",)

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(VerificationAttempt)
class VerificationAttemptAdmin(ReadOnlyLedgerAdmin):
    """Expose the attempt log for auditing."""

    list_display = (
        "created_at",
        "user",
        "attempt_type",
        "success",
        "confidence",
        "liveness_detected",
        "failure_reason",
    )
    list_filter = ("attempt_type", "success", "liveness_detected", "lighting_conditions")
    search_fields = ("user__username", "shift_id", "device_fingerprint")
    ordering = ("-created_at",)


@admin.register(AuditEntry)
class AuditEntryAdmin(ReadOnlyLedgerAdmin):
    list_display = ("created_at", "user", "action", "performed_by", "ip_address")
    list_filter = ("action",)
    search_fields = ("user__username", "ip_address", "device_fingerprint")
    ordering = ("-created_at",)

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(DeviceFingerprint)
class DeviceFingerprintAdmin(admin.ModelAdmin):
    """Review devices; trust changes should go through the API so they are audited."""

    list_display = (
        "user",
        "fingerprint",
        "is_trusted",
        "is_blocked",
        "risk_score",
        "sighting_count",
        "last_seen_at",
    )
    list_filter = ("is_trusted", "is_blocked")
    search_fields = ("user__username", "fingerprint")
    readonly_fields = ("fingerprint", "device_info", "first_seen_at", "last_seen_at")


@admin.register(ClientAuditTrail)
class ClientAuditTrailAdmin(ReadOnlyLedgerAdmin):
    list_display = ("created_at", "session_id", "user", "shift_action", "status", "fallback_mode")
    list_filter = ("status", "shift_action", "fallback_mode")
    search_fields = ("session_id", "user__username")


@admin.register(OfflineVerification)
class OfflineVerificationAdmin(ReadOnlyLedgerAdmin):
    list_display = ("offline_id", "user", "shift_action", "captured_at", "sync_attempts", "synced_at")
    search_fields = ("offline_id", "user__username")
