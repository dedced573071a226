from django.urls import path

from .views import (
    ClientAuditLogView,
    DeviceTrustView,
    FaceProfileView,
    FaceRegisterView,
    FaceStatusView,
    FaceUnlockView,
    FaceVerifyView,
    OfflineSyncView,
    OtpIssueView,
    OtpVerifyView,
    SecurityReportView,
)

app_name = "biometrics"

urlpatterns = [
    path("face/register/", FaceRegisterView.as_view(), name="face-register"),
    path("face/verify/", FaceVerifyView.as_view(), name="face-verify"),
    path("face/profile/", FaceProfileView.as_view(), name="face-profile"),
    path("face/status/", FaceStatusView.as_view(), name="face-status"),
    path("face/unlock/<int:user_id>/", FaceUnlockView.as_view(), name="face-unlock"),
    path("face/audit-log/", ClientAuditLogView.as_view(), name="face-audit-log"),
    path("face/sync-offline/", OfflineSyncView.as_view(), name="face-sync-offline"),
    path("face/security-report/", SecurityReportView.as_view(), name="face-security-report"),
    path("devices/<str:fingerprint>/trust/", DeviceTrustView.as_view(), name="device-trust"),
    path("otp/issue/", OtpIssueView.as_view(), name="otp-issue"),
    path("otp/verify/", OtpVerifyView.as_view(), name="otp-verify"),
]
