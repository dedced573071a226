"""Create biometric profiles, the attempt log, devices, OTP challenges and ledgers."""

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import biometrics.models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="FaceProfile",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "template_hash",
                    models.CharField(
                        help_text="sha256 of the plaintext template bytes.", max_length=64
                    ),
                ),
                (
                    "encrypted_template",
                    models.BinaryField(help_text="Fernet token holding the template."),
                ),
                (
                    "key_reference",
                    models.TextField(
                        help_text="Per-profile key sealed by the configured key custodian."
                    ),
                ),
                (
                    "quality_score",
                    models.FloatField(
                        blank=True,
                        help_text="Capture quality reported at registration.",
                        null=True,
                    ),
                ),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                (
                    "verification_count",
                    models.PositiveIntegerField(
                        default=0, help_text="Successful verifications since the last rotation."
                    ),
                ),
                ("last_verification_at", models.DateTimeField(blank=True, null=True)),
                (
                    "registration_device_fingerprint",
                    models.CharField(blank=True, max_length=64),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("deactivated_at", models.DateTimeField(blank=True, null=True)),
                (
                    "user",
                    models.OneToOneField(
                        help_text="Owner of the template.",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="face_profile",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="VerificationAttempt",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("shift_id", models.CharField(blank=True, max_length=64)),
                (
                    "attempt_type",
                    models.CharField(
                        choices=[
                            ("registration", "Registration"),
                            ("update", "Update"),
                            ("start", "Shift start"),
                            ("end", "Shift end"),
                            ("test", "Test"),
                        ],
                        max_length=16,
                    ),
                ),
                ("success", models.BooleanField(default=False)),
                ("confidence", models.FloatField(blank=True, null=True)),
                ("liveness_detected", models.BooleanField(default=False)),
                ("liveness_score", models.FloatField(blank=True, null=True)),
                ("quality_score", models.FloatField(blank=True, null=True)),
                (
                    "lighting_conditions",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("poor", "Poor"),
                            ("fair", "Fair"),
                            ("good", "Good"),
                            ("excellent", "Excellent"),
                        ],
                        max_length=16,
                    ),
                ),
                ("failure_reason", models.CharField(blank=True, max_length=255)),
                ("device_fingerprint", models.CharField(blank=True, max_length=64)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("user_agent", models.CharField(blank=True, max_length=512)),
                ("location_data", models.JSONField(blank=True, null=True)),
                ("duration_ms", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "created_at",
                    models.DateTimeField(db_index=True, default=django.utils.timezone.now),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="verification_attempts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(
                        fields=["user", "created_at"], name="bio_attempt_user_created_idx"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="DeviceFingerprint",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "fingerprint",
                    models.CharField(
                        help_text="sha256 over device characteristics.", max_length=64
                    ),
                ),
                ("device_info", models.JSONField(blank=True, default=dict)),
                ("first_seen_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("last_seen_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("sighting_count", models.PositiveIntegerField(default=1)),
                ("is_trusted", models.BooleanField(default=False)),
                ("risk_score", models.PositiveSmallIntegerField(default=50)),
                ("is_blocked", models.BooleanField(default=False)),
                ("block_reason", models.CharField(blank=True, max_length=255)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="device_fingerprints",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("user", "fingerprint"), name="bio_device_user_fingerprint_uniq"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="OtpChallenge",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "purpose",
                    models.CharField(
                        choices=[
                            ("login", "Login"),
                            ("shift_start", "Shift start"),
                            ("shift_end", "Shift end"),
                            ("face_verification", "Face verification"),
                            ("settings_access", "Settings access"),
                        ],
                        default="login",
                        max_length=32,
                    ),
                ),
                ("code_hash", models.CharField(max_length=64)),
                ("expires_at", models.DateTimeField(db_index=True)),
                ("attempts", models.PositiveSmallIntegerField(default=0)),
                ("max_attempts", models.PositiveSmallIntegerField(default=5)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="otp_challenges",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("user", "purpose"), name="bio_otp_user_purpose_uniq"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditEntry",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("profile_created", "Profile created"),
                            ("profile_updated", "Profile updated"),
                            ("profile_deleted", "Profile deleted"),
                            ("profile_accessed", "Profile accessed"),
                            ("verification_attempt", "Verification attempt"),
                            ("settings_accessed", "Settings accessed"),
                            ("data_exported", "Data exported"),
                            ("consent_given", "Consent given"),
                            ("consent_revoked", "Consent revoked"),
                            ("data_retention_applied", "Data retention applied"),
                            ("security_breach_detected", "Security breach detected"),
                            ("account_unlocked", "Account unlocked"),
                            ("device_trust_changed", "Device trust changed"),
                            ("otp_issued", "OTP issued"),
                            ("otp_verified", "OTP verified"),
                            ("otp_invalidated", "OTP invalidated"),
                        ],
                        db_index=True,
                        max_length=32,
                    ),
                ),
                ("details", models.JSONField(blank=True, default=dict)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("user_agent", models.CharField(blank=True, max_length=512)),
                ("device_fingerprint", models.CharField(blank=True, max_length=64)),
                (
                    "retention_until",
                    models.DateTimeField(
                        db_index=True, default=biometrics.models.default_audit_retention
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(db_index=True, default=django.utils.timezone.now),
                ),
                (
                    "performed_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Actor when different from the subject.",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        help_text="Subject of the action.",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="biometric_audit_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "audit entries",
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["user", "created_at"], name="bio_audit_user_created_idx")
                ],
            },
        ),
        migrations.CreateModel(
            name="ClientAuditTrail",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("session_id", models.CharField(db_index=True, max_length=128)),
                ("shift_action", models.CharField(max_length=16)),
                ("status", models.CharField(max_length=32)),
                ("confidence_score", models.FloatField(blank=True, null=True)),
                ("total_latency_ms", models.PositiveIntegerField(blank=True, null=True)),
                ("fallback_mode", models.BooleanField(default=False)),
                ("override_reason", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="client_audit_trails",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="ClientAuditStep",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("name", models.CharField(max_length=64)),
                ("status", models.CharField(max_length=32)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("latency_ms", models.PositiveIntegerField(blank=True, null=True)),
                ("error", models.TextField(blank=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "trail",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="steps",
                        to="biometrics.clientaudittrail",
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="ClientAuditEvent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("event", models.CharField(max_length=64)),
                ("occurred_at", models.DateTimeField(blank=True, null=True)),
                ("details", models.JSONField(blank=True, default=dict)),
                (
                    "trail",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="events",
                        to="biometrics.clientaudittrail",
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="OfflineVerification",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("offline_id", models.CharField(max_length=128, unique=True)),
                ("captured_at", models.DateTimeField()),
                ("shift_action", models.CharField(max_length=16)),
                ("face_verification", models.JSONField(blank=True, default=dict)),
                ("location_verification", models.JSONField(blank=True, default=dict)),
                ("sync_attempts", models.PositiveIntegerField(default=1)),
                ("synced_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="offline_verifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
    ]
