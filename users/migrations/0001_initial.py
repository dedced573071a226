"""Create the per-user biometric account state."""

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Account",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "role",
                    models.CharField(
                        choices=[
                            ("employee", "Employee"),
                            ("group_admin", "Group Admin"),
                            ("management", "Management"),
                            ("super_admin", "Super Admin"),
                        ],
                        default="employee",
                        help_text="Role used to authorise administrative actions.",
                        max_length=20,
                    ),
                ),
                (
                    "company_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Tenant identifier; administrators only act inside their own company.",
                        max_length=64,
                    ),
                ),
                (
                    "face_registered",
                    models.BooleanField(
                        default=False,
                        help_text="Whether an active face profile exists for the user.",
                    ),
                ),
                (
                    "face_enabled",
                    models.BooleanField(
                        default=False,
                        help_text="Whether face verification is enabled for the user.",
                    ),
                ),
                (
                    "face_failure_count",
                    models.PositiveIntegerField(
                        default=0, help_text="Consecutive failed face verifications."
                    ),
                ),
                (
                    "face_locked_until",
                    models.DateTimeField(
                        blank=True,
                        help_text="Face verification is refused until this moment.",
                        null=True,
                    ),
                ),
                (
                    "face_success_count",
                    models.PositiveIntegerField(
                        default=0, help_text="Total successful face verifications."
                    ),
                ),
                (
                    "last_face_verification_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the user last passed face verification.",
                        null=True,
                    ),
                ),
                (
                    "biometric_consent",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the user consented to biometric processing.",
                    ),
                ),
                (
                    "biometric_consent_at",
                    models.DateTimeField(
                        blank=True, help_text="When biometric consent was given.", null=True
                    ),
                ),
                (
                    "mfa_last_used_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the user last completed an OTP challenge.",
                        null=True,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.OneToOneField(
                        help_text="The user this account state belongs to.",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="account",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(
                        fields=["company_id", "role"], name="users_account_company_role_idx"
                    )
                ],
            },
        ),
    ]
