import base64
import binascii

import numpy as np
from rest_framework import serializers

from biometrics.matcher import as_template
from biometrics.models import OtpChallenge, VerificationAttempt

# Upper bound on template length accepted over HTTP.
MAX_TEMPLATE_DIMENSIONS = 4096


class TemplateField(serializers.Field):
    """Face template given as a JSON array of numbers or base64 little-endian float32."""

    default_error_messages = {
        "invalid": "Template must be a list of numbers or base64 encoded float32 values.",
        "too_long": "Template must not exceed {max_length} values.",
        "malformed": "Template must be a finite, non-zero, one-dimensional vector.",
    }

    def __init__(self, *, max_length=MAX_TEMPLATE_DIMENSIONS, **kwargs):
        self.max_length = max_length
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        if isinstance(data, str):
            try:
                raw = base64.b64decode(data.strip(), validate=True)
            except (binascii.Error, ValueError):
                self.fail("invalid")
            if not raw or len(raw) % 4:
                self.fail("invalid")
            values = np.frombuffer(raw, dtype="<f4")
        elif isinstance(data, (list, tuple)):
            if any(isinstance(value, bool) or not isinstance(value, (int, float)) for value in data):
                self.fail("invalid")
            values = data
        else:
            self.fail("invalid")

        if len(values) > self.max_length:
            self.fail("too_long", max_length=self.max_length)
        try:
            return as_template(values)
        except ValueError:
            self.fail("malformed")

    def to_representation(self, value):
        return [float(item) for item in value]


class DeviceInfoSerializer(serializers.Serializer):
    user_agent = serializers.CharField(max_length=512, required=False, allow_blank=True, allow_null=True)
    platform = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    screen_resolution = serializers.CharField(
        max_length=32, required=False, allow_blank=True, allow_null=True
    )
    timezone = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    language = serializers.CharField(max_length=32, required=False, allow_blank=True, allow_null=True)
    device_model = serializers.CharField(
        max_length=128, required=False, allow_blank=True, allow_null=True
    )
    app_version = serializers.CharField(max_length=32, required=False, allow_blank=True, allow_null=True)
    os_version = serializers.CharField(max_length=32, required=False, allow_blank=True, allow_null=True)


class LocationSerializer(serializers.Serializer):
    latitude = serializers.FloatField(min_value=-90.0, max_value=90.0)
    longitude = serializers.FloatField(min_value=-180.0, max_value=180.0)
    accuracy = serializers.FloatField(min_value=0.0, required=False, allow_null=True)


def _score_field():
    return serializers.FloatField(min_value=0.0, max_value=1.0, required=False, allow_null=True)


class FaceRegistrationSerializer(serializers.Serializer):
    template = TemplateField()
    consent_given = serializers.BooleanField(default=False)
    quality_score = _score_field()
    device_info = DeviceInfoSerializer(required=False)


class FaceVerificationSerializer(serializers.Serializer):
    template = TemplateField()
    verification_type = serializers.ChoiceField(
        choices=[
            VerificationAttempt.AttemptType.START,
            VerificationAttempt.AttemptType.END,
            VerificationAttempt.AttemptType.TEST,
        ]
    )
    liveness_detected = serializers.BooleanField(default=False)
    liveness_score = _score_field()
    quality_score = _score_field()
    lighting_conditions = serializers.ChoiceField(
        choices=VerificationAttempt.Lighting.choices, required=False, allow_blank=True
    )
    shift_id = serializers.CharField(max_length=64, required=False, allow_blank=True)
    device_info = DeviceInfoSerializer(required=False)
    location = LocationSerializer(required=False, allow_null=True)


class FaceRotationSerializer(serializers.Serializer):
    template = TemplateField()
    quality_score = _score_field()
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)
    device_info = DeviceInfoSerializer(required=False)


class OtpIssueSerializer(serializers.Serializer):
    email = serializers.EmailField()
    purpose = serializers.ChoiceField(
        choices=OtpChallenge.Purpose.choices, default=OtpChallenge.Purpose.LOGIN
    )


class OtpVerifySerializer(OtpIssueSerializer):
    code = serializers.RegexField(r"^\s*\d{4,10}\s*$", max_length=16)


class ClientAuditStepSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=64)
    status = serializers.CharField(max_length=32)
    started_at = serializers.DateTimeField(required=False, allow_null=True)
    completed_at = serializers.DateTimeField(required=False, allow_null=True)
    latency_ms = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    error = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    metadata = serializers.DictField(required=False)


class ClientAuditEventSerializer(serializers.Serializer):
    event = serializers.CharField(max_length=64)
    occurred_at = serializers.DateTimeField(required=False, allow_null=True)
    details = serializers.DictField(required=False)


class ClientAuditTrailSerializer(serializers.Serializer):
    session_id = serializers.CharField(max_length=128)
    user_id = serializers.IntegerField()
    shift_action = serializers.CharField(max_length=16)
    status = serializers.CharField(max_length=32)
    confidence_score = serializers.FloatField(required=False, allow_null=True)
    total_latency_ms = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    fallback_mode = serializers.BooleanField(default=False)
    override_reason = serializers.CharField(max_length=255, required=False, allow_blank=True)
    steps = ClientAuditStepSerializer(many=True, required=False)
    events = ClientAuditEventSerializer(many=True, required=False)


class OfflineSyncSerializer(serializers.Serializer):
    offline_id = serializers.CharField(max_length=128)
    user_id = serializers.IntegerField()
    captured_at = serializers.DateTimeField()
    shift_action = serializers.CharField(max_length=16)
    face_verification = serializers.DictField()
    location_verification = serializers.DictField(required=False)


class DeviceTrustSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()
    trusted = serializers.BooleanField(allow_null=True, default=None)
    blocked = serializers.BooleanField(allow_null=True, default=None)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)

    def validate(self, attrs):
        if attrs.get("trusted") is None and attrs.get("blocked") is None:
            raise serializers.ValidationError("Provide either 'trusted' or 'blocked'.")
        return attrs
