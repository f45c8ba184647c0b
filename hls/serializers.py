from django.conf import settings
from rest_framework import serializers

from .models import Job

# Envelopes older producers wrap the job in.
ENVELOPE_KEYS = ("data", "command")

# Legacy field names -> current ones.
LEGACY_KEYS = {
    "reelId": "correlationId",
    "videoUrl": "sourceURL",
    "folderPath": "destinationPrefix",
}


def unwrap_payload(payload) -> dict:
    """Strip an envelope and map legacy key names onto the current ones."""
    if not isinstance(payload, dict):
        raise serializers.ValidationError({"non_field_errors": ["Job payload must be an object."]})

    for key in ENVELOPE_KEYS:
        inner = payload.get(key)
        if isinstance(inner, dict):
            payload = inner
            break

    data = dict(payload)
    for legacy, current in LEGACY_KEYS.items():
        if legacy in data and current not in data:
            data[current] = data.pop(legacy)
    return data


class JobSubmissionSerializer(serializers.Serializer):
    correlationId = serializers.CharField(max_length=128)
    sourceURL = serializers.URLField(max_length=2048)
    destinationPrefix = serializers.CharField(max_length=1024)
    max_attempts = serializers.IntegerField(min_value=1, max_value=100, required=False)
    backoff_ms = serializers.IntegerField(min_value=0, required=False)

    def to_internal_value(self, data):
        return super().to_internal_value(unwrap_payload(data))

    def validate_correlationId(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("This field may not be blank.")
        return value

    def validate_sourceURL(self, value):
        if not value.lower().startswith(("http://", "https://")):
            raise serializers.ValidationError("Only http(s) sources are supported.")
        return value

    def validate_destinationPrefix(self, value):
        value = value.strip().strip("/")
        if not value:
            raise serializers.ValidationError("Destination prefix may not be empty.")
        if any(part in ("", ".", "..") for part in value.split("/")):
            raise serializers.ValidationError("Destination prefix must be a plain key path.")
        return value

    def create(self, validated_data):
        return Job.objects.create(
            correlation_id=validated_data["correlationId"],
            source_url=validated_data["sourceURL"],
            destination_prefix=validated_data["destinationPrefix"],
            max_attempts=validated_data.get("max_attempts", settings.HLS_JOB_MAX_ATTEMPTS),
            backoff_ms=validated_data.get("backoff_ms", settings.HLS_JOB_BACKOFF_MS),
        )


class JobSerializer(serializers.ModelSerializer):
    class Meta:
        model = Job
        fields = [
            "id",
            "correlation_id",
            "source_url",
            "destination_prefix",
            "status",
            "attempts_made",
            "stalled_count",
            "max_attempts",
            "next_attempt_at",
            "error",
            "outputs",
            "created_at",
            "started_at",
            "finished_at",
            "updated_at",
        ]
        read_only_fields = fields
