from urllib.parse import unquote_plus

from rest_framework import serializers

from .models import Video
from .utils import is_video


class VideoSerializer(serializers.ModelSerializer):
    playlistUrl = serializers.CharField(source="playlist_url")
    originalPath = serializers.CharField(source="original_path")
    createdAt = serializers.DateTimeField(source="created_at")
    segmentCount = serializers.IntegerField(source="segment_count")

    class Meta:
        model = Video
        fields = [
            "id",
            "name",
            "playlistUrl",
            "originalPath",
            "createdAt",
            "segmentCount",
            "status",
        ]


class PresignRequestSerializer(serializers.Serializer):
    filename = serializers.CharField()
    content_type = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        """Only videos may be uploaded into the incoming namespace."""
        content_type = attrs.get("content_type") or None
        if not is_video(attrs["filename"], content_type):
            raise serializers.ValidationError({"content_type": "Only video uploads are accepted."})
        return attrs


class PresignResponseSerializer(serializers.Serializer):
    key = serializers.CharField()
    url = serializers.URLField()
    headers = serializers.DictField(child=serializers.CharField(), required=False)


class StorageEventSerializer(serializers.Serializer):
    """The simple {path, contentType} trigger shape."""

    path = serializers.CharField()
    contentType = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)
    size = serializers.IntegerField(required=False, allow_null=True, default=None, min_value=0)
    etag = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)


class _S3ObjectSerializer(serializers.Serializer):
    key = serializers.CharField()
    size = serializers.IntegerField(required=False, allow_null=True, default=None)
    contentType = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)
    eTag = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)


class _S3EntitySerializer(serializers.Serializer):
    object = _S3ObjectSerializer()


class _S3RecordSerializer(serializers.Serializer):
    eventName = serializers.CharField()
    s3 = _S3EntitySerializer()


class BucketNotificationSerializer(serializers.Serializer):
    """S3 / MinIO bucket notification: {"Records": [...]}. Keys arrive URL-encoded."""

    Records = _S3RecordSerializer(many=True)

    def events(self) -> list[dict]:
        out = []
        for record in self.validated_data["Records"]:
            if "ObjectCreated" not in record["eventName"]:
                continue
            obj = record["s3"]["object"]
            out.append({
                "path": unquote_plus(obj["key"]),
                "content_type": obj.get("contentType") or None,
                "size_bytes": obj.get("size"),
                "etag": (obj.get("eTag") or "").strip('"') or None,
            })
        return out
