import logging

from django.conf import settings
from django.db import DatabaseError
from rest_framework import status, views
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from . import catalog
from .pipeline import admission_skip_reason
from .s3 import create_presigned_put
from .serializers import (
    BucketNotificationSerializer,
    PresignRequestSerializer,
    PresignResponseSerializer,
    StorageEventSerializer,
    VideoSerializer,
)
from .tasks import process_upload
from .utils import upload_key

logger = logging.getLogger(__name__)


class VideoListView(views.APIView):
    """
    Read-only catalog listing, newest first.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        try:
            videos = VideoSerializer(catalog.list_records(), many=True).data
        except DatabaseError as e:
            logger.exception("listing the catalog failed")
            return Response(
                {"error": "Failed to list videos", "details": str(e)},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response({"success": True, "videos": videos, "count": len(videos)})


class StorageEventView(views.APIView):
    """
    Receives "object finalized" notifications from the bucket, either as an
    S3/MinIO notification ({"Records": [...]}) or as {path, contentType}.
    Admitted events are queued for the ingest worker; the rest are reported
    back as skipped.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        if "Records" in request.data:
            ser = BucketNotificationSerializer(data=request.data)
            ser.is_valid(raise_exception=True)
            events = ser.events()
        else:
            ser = StorageEventSerializer(data=request.data)
            ser.is_valid(raise_exception=True)
            data = ser.validated_data
            events = [{
                "path": data["path"],
                "content_type": data["contentType"] or None,
                "size_bytes": data["size"],
                "etag": data["etag"] or None,
            }]

        queued, skipped = [], []
        for event in events:
            reason = admission_skip_reason(event["path"], event["content_type"])
            if reason:
                logger.info("ignoring storage event for %s: %s", event["path"], reason)
                skipped.append({"path": event["path"], "reason": reason})
                continue
            process_upload.delay(event["path"], event["content_type"], event["size_bytes"], event["etag"])
            queued.append(event["path"])

        return Response({"queued": queued, "skipped": skipped}, status=status.HTTP_202_ACCEPTED)


class PresignUploadView(views.APIView):
    """
    Returns a presigned PUT URL + recommended key so the uploader can write
    the raw video directly into the incoming namespace of the bucket.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        ser = PresignRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        filename = ser.validated_data["filename"]
        content_type = ser.validated_data.get("content_type") or None

        key = upload_key(filename, settings.INGEST_INCOMING_PREFIX)
        signed = create_presigned_put(key, content_type=content_type)
        resp = {"key": key, "url": signed["url"], "headers": signed.get("headers", {})}
        out = PresignResponseSerializer(resp).data
        return Response(out, status=201)
