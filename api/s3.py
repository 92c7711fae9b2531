from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

from streaming import HLS_PLAYLIST_MIME, TS_SEGMENT_MIME

from .errors import FetchError, PublishError

CONTENT_TYPES = {
    ".m3u8": HLS_PLAYLIST_MIME,
    ".ts": TS_SEGMENT_MIME,
    ".m2ts": TS_SEGMENT_MIME,
}


def _client(endpoint_url: str):
    session = boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )
    # path-style addressing: MinIO serves every bucket under one host
    return session.client(
        "s3",
        endpoint_url=endpoint_url,
        config=BotoConfig(s3={"addressing_style": "path"}, signature_version="s3v4"),
    )


def get_s3_client():
    """Client the worker uses to download uploads and publish bundles."""
    return _client(settings.S3_ENDPOINT_URL)


def get_presign_client():
    """
    Client for presigned URLs. Signs against S3_PUBLIC_ENDPOINT so the URL
    host is the one the uploader actually reaches.
    """
    return _client(settings.S3_PUBLIC_ENDPOINT)


def create_presigned_put(key: str, content_type: str | None = None, expires: int | None = None) -> dict:
    """
    Create a presigned PUT URL so an uploader can write a raw video straight
    into the incoming namespace.

    ContentType is not signed: clients that omit or alter the header would
    otherwise hit 'signature does not match'. The header is still suggested
    back so the finalize event carries a video/* content type.
    """
    s3 = get_presign_client()
    url = s3.generate_presigned_url(
        ClientMethod="put_object",
        Params={"Bucket": settings.S3_BUCKET, "Key": key},
        ExpiresIn=expires or settings.S3_PRESIGN_EXPIRE_SECONDS,
        HttpMethod="PUT",
    )
    headers = {"Content-Type": content_type} if content_type else {}
    return {"url": url, "headers": headers}


def object_url(key: str) -> str:
    """
    Public, deterministic URL for an object: public endpoint + bucket + key.
    Each path segment is percent-encoded separately so '/' survives.
    """
    base = settings.S3_PUBLIC_ENDPOINT.rstrip("/")
    encoded = "/".join(quote(part, safe="") for part in key.split("/"))
    return f"{base}/{settings.S3_BUCKET}/{encoded}"


def content_type_for(path) -> str:
    """Content-Type by file kind; unknown kinds fall back to octet-stream."""
    return CONTENT_TYPES.get(Path(path).suffix.lower(), "application/octet-stream")


@dataclass(frozen=True)
class PublishedObject:
    key: str
    url: str
    content_type: str
    size: int


class S3Storage:
    """
    Object storage used by the ingest pipeline: fetches raw uploads and
    publishes artifact files. Publishing the same file to the same key twice
    simply overwrites it, so every call is safe to retry.
    """

    def __init__(self, client=None, bucket: str | None = None):
        self._client = client
        self.bucket = bucket or settings.S3_BUCKET

    @property
    def client(self):
        if self._client is None:
            self._client = get_s3_client()
        return self._client

    def fetch(self, key: str, local_path) -> Path:
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.client.download_file(self.bucket, key, str(local_path))
        except (BotoCoreError, ClientError, OSError) as exc:
            raise FetchError(f"could not download s3://{self.bucket}/{key}: {exc}") from exc
        return local_path

    def publish(self, local_path, key: str, content_type: str | None = None) -> PublishedObject:
        """
        Upload a single file with an explicit Content-Type.
        """
        content_type = content_type or content_type_for(local_path)
        try:
            size = Path(local_path).stat().st_size
            self.client.upload_file(
                str(local_path), self.bucket, key, ExtraArgs={"ContentType": content_type}
            )
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as exc:
            raise PublishError(f"could not upload {local_path} to s3://{self.bucket}/{key}: {exc}") from exc
        return PublishedObject(key=key, url=object_url(key), content_type=content_type, size=size)

    def url_for(self, key: str) -> str:
        return object_url(key)
