"""Catalog writer/reader for published artifacts."""
from django.db import DatabaseError, IntegrityError, transaction

from .errors import CatalogConflictError, CatalogError
from .models import Video


def write_record(*, artifact_id: str, name: str, playlist_url: str, original_path: str, segment_count: int) -> Video:
    """
    Insert the single catalog record for a published artifact.
    A second write for the same artifact id is refused.
    """
    try:
        with transaction.atomic():
            return Video.objects.create(
                id=artifact_id,
                name=name,
                playlist_url=playlist_url,
                original_path=original_path,
                segment_count=segment_count,
                status=Video.Status.PROCESSED,
            )
    except IntegrityError as e:
        raise CatalogConflictError(f"catalog record {artifact_id} already exists") from e
    except DatabaseError as e:
        raise CatalogError(f"could not write catalog record {artifact_id}: {e}") from e


def list_records():
    """All records, newest first."""
    return Video.objects.order_by("-created_at", "-id")
