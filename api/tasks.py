from celery import shared_task
from celery.utils.log import get_task_logger
from django.conf import settings

from .pipeline import IngestOrchestrator, StorageEvent

logger = get_task_logger(__name__)


@shared_task(bind=True, acks_late=True, time_limit=settings.CELERY_TASK_TIME_LIMIT)
def process_upload(self, path: str, content_type: str | None = None, size_bytes: int | None = None, etag: str | None = None):
    """
    Package one finalized upload into a published HLS artifact.

    No automatic retry here: a failure is re-raised so the broker (and any
    redelivery it is configured for) sees it.
    """
    event = StorageEvent(path=path, content_type=content_type, size_bytes=size_bytes, etag=etag)
    logger.info("task %s: storage event for %s (%s)", self.request.id, path, content_type)
    record = IngestOrchestrator().handle(event)
    return record.id if record is not None else None
