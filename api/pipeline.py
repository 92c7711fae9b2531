"""
Ingest orchestrator: drives one uploaded video through

    Fetching -> Transcoding -> Rewriting -> Publishing -> CatalogWriting -> Cleaning -> Done

Any stage may end the job in Failed. Jobs share no mutable state; each one
works inside its own temporary directory, which is removed whatever the
outcome. A catalog record is written only after the playlist and every
segment are in storage, so listings never show a half-published video.
"""
import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath

from django.conf import settings
from django.core.cache import cache as default_cache

from streaming import base_path_for, rewrite_playlist, segment_references
from streaming.playlist import is_playlist

from . import catalog
from .codec import PLAYLIST_NAME, Bundle, FFmpegCodec
from .errors import AdmissionSkip, CleanupError, JobTimeoutError, PipelineError, RewriteError
from .retry import RetryPolicy
from .s3 import S3Storage
from .utils import new_artifact_id

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    FETCHING = "Fetching"
    TRANSCODING = "Transcoding"
    REWRITING = "Rewriting"
    PUBLISHING = "Publishing"
    CATALOG_WRITING = "CatalogWriting"
    CLEANING = "Cleaning"
    DONE = "Done"
    FAILED = "Failed"


_NEXT = {
    JobStatus.FETCHING: JobStatus.TRANSCODING,
    JobStatus.TRANSCODING: JobStatus.REWRITING,
    JobStatus.REWRITING: JobStatus.PUBLISHING,
    JobStatus.PUBLISHING: JobStatus.CATALOG_WRITING,
    JobStatus.CATALOG_WRITING: JobStatus.CLEANING,
    JobStatus.CLEANING: JobStatus.DONE,
}

TERMINAL = frozenset({JobStatus.DONE, JobStatus.FAILED})


@dataclass(frozen=True)
class StorageEvent:
    """An "object finalized" notification for a raw upload."""

    path: str
    content_type: str | None = None
    size_bytes: int | None = None
    etag: str | None = None

    @property
    def dedupe_key(self) -> str:
        version = self.etag or (str(self.size_bytes) if self.size_bytes is not None else "-")
        return f"ingest:{self.path}:{version}"


@dataclass
class TranscodeJob:
    source_path: str
    artifact_id: str
    segment_duration_seconds: int
    status: JobStatus = JobStatus.FETCHING
    workdir: Path | None = None
    failed_stage: JobStatus | None = None
    history: list = field(default_factory=list)

    @property
    def local_input_path(self) -> Path:
        return self.workdir / f"input{PurePosixPath(self.source_path).suffix}"

    @property
    def local_output_dir(self) -> Path:
        return self.workdir / "hls"

    def advance(self, status: JobStatus) -> None:
        if _NEXT.get(self.status) is not status:
            raise RuntimeError(f"illegal job transition {self.status.value} -> {status.value}")
        self.history.append(self.status)
        self.status = status

    def fail(self) -> None:
        if self.status in TERMINAL:
            raise RuntimeError(f"job already terminal ({self.status.value})")
        self.failed_stage = self.status
        self.history.append(self.status)
        self.status = JobStatus.FAILED


def admission_skip_reason(
    path: str,
    content_type: str | None,
    *,
    incoming_prefix: str | None = None,
    published_prefix: str | None = None,
) -> str | None:
    """Why an event must not start a job, or None when it is admitted."""
    incoming_prefix = settings.INGEST_INCOMING_PREFIX if incoming_prefix is None else incoming_prefix
    published_prefix = settings.INGEST_PUBLISHED_PREFIX if published_prefix is None else published_prefix

    if published_prefix and path.startswith(published_prefix):
        # our own publish writes; processing them would loop forever
        return "path is in the published namespace"
    if not path.startswith(incoming_prefix):
        return f"path is outside {incoming_prefix!r}"
    if not (content_type or "").lower().startswith("video/"):
        return f"content type {content_type!r} is not video"
    return None


def check_admission(event: StorageEvent) -> None:
    reason = admission_skip_reason(event.path, event.content_type)
    if reason:
        raise AdmissionSkip(event.path, reason)


class IngestOrchestrator:
    def __init__(
        self,
        *,
        storage=None,
        codec=None,
        catalog_writer=None,
        retry_policy: RetryPolicy | None = None,
        cache=None,
        clock=time.monotonic,
        segment_duration_seconds: int | None = None,
        timeout_seconds: float | None = None,
        tmp_dir: str | None = None,
        published_prefix: str | None = None,
    ):
        self.storage = storage if storage is not None else S3Storage()
        self.codec = codec if codec is not None else FFmpegCodec()
        self.catalog_writer = catalog_writer if catalog_writer is not None else catalog.write_record
        self.retry = retry_policy if retry_policy is not None else RetryPolicy()
        self.cache = cache if cache is not None else default_cache
        self.clock = clock
        self.segment_duration_seconds = segment_duration_seconds or settings.HLS_SEGMENT_SECONDS
        self.timeout_seconds = timeout_seconds or settings.INGEST_JOB_TIMEOUT_SECONDS
        self.tmp_dir = tmp_dir or settings.INGEST_TMP_DIR
        self.published_prefix = settings.INGEST_PUBLISHED_PREFIX if published_prefix is None else published_prefix

    # -- trigger -------------------------------------------------------

    def admit(self, event: StorageEvent) -> None:
        check_admission(event)
        if not self.cache.add(event.dedupe_key, "1", timeout=settings.INGEST_DEDUPE_TTL_SECONDS):
            raise AdmissionSkip(event.path, "duplicate delivery")

    def handle(self, event: StorageEvent):
        """Process one storage event. Returns the catalog record, or None when skipped."""
        try:
            self.admit(event)
        except AdmissionSkip as skip:
            logger.info("skipping %s: %s", skip.path, skip.reason)
            return None

        job = TranscodeJob(
            source_path=event.path,
            artifact_id=new_artifact_id(),
            segment_duration_seconds=self.segment_duration_seconds,
        )
        try:
            return self.run(job)
        except Exception:
            # let an infrastructure retry of this same event through
            self.cache.delete(event.dedupe_key)
            raise

    # -- job -------------------------------------------------------------

    def playlist_key(self, artifact_id: str) -> str:
        return f"{self.published_prefix}{artifact_id}/{PLAYLIST_NAME}"

    def run(self, job: TranscodeJob):
        deadline = self.clock() + self.timeout_seconds
        logger.info("job %s: processing %s", job.artifact_id, job.source_path)
        try:
            self._fetch(job, deadline)
            job.advance(JobStatus.TRANSCODING)
            bundle = self._transcode(job, deadline)
            job.advance(JobStatus.REWRITING)
            self._check_budget(job, deadline)
            self._rewrite(job, bundle)
            job.advance(JobStatus.PUBLISHING)
            playlist, uploaded = self._publish(job, bundle, deadline)
            job.advance(JobStatus.CATALOG_WRITING)
            record = self.retry.call(
                self.catalog_writer,
                artifact_id=job.artifact_id,
                name=PurePosixPath(job.source_path).name,
                playlist_url=playlist.url,
                original_path=job.source_path,
                segment_count=uploaded,
                label=f"job {job.artifact_id} catalog",
                budget=self._check_budget(job, deadline),
            )
        except Exception as exc:
            job.fail()
            if isinstance(exc, PipelineError):
                logger.error("job %s failed in stage %s: %s", job.artifact_id, job.failed_stage.value, exc)
            else:
                logger.exception("job %s crashed in stage %s", job.artifact_id, job.failed_stage.value)
            raise
        else:
            job.advance(JobStatus.CLEANING)
        finally:
            self._cleanup(job)

        job.advance(JobStatus.DONE)
        logger.info("job %s: published %s (%d segments)", job.artifact_id, record.playlist_url, uploaded)
        return record

    def _check_budget(self, job: TranscodeJob, deadline: float) -> float:
        remaining = deadline - self.clock()
        if remaining <= 0:
            raise JobTimeoutError(
                f"job {job.artifact_id} exceeded {self.timeout_seconds:.0f}s during {job.status.value}"
            )
        return remaining

    def _fetch(self, job: TranscodeJob, deadline: float) -> None:
        job.workdir = Path(tempfile.mkdtemp(prefix=f"{job.artifact_id}_", dir=self.tmp_dir))
        self.retry.call(
            self.storage.fetch,
            job.source_path,
            job.local_input_path,
            label=f"job {job.artifact_id} fetch",
            budget=self._check_budget(job, deadline),
        )

    def _transcode(self, job: TranscodeJob, deadline: float) -> Bundle:
        remaining = self._check_budget(job, deadline)
        bundle = self.codec.transcode(
            job.local_input_path,
            job.local_output_dir,
            job.segment_duration_seconds,
            timeout=remaining,
        )
        self._check_budget(job, deadline)
        return bundle

    def _rewrite(self, job: TranscodeJob, bundle: Bundle) -> None:
        base_path = base_path_for(self.storage.url_for(self.playlist_key(job.artifact_id)))
        try:
            text = bundle.playlist_path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise RewriteError(f"playlist {bundle.playlist_path} is not readable text: {e}") from e
        if not is_playlist(text):
            raise RewriteError(f"{bundle.playlist_path} is not an HLS playlist")

        rewritten = rewrite_playlist(text, base_path)
        listed = len(segment_references(rewritten))
        if listed != len(bundle.segments):
            raise RewriteError(f"playlist lists {listed} segments but {len(bundle.segments)} were produced")
        bundle.playlist_path.write_text(rewritten, encoding="utf-8")
        logger.debug("job %s: playlist rewritten against %s", job.artifact_id, base_path)

    def _publish(self, job: TranscodeJob, bundle: Bundle, deadline: float):
        prefix = f"{self.published_prefix}{job.artifact_id}"
        label = f"job {job.artifact_id} publish"

        playlist = self.retry.call(
            self.storage.publish,
            bundle.playlist_path,
            self.playlist_key(job.artifact_id),
            label=label,
            budget=self._check_budget(job, deadline),
        )
        uploaded = 0
        for segment in bundle.segments:
            self.retry.call(
                self.storage.publish,
                segment.path,
                f"{prefix}/{segment.filename}",
                label=label,
                budget=self._check_budget(job, deadline),
            )
            uploaded += 1
        return playlist, uploaded

    def _cleanup(self, job: TranscodeJob) -> None:
        if job.workdir is None or not os.path.exists(job.workdir):
            return
        try:
            shutil.rmtree(job.workdir)
        except OSError as e:
            err = CleanupError(f"could not remove {job.workdir}: {e}")
            logger.warning("job %s: %s", job.artifact_id, err)
