import pytest

from api.errors import CatalogConflictError, CodecError, JobTimeoutError, PublishError, RewriteError
from api.models import Video
from api.pipeline import IngestOrchestrator, JobStatus, StorageEvent, TranscodeJob, admission_skip_reason
from api.retry import RetryPolicy
from streaming import segment_references

from .conftest import PUBLIC_BASE, FakeCodec, FakeStorage

CLIP = StorageEvent(path="uploads/clip.mp4", content_type="video/mp4", size_bytes=1_048_576)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_orchestrator(tmp_path, *, storage=None, codec=None, **kw):
    kw.setdefault("retry_policy", RetryPolicy(sleep=lambda s: None))
    return IngestOrchestrator(
        storage=storage or FakeStorage(),
        codec=codec or FakeCodec(duration_seconds=25),
        tmp_dir=str(tmp_path),
        **kw,
    )


@pytest.mark.django_db
def test_end_to_end_clip_is_published_and_cataloged(tmp_path):
    storage = FakeStorage()
    orchestrator = make_orchestrator(tmp_path, storage=storage)

    record = orchestrator.handle(CLIP)

    prefix = f"published/{record.id}/"
    assert storage.fetched == ["uploads/clip.mp4"]
    assert storage.keys_under(prefix) == [
        prefix + "000.ts",
        prefix + "001.ts",
        prefix + "002.ts",
        prefix + "playlist.m3u8",
    ]
    playlist, content_type = storage.objects[prefix + "playlist.m3u8"]
    assert content_type == "application/vnd.apple.mpegurl"
    assert storage.objects[prefix + "000.ts"][1] == "video/mp2t"
    assert segment_references(playlist.decode()) == [
        f"{PUBLIC_BASE}/{prefix}000.ts",
        f"{PUBLIC_BASE}/{prefix}001.ts",
        f"{PUBLIC_BASE}/{prefix}002.ts",
    ]

    stored = Video.objects.get(pk=record.id)
    assert stored.segment_count == 3
    assert stored.status == "processed"
    assert stored.name == "clip.mp4"
    assert stored.original_path == "uploads/clip.mp4"
    assert stored.playlist_url == f"{PUBLIC_BASE}/{prefix}playlist.m3u8"
    assert stored.created_at is not None


@pytest.mark.django_db
def test_segment_count_matches_files_in_storage(tmp_path):
    storage = FakeStorage()
    record = make_orchestrator(tmp_path, storage=storage, codec=FakeCodec(duration_seconds=61)).handle(CLIP)

    assert record.segment_count == len(storage.keys_under(f"published/{record.id}/", ".ts")) == 7


@pytest.mark.django_db
def test_segments_use_the_configured_duration(tmp_path):
    codec = FakeCodec(duration_seconds=25)
    make_orchestrator(tmp_path, codec=codec, segment_duration_seconds=5).handle(CLIP)

    assert codec.calls[0][2] == 5
    assert Video.objects.get().segment_count == 5


@pytest.mark.django_db
def test_failed_segment_upload_leaves_no_catalog_record(tmp_path):
    storage = FakeStorage(fail=lambda key, attempt: key.endswith("001.ts"))
    orchestrator = make_orchestrator(tmp_path, storage=storage)

    with pytest.raises(PublishError):
        orchestrator.handle(CLIP)

    assert Video.objects.count() == 0
    failed_key = next(k for k in storage.attempts if k.endswith("001.ts"))
    assert storage.attempts[failed_key] == 3
    assert not any(k.endswith("002.ts") for k in storage.attempts)
    assert list(tmp_path.iterdir()) == []


@pytest.mark.django_db
def test_transient_upload_failure_is_retried(tmp_path):
    storage = FakeStorage(fail=lambda key, attempt: key.endswith("000.ts") and attempt == 1)
    sleeps = []
    orchestrator = make_orchestrator(tmp_path, storage=storage, retry_policy=RetryPolicy(sleep=sleeps.append))

    record = orchestrator.handle(CLIP)

    assert record.segment_count == 3
    assert len(sleeps) == 1


@pytest.mark.django_db
def test_codec_failure_is_not_retried_and_cleans_up(tmp_path):
    class BrokenCodec(FakeCodec):
        def transcode(self, *args, **kw):
            self.calls.append(args)
            raise CodecError("codec engine exited with 1", reason="corrupt_input")

    codec = BrokenCodec()
    with pytest.raises(CodecError):
        make_orchestrator(tmp_path, codec=codec).handle(CLIP)

    assert len(codec.calls) == 1
    assert Video.objects.count() == 0
    assert list(tmp_path.iterdir()) == []


@pytest.mark.django_db
def test_local_files_are_removed_after_success(tmp_path):
    seen = {}

    def capture():
        seen["dirs"] = list(tmp_path.iterdir())

    make_orchestrator(tmp_path, codec=FakeCodec(on_transcode=capture)).handle(CLIP)

    assert len(seen["dirs"]) == 1
    assert not seen["dirs"][0].exists()
    assert list(tmp_path.iterdir()) == []


@pytest.mark.django_db
def test_budget_exhaustion_fails_the_job(tmp_path):
    clock = FakeClock()

    def slow_transcode():
        clock.now += 600

    orchestrator = make_orchestrator(
        tmp_path, codec=FakeCodec(on_transcode=slow_transcode), clock=clock, timeout_seconds=540
    )
    with pytest.raises(JobTimeoutError):
        orchestrator.handle(CLIP)

    assert Video.objects.count() == 0
    assert list(tmp_path.iterdir()) == []


@pytest.mark.django_db
def test_upload_retries_do_not_sleep_past_the_job_deadline(tmp_path, settings):
    settings.INGEST_RETRY_BACKOFF_SECONDS = 5
    clock = FakeClock()

    def nearly_out_of_time():
        clock.now += 537

    sleeps = []
    storage = FakeStorage(fail=lambda key, attempt: True)
    orchestrator = make_orchestrator(
        tmp_path,
        storage=storage,
        codec=FakeCodec(on_transcode=nearly_out_of_time),
        clock=clock,
        timeout_seconds=540,
        retry_policy=RetryPolicy(sleep=sleeps.append),
    )

    with pytest.raises(PublishError):
        orchestrator.handle(CLIP)

    assert sleeps == []


def test_duplicate_catalog_record_is_written_once(tmp_path):
    calls = []

    def conflicting_writer(**fields):
        calls.append(fields["artifact_id"])
        raise CatalogConflictError(f"catalog record {fields['artifact_id']} already exists")

    orchestrator = make_orchestrator(tmp_path, catalog_writer=conflicting_writer)

    with pytest.raises(CatalogConflictError):
        orchestrator.handle(CLIP)
    assert len(calls) == 1
    assert list(tmp_path.iterdir()) == []


@pytest.mark.django_db
def test_codec_receives_the_remaining_budget(tmp_path):
    codec = FakeCodec()
    make_orchestrator(tmp_path, codec=codec, clock=FakeClock(), timeout_seconds=300).handle(CLIP)

    assert codec.calls[0][3] == pytest.approx(300)


@pytest.mark.django_db
def test_playlist_that_is_not_text_is_a_rewrite_error(tmp_path):
    codec = FakeCodec(playlist_bytes=b"\xff\xfe\x00garbage")
    storage = FakeStorage()
    with pytest.raises(RewriteError):
        make_orchestrator(tmp_path, storage=storage, codec=codec).handle(CLIP)

    assert storage.objects == {}
    assert Video.objects.count() == 0


@pytest.mark.django_db
def test_playlist_listing_fewer_segments_than_produced_is_rejected(tmp_path):
    codec = FakeCodec(
        duration_seconds=25,
        playlist_bytes=b"#EXTM3U\n#EXTINF:10,\n000.ts\n#EXTINF:10,\n001.ts\n#EXT-X-ENDLIST\n",
    )
    with pytest.raises(RewriteError, match="lists 2 segments but 3"):
        make_orchestrator(tmp_path, codec=codec).handle(CLIP)


@pytest.mark.django_db
@pytest.mark.parametrize(
    "event",
    [
        StorageEvent(path="published/video_1/playlist.m3u8", content_type="application/vnd.apple.mpegurl"),
        StorageEvent(path="published/video_1/000.ts", content_type="video/mp2t"),
        StorageEvent(path="published/uploads/clip.mp4", content_type="video/mp4"),
        StorageEvent(path="other/clip.mp4", content_type="video/mp4"),
        StorageEvent(path="uploads/notes.txt", content_type="text/plain"),
        StorageEvent(path="uploads/clip.mp4", content_type=None),
    ],
)
def test_events_that_are_not_admitted_never_start_a_job(tmp_path, event):
    storage, codec = FakeStorage(), FakeCodec()

    assert make_orchestrator(tmp_path, storage=storage, codec=codec).handle(event) is None

    assert storage.fetched == []
    assert codec.calls == []
    assert Video.objects.count() == 0


def test_published_namespace_is_rejected_even_when_nested_in_incoming():
    reason = admission_skip_reason(
        "uploads/published/x.mp4", "video/mp4", incoming_prefix="uploads/", published_prefix="uploads/published/"
    )
    assert reason == "path is in the published namespace"


def test_video_in_incoming_namespace_is_admitted():
    assert admission_skip_reason("uploads/clip.mp4", "video/mp4") is None


@pytest.mark.django_db
def test_duplicate_delivery_is_processed_once(tmp_path):
    codec = FakeCodec()
    orchestrator = make_orchestrator(tmp_path, codec=codec)

    first = orchestrator.handle(CLIP)
    second = orchestrator.handle(CLIP)

    assert first is not None
    assert second is None
    assert len(codec.calls) == 1
    assert Video.objects.count() == 1


@pytest.mark.django_db
def test_failed_job_can_be_redelivered(tmp_path):
    outage = {"on": True}
    storage = FakeStorage(fail=lambda key, attempt: outage["on"])
    orchestrator = make_orchestrator(tmp_path, storage=storage)

    with pytest.raises(PublishError):
        orchestrator.handle(CLIP)
    outage["on"] = False
    record = orchestrator.handle(CLIP)

    assert record is not None
    assert Video.objects.count() == 1


@pytest.mark.django_db
def test_each_job_gets_its_own_artifact_id(tmp_path):
    orchestrator = make_orchestrator(tmp_path)
    a = orchestrator.handle(CLIP)
    b = orchestrator.handle(StorageEvent(path="uploads/other.mov", content_type="video/quicktime"))

    assert a.id != b.id
    assert a.id.startswith("video_") and b.id.startswith("video_")


def test_job_transitions_follow_the_stage_order():
    job = TranscodeJob(source_path="uploads/clip.mp4", artifact_id="video_1", segment_duration_seconds=10)
    for status in (
        JobStatus.TRANSCODING,
        JobStatus.REWRITING,
        JobStatus.PUBLISHING,
        JobStatus.CATALOG_WRITING,
        JobStatus.CLEANING,
        JobStatus.DONE,
    ):
        job.advance(status)
    assert job.status is JobStatus.DONE
    with pytest.raises(RuntimeError):
        job.fail()


def test_job_cannot_skip_a_stage():
    job = TranscodeJob(source_path="uploads/clip.mp4", artifact_id="video_1", segment_duration_seconds=10)
    with pytest.raises(RuntimeError):
        job.advance(JobStatus.PUBLISHING)
    job.fail()
    assert job.status is JobStatus.FAILED
    assert job.failed_stage is JobStatus.FETCHING
