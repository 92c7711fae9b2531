import math
from pathlib import Path

import pytest
from django.core.cache import cache

from api.codec import collect_bundle
from api.errors import PublishError
from api.s3 import PublishedObject, content_type_for
from player.engine import StreamingEngine

PUBLIC_BASE = "https://storage.example.com/test-bucket"
TS_PACKET = b"\x47" + b"\x00" * 187


@pytest.fixture(autouse=True)
def clear_cache():
    """Trigger de-duplication state must not leak between tests."""
    cache.clear()
    yield
    cache.clear()


class FakeStorage:
    def __init__(self, source=b"\x00\x00\x00\x18ftypmp42", fail=None):
        self.source = source
        self.fail = fail or (lambda key, attempt: False)
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.attempts: dict[str, int] = {}
        self.fetched: list[str] = []

    def url_for(self, key):
        return f"{PUBLIC_BASE}/{key}"

    def fetch(self, key, local_path):
        self.fetched.append(key)
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(self.source)
        return local_path

    def publish(self, local_path, key, content_type=None):
        attempt = self.attempts[key] = self.attempts.get(key, 0) + 1
        if self.fail(key, attempt):
            raise PublishError(f"simulated upload failure for {key}")
        content_type = content_type or content_type_for(local_path)
        data = Path(local_path).read_bytes()
        self.objects[key] = (data, content_type)
        return PublishedObject(key=key, url=self.url_for(key), content_type=content_type, size=len(data))

    def keys_under(self, prefix, suffix=""):
        return sorted(k for k in self.objects if k.startswith(prefix) and k.endswith(suffix))


class FakeCodec:
    """Writes what ffmpeg would: one VOD playlist plus zero-padded .ts segments."""

    def __init__(self, duration_seconds=25, playlist_bytes=None, on_transcode=None):
        self.duration_seconds = duration_seconds
        self.playlist_bytes = playlist_bytes
        self.on_transcode = on_transcode
        self.calls = []

    def transcode(self, input_path, output_dir, segment_duration_seconds, *, timeout=None):
        self.calls.append((Path(input_path), Path(output_dir), segment_duration_seconds, timeout))
        assert Path(input_path).is_file()
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        count = math.ceil(self.duration_seconds / segment_duration_seconds)
        lines = [
            "#EXTM3U",
            "#EXT-X-VERSION:3",
            f"#EXT-X-TARGETDURATION:{segment_duration_seconds}",
            "#EXT-X-MEDIA-SEQUENCE:0",
            "#EXT-X-PLAYLIST-TYPE:VOD",
        ]
        for i in range(count):
            length = min(segment_duration_seconds, self.duration_seconds - i * segment_duration_seconds)
            lines.append(f"#EXTINF:{length:.6f},")
            lines.append(f"{i:03d}.ts")
            (output_dir / f"{i:03d}.ts").write_bytes(TS_PACKET * 4)
        lines.append("#EXT-X-ENDLIST")
        body = self.playlist_bytes if self.playlist_bytes is not None else ("\n".join(lines) + "\n").encode()
        (output_dir / "playlist.m3u8").write_bytes(body)
        if self.on_transcode:
            self.on_transcode()
        return collect_bundle(output_dir)


class FakeEngine(StreamingEngine):
    """Engine double: records what the session asks of it; tests emit events by hand."""

    instances: list["FakeEngine"] = []
    supported = True

    def __init__(self, config=None):
        super().__init__(config)
        self.start_loads = 0
        self.media_recoveries = 0
        self.inner_loads: list[str] = []
        self.loader = self.config.wrap_loader(_RecordingLoader(self.inner_loads))
        FakeEngine.instances.append(self)

    @classmethod
    def is_supported(cls):
        return cls.supported

    def start_load(self):
        self.start_loads += 1

    def recover_media_error(self):
        self.media_recoveries += 1


class _RecordingLoader:
    def __init__(self, sink):
        self.sink = sink

    def load(self, url):
        self.sink.append(url)
        return TS_PACKET


@pytest.fixture
def fake_engine():
    FakeEngine.instances = []
    FakeEngine.supported = True
    yield FakeEngine
    FakeEngine.instances = []
    FakeEngine.supported = True


class ManualTimer:
    """threading.Timer stand-in that only fires when the test says so."""

    created: list["ManualTimer"] = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        ManualTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()
