"""
ffmpeg adapter: turns one input video into an HLS bundle (one playlist and
N MPEG-TS segments) inside a local directory.

The adapter never retries; whether a failure is worth another attempt is the
orchestrator's decision.
"""
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from django.conf import settings

from streaming import segment_references

from .errors import CodecError

logger = logging.getLogger(__name__)

PLAYLIST_NAME = "playlist.m3u8"
SEGMENT_PATTERN = "%03d.ts"

# stderr fragments ffmpeg prints for inputs it cannot use
_CORRUPT_MARKERS = ("Invalid data found when processing input", "moov atom not found", "End of file")
_UNSUPPORTED_MARKERS = ("Decoder not found", "Unknown decoder", "is not supported", "Unsupported codec")


@dataclass(frozen=True)
class Segment:
    index: int
    path: Path

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class Bundle:
    playlist_path: Path
    segments: tuple[Segment, ...]

    @property
    def directory(self) -> Path:
        return self.playlist_path.parent


def _memory_limiter(limit_bytes: int):
    """preexec_fn capping the child's address space (POSIX only)."""
    if not limit_bytes:
        return None

    def _apply():
        import resource

        resource.setrlimit(resource.RLIMIT_AS, (limit_bytes, limit_bytes))

    return _apply


def _reason_from_stderr(stderr: str) -> str:
    if any(m in stderr for m in _UNSUPPORTED_MARKERS):
        return "unsupported_codec"
    if any(m in stderr for m in _CORRUPT_MARKERS):
        return "corrupt_input"
    return "engine_failed"


def collect_bundle(output_dir) -> Bundle:
    """Build a Bundle from an ffmpeg output directory, segments sorted by index."""
    output_dir = Path(output_dir)
    playlist = output_dir / PLAYLIST_NAME
    if not playlist.is_file():
        raise CodecError(f"no playlist written to {output_dir}", reason="empty_output")

    segments = []
    for p in output_dir.glob("*.ts"):
        try:
            index = int(p.stem)
        except ValueError:
            continue
        segments.append(Segment(index=index, path=p))
    if not segments:
        raise CodecError(f"no segments written to {output_dir}", reason="empty_output")
    segments.sort(key=lambda s: s.index)
    return Bundle(playlist_path=playlist, segments=tuple(segments))


class FFmpegCodec:
    def __init__(
        self,
        ffmpeg_path: str | None = None,
        *,
        memory_limit_bytes: int | None = None,
        default_timeout: float | None = None,
    ):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_BINARY
        self.memory_limit_bytes = (
            settings.TRANSCODE_MEMORY_LIMIT_BYTES if memory_limit_bytes is None else memory_limit_bytes
        )
        self.default_timeout = default_timeout or settings.INGEST_JOB_TIMEOUT_SECONDS

    def build_command(self, input_path: Path, output_dir: Path, segment_duration_seconds: int) -> list[str]:
        """H.264/AAC re-encode, fixed-length segments, one VOD playlist listing all of them."""
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-y",
            "-i", str(input_path),
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-crf", "23",
            "-c:a", "aac",
            "-b:a", "128k",
            # keyframe on every segment boundary so segments are exactly segment_duration long
            "-force_key_frames", f"expr:gte(t,n_forced*{segment_duration_seconds})",
            "-f", "hls",
            "-hls_time", str(segment_duration_seconds),
            "-hls_list_size", "0",
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", str(output_dir / SEGMENT_PATTERN),
            str(output_dir / PLAYLIST_NAME),
        ]

    def transcode(
        self,
        input_path,
        output_dir,
        segment_duration_seconds: int,
        *,
        timeout: float | None = None,
    ) -> Bundle:
        input_path, output_dir = Path(input_path), Path(output_dir)
        if not input_path.is_file():
            raise CodecError(f"input not found: {input_path}", reason="missing_input")
        output_dir.mkdir(parents=True, exist_ok=True)

        cmd = self.build_command(input_path, output_dir, segment_duration_seconds)
        timeout = timeout or self.default_timeout
        logger.info("transcoding %s -> %s (segments of %ss)", input_path.name, output_dir, segment_duration_seconds)
        try:
            subprocess.run(
                cmd,
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout,
                preexec_fn=_memory_limiter(self.memory_limit_bytes),
            )
        except FileNotFoundError as e:
            raise CodecError(f"codec engine not found: {self.ffmpeg_path}", reason="engine_missing") from e
        except subprocess.TimeoutExpired as e:
            raise CodecError(f"transcode exceeded {timeout:.0f}s", reason="timeout") from e
        except subprocess.CalledProcessError as e:
            err = e.stderr.decode("utf-8", errors="ignore") if e.stderr else str(e)
            raise CodecError(
                f"codec engine exited with {e.returncode}",
                reason=_reason_from_stderr(err),
                stderr=err[-4000:],
            ) from e

        bundle = collect_bundle(output_dir)
        listed = len(segment_references(bundle.playlist_path.read_text(encoding="utf-8", errors="replace")))
        logger.info("transcode produced %d segments (%d listed)", len(bundle.segments), listed)
        return bundle
