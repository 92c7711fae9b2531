"""Line-oriented HLS playlist handling."""
from .resolver import is_segment_reference, resolve

HLS_PLAYLIST_MIME = "application/vnd.apple.mpegurl"
TS_SEGMENT_MIME = "video/mp2t"
PLAYLIST_HEADER = "#EXTM3U"


def _split_eol(line: str) -> tuple[str, str]:
    body = line.rstrip("\r\n")
    return body, line[len(body):]


def is_playlist(text: str) -> bool:
    return text.lstrip("\ufeff").lstrip().startswith(PLAYLIST_HEADER)


def segment_references(text: str) -> list[str]:
    """Segment reference lines, in playlist (temporal) order."""
    return [line.strip() for line in text.splitlines() if is_segment_reference(line)]


def rewrite_playlist(text: str, base_path: str) -> str:
    """Resolve every segment reference against ``base_path``.

    Directive lines, blank lines and line endings are preserved as-is.
    """
    out = []
    for line in text.splitlines(keepends=True):
        body, eol = _split_eol(line)
        out.append(resolve(body, base_path) + eol)
    return "".join(out)
