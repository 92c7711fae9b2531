"""
Segment reference resolution shared by the ingest pipeline and the player.

Playlists written by different versions of the pipeline carry segment
references in several forms (bare filename, rooted path, absolute URL with a
stale path, ...). ``resolve`` maps every form onto ``base_path + filename``
and is idempotent, so it is safe to apply it to already-resolved data.
"""
import re
from enum import Enum
from urllib.parse import urlsplit

DIRECTIVE_MARKER = "#"
SEGMENT_SUFFIXES = (".ts",)

_ABSOLUTE_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_DEFAULT_PORTS = {"http": 80, "https": 443}


class ReferenceKind(str, Enum):
    DIRECTIVE = "directive"
    RELATIVE_BARE = "relative-bare"
    RELATIVE_ROOTED = "relative-rooted"
    ABSOLUTE_WRONG_PATH = "absolute-same-origin-wrong-path"
    ABSOLUTE_CORRECT_PATH = "absolute-same-origin-correct-path"
    ABSOLUTE_CROSS_ORIGIN = "absolute-cross-origin"
    MALFORMED = "malformed"


def _origin(url: str) -> tuple[str, str, int | None] | None:
    """(scheme, host, port) of an absolute URL, or None when it cannot be parsed."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None
    scheme = parts.scheme.lower()
    return scheme, parts.hostname.lower(), port or _DEFAULT_PORTS.get(scheme)


def is_directive(line: str) -> bool:
    return line.lstrip().startswith(DIRECTIVE_MARKER)


def is_segment_reference(reference: str) -> bool:
    """True for a non-directive line whose path ends with a media segment suffix."""
    ref = reference.strip()
    if not ref or is_directive(ref):
        return False
    path = re.split(r"[?#]", ref, maxsplit=1)[0]
    return path.lower().endswith(SEGMENT_SUFFIXES)


def is_absolute(reference: str) -> bool:
    return bool(_ABSOLUTE_RE.match(reference.strip()))


def base_path_for(playlist_url: str) -> str:
    """Directory URL of a playlist: everything up to and including the final '/'.

    Any query string or fragment (cache busting) is ignored.
    """
    url = re.split(r"[?#]", playlist_url.strip(), maxsplit=1)[0]
    return url[: url.rfind("/") + 1]


def _filename(url: str) -> str:
    parts = urlsplit(url)
    name = parts.path.rsplit("/", 1)[-1]
    if name and parts.query:
        name = f"{name}?{parts.query}"
    return name


def classify_reference(reference: str, base_path: str) -> ReferenceKind:
    ref = reference.strip()
    if not is_segment_reference(ref):
        return ReferenceKind.DIRECTIVE
    if is_absolute(ref):
        origin = _origin(ref)
        if origin is None or not _filename(ref):
            return ReferenceKind.MALFORMED
        if origin != _origin(base_path):
            return ReferenceKind.ABSOLUTE_CROSS_ORIGIN
        if ref.startswith(base_path):
            return ReferenceKind.ABSOLUTE_CORRECT_PATH
        return ReferenceKind.ABSOLUTE_WRONG_PATH
    if ref.startswith("/"):
        return ReferenceKind.RELATIVE_ROOTED
    return ReferenceKind.RELATIVE_BARE


def resolve(reference: str, base_path: str) -> str:
    """Map a playlist reference onto ``base_path``.

    Directives and empty lines come back unchanged, as do references already
    under ``base_path``, absolute references on another origin and absolute
    references that cannot be parsed. Same-origin absolute references keep
    only their filename; relative references lose one leading '/'.
    """
    if not is_segment_reference(reference):
        return reference
    ref = reference.strip()
    if ref.startswith(base_path):
        return ref

    if is_absolute(ref):
        origin = _origin(ref)
        if origin is None or origin != _origin(base_path):
            return ref
        filename = _filename(ref)
        if not filename:
            return ref
        return base_path + filename

    if ref.startswith("/"):
        ref = ref[1:]
    return base_path + ref
