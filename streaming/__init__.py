from .playlist import HLS_PLAYLIST_MIME, TS_SEGMENT_MIME, rewrite_playlist, segment_references
from .resolver import ReferenceKind, base_path_for, classify_reference, resolve

__all__ = [
    "HLS_PLAYLIST_MIME",
    "TS_SEGMENT_MIME",
    "ReferenceKind",
    "base_path_for",
    "classify_reference",
    "resolve",
    "rewrite_playlist",
    "segment_references",
]
