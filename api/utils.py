import mimetypes
import os
import time
from uuid import uuid4


def is_video(path: str, content_type: str | None = None) -> bool:
    """True for a video content type, falling back to the file extension when none is given."""
    mime = content_type or mimetypes.guess_type(path)[0]
    return bool(mime) and mime.lower().startswith("video/")


def new_artifact_id() -> str:
    """Time-ordered artifact id: video_<epoch ms>_<random suffix>."""
    return f"video_{int(time.time() * 1000)}_{uuid4().hex[:6]}"


def upload_key(filename: str, prefix: str) -> str:
    """Recommended raw upload key: <prefix>video_<epoch ms>_<basename>."""
    return f"{prefix}video_{int(time.time() * 1000)}_{os.path.basename(filename)}"
