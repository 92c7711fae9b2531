from streaming import HLS_PLAYLIST_MIME

NATIVE_HLS_TYPES = (HLS_PLAYLIST_MIME, "application/x-mpegurl")


class VideoElement:
    """
    The surface a playback session is bound to: the source it should play,
    the loading/message overlay, and the media buffer the engine feeds.
    """

    def __init__(self, source: str, *, native_hls: bool = False):
        self.source = source
        self.native_hls = native_hls
        self.src = None
        self.loading = False
        self.message = None
        self.message_retryable = False
        self.buffered: list[bytes] = []

    def can_play_type(self, mime: str) -> bool:
        return self.native_hls and mime.lower() in NATIVE_HLS_TYPES

    @property
    def frames_available(self) -> bool:
        return bool(self.buffered) or self.src is not None

    def show_loading(self):
        self.loading = True

    def hide_loading(self):
        self.loading = False

    def show_error(self, message: str, *, retryable: bool = False):
        self.message = message
        self.message_retryable = retryable

    def append_buffer(self, data: bytes):
        self.buffered.append(data)

    def __repr__(self):
        return f"<VideoElement source={self.source!r}>"
