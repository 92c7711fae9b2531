"""Playback-side failures, each with the message shown in place of the player."""


class ClientError(Exception):
    message = "Video playback failed."
    retryable = False

    def __init__(self, *args, message: str | None = None):
        super().__init__(*args)
        if message is not None:
            self.message = message


class ClientResolveError(ClientError):
    """A fragment reference that cannot be turned into a usable URL."""


class ClientNetworkError(ClientError):
    message = "Network error while loading the video. Check your connection and try again."
    retryable = True


class ClientMediaError(ClientError):
    message = "Playback error: the video could not be decoded."


class ClientFatalError(ClientError):
    pass
