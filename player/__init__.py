from .element import VideoElement
from .engine import EngineConfig, HttpEngine, StreamingEngine
from .errors import ClientError, ClientFatalError, ClientMediaError, ClientNetworkError, ClientResolveError
from .registry import SessionRegistry
from .session import PlaybackSession, SessionState
from .video_list import CatalogClient, VideoList

__all__ = [
    "CatalogClient",
    "ClientError",
    "ClientFatalError",
    "ClientMediaError",
    "ClientNetworkError",
    "ClientResolveError",
    "EngineConfig",
    "HttpEngine",
    "PlaybackSession",
    "SessionRegistry",
    "SessionState",
    "StreamingEngine",
    "VideoElement",
    "VideoList",
]
