"""Catalog listing client and the list of playable video cards built from it."""
import logging
from dataclasses import dataclass

import httpx

from .element import VideoElement
from .errors import ClientNetworkError
from .registry import SessionRegistry

logger = logging.getLogger(__name__)

EMPTY_MESSAGE = "No videos found. Upload a video to get started!"
LOADING_MESSAGE = "Loading videos..."
STAGGER_SECONDS = 0.1


class CatalogClient:
    def __init__(self, base_url: str, *, client: httpx.Client | None = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.client = client if client is not None else httpx.Client(timeout=timeout)

    def list_videos(self) -> list[dict]:
        try:
            response = self.client.get(f"{self.base_url}/api/videos/")
        except httpx.HTTPError as e:
            raise ClientNetworkError(f"Failed to load videos: {e}") from e
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise ClientNetworkError(body.get("error") or "Failed to load videos")
        return response.json().get("videos") or []


def sort_newest_first(records: list[dict]) -> list[dict]:
    # ISO-8601 timestamps in one timezone sort lexically; undated records go last
    return sorted(records, key=lambda r: r.get("createdAt") or "", reverse=True)


@dataclass
class VideoCard:
    record: dict
    element: VideoElement

    @property
    def title(self) -> str:
        return self.record.get("name") or self.record["id"]

    @property
    def caption(self) -> str:
        return f"{self.record.get('segmentCount') or 0} segments"

    @property
    def playlist_url(self) -> str:
        return self.record["playlistUrl"]


class VideoList:
    def __init__(
        self,
        catalog: CatalogClient,
        registry: SessionRegistry | None = None,
        *,
        element_factory=VideoElement,
        stagger_seconds: float = STAGGER_SECONDS,
    ):
        self.catalog = catalog
        self.registry = registry if registry is not None else SessionRegistry()
        self.element_factory = element_factory
        self.stagger_seconds = stagger_seconds
        self.cards: list[VideoCard] = []
        self.message: str | None = None

    def clear(self) -> None:
        self.registry.destroy_all()
        self.cards = []

    def render(self, records: list[dict]) -> list[VideoCard]:
        """Tear down every existing session, then bind one per record, staggered."""
        self.clear()
        records = sort_newest_first(records)
        if not records:
            self.message = EMPTY_MESSAGE
            return self.cards
        self.message = None
        for i, record in enumerate(records):
            card = VideoCard(record=record, element=self.element_factory(record["playlistUrl"]))
            self.cards.append(card)
            self.registry.bind(card.element, card.playlist_url, delay=i * self.stagger_seconds)
        return self.cards

    def refresh(self) -> list[VideoCard]:
        self.message = LOADING_MESSAGE
        try:
            records = self.catalog.list_videos()
        except ClientNetworkError as e:
            logger.error("loading the video list failed: %s", e)
            self.clear()
            self.message = f"Error loading videos: {e}"
            return self.cards
        return self.render(records)
