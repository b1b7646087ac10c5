import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import httpx

from hmo_relay.configs import Settings, settings as default_settings
from hmo_relay.const import CONTAINER_CONTENT_TYPE, FOLDER_CONTENT_TYPE
from hmo_relay.library.classifier import ClassifierRegistry, EntryKind
from hmo_relay.library.nodes import Container, Item
from hmo_relay.sources.base import BaseSource, SourceError, make_identity
from hmo_relay.utils.http_utils import DownloadError, create_httpx_client, fetch_with_retry

logger = logging.getLogger(__name__)

SECTIONS_KEY = "/library/sections"

_PLAYABLE_TYPES = frozenset({"movie", "episode", "clip"})
_GROUP_TYPES = frozenset({"show", "season"})


@dataclass
class PlexEntry:
    """One record of a Plex ``MediaContainer`` together with the source that listed it."""

    source: "PlexSource"
    data: Dict[str, Any] = field(default_factory=dict)
    is_section: bool = False

    @property
    def type(self) -> str:
        return self.data.get("type", "")

    @property
    def title(self) -> str:
        return self.data.get("title", "")


def _epoch(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def is_section(entry) -> bool:
    return isinstance(entry, PlexEntry) and entry.is_section and entry.type in {"movie", "show"}


def is_group(entry) -> bool:
    return isinstance(entry, PlexEntry) and not entry.is_section and entry.type in _GROUP_TYPES


def _first_part(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    media = data.get("Media") or [{}]
    parts = media[0].get("Part") or [{}]
    return parts[0] if parts[0].get("key") else None


def is_playable(entry) -> bool:
    return isinstance(entry, PlexEntry) and entry.type in _PLAYABLE_TYPES and _first_part(entry.data) is not None


def build_section(entry: PlexEntry) -> Container:
    key = f"{SECTIONS_KEY}/{entry.data['key']}/all"
    source = entry.source.child(key)
    return Container(
        make_identity("plex", entry.source.base_url, key),
        entry.title,
        source=source,
        registry=source.registry,
        content_type=CONTAINER_CONTENT_TYPE,
        created_at=_epoch(entry.data.get("createdAt") or entry.data.get("updatedAt")),
        modified_at=_epoch(entry.data.get("updatedAt")),
    )


def build_group(entry: PlexEntry) -> Container:
    key = entry.data["key"]
    source = entry.source.child(key)
    return Container(
        make_identity("plex", entry.source.base_url, entry.data.get("ratingKey", key)),
        entry.title,
        source=source,
        registry=source.registry,
        content_type=FOLDER_CONTENT_TYPE,
        created_at=_epoch(entry.data.get("addedAt")),
        modified_at=_epoch(entry.data.get("updatedAt")),
    )


def build_video(entry: PlexEntry) -> Item:
    data = entry.data
    part = _first_part(data)
    return Item(
        make_identity("plex", entry.source.base_url, data.get("ratingKey", data.get("key"))),
        entry.title,
        entry.source.media_url(part["key"]),
        created_at=_epoch(data.get("addedAt")),
        modified_at=_epoch(data.get("updatedAt")),
        description=data.get("summary"),
        duration=int(data["duration"]) if data.get("duration") else None,
        source_size=int(part["size"]) if part.get("size") else None,
    )


plex_registry = ClassifierRegistry()
plex_registry.register(EntryKind.CONTAINER, is_section, build_section, name="section")
plex_registry.register(EntryKind.CONTAINER, is_group, build_group, name="show_or_season")
plex_registry.register(EntryKind.ITEM, is_playable, build_video, name="video")


class PlexSource(BaseSource):
    """Lists one catalog key (sections, a section's contents, a show's seasons, ...) of a Plex server."""

    registry = plex_registry

    def __init__(
        self,
        base_url: str,
        key: str = SECTIONS_KEY,
        token: Optional[str] = None,
        *,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.key = key
        self.token = token
        self.settings = settings or default_settings
        self._transport = transport

    def __repr__(self) -> str:
        return f"PlexSource({self.base_url!r}, {self.key!r})"

    def child(self, key: str) -> "PlexSource":
        return PlexSource(self.base_url, key, self.token, settings=self.settings, transport=self._transport)

    def media_url(self, part_key: str) -> str:
        url = urljoin(self.base_url + "/", part_key.lstrip("/"))
        if self.token:
            url = f"{url}?X-Plex-Token={self.token}"
        return url

    async def list_entries(self) -> List[PlexEntry]:
        url = urljoin(self.base_url + "/", self.key.lstrip("/"))
        headers = {"X-Plex-Token": self.token} if self.token else None

        kwargs = {"transport": self._transport} if self._transport is not None else {}
        async with create_httpx_client(settings=self.settings, **kwargs) as client:
            try:
                response = await fetch_with_retry(client, "GET", url, headers=headers)
            except (DownloadError, httpx.HTTPError) as e:
                raise SourceError(f"Plex request failed for {self.key}: {e}") from e

        try:
            media_container = response.json().get("MediaContainer", {})
        except ValueError as e:
            raise SourceError(f"Invalid Plex response for {self.key}: {e}") from e

        records = media_container.get("Metadata") or media_container.get("Directory") or []
        listing_sections = self.key.rstrip("/") == SECTIONS_KEY
        return [PlexEntry(self, record, is_section=listing_sections) for record in records]


def build_application(
    base_url: str,
    title: Optional[str] = None,
    token: Optional[str] = None,
    section: Optional[str] = None,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Container:
    """Top-level share for a Plex server, or for one of its sections."""
    source = PlexSource(base_url, section or SECTIONS_KEY, token, settings=settings, transport=transport)
    return Container(
        make_identity("plex", source.base_url, source.key),
        title or "Plex",
        source=source,
        registry=source.registry,
        content_type=CONTAINER_CONTENT_TYPE,
    )
