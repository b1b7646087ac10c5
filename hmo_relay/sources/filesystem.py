import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from hmo_relay.const import CONTAINER_CONTENT_TYPE, FOLDER_CONTENT_TYPE, VIDEO_EXTENSIONS
from hmo_relay.library.classifier import ClassifierRegistry, EntryKind
from hmo_relay.library.nodes import Container, Item
from hmo_relay.sources.base import BaseSource, SourceError, make_identity

logger = logging.getLogger(__name__)


def _timestamps(path: Path) -> tuple[Optional[datetime], Optional[datetime]]:
    try:
        stat = path.stat()
    except OSError:
        return None, None
    created = datetime.fromtimestamp(stat.st_ctime, tz=timezone.utc)
    modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
    return created, modified


def is_video_file(entry) -> bool:
    return isinstance(entry, Path) and entry.is_file() and entry.suffix.lower() in VIDEO_EXTENSIONS


def is_directory(entry) -> bool:
    return isinstance(entry, Path) and entry.is_dir()


def build_folder(entry: Path, content_type: str = FOLDER_CONTENT_TYPE, title: Optional[str] = None) -> Container:
    created, modified = _timestamps(entry)
    source = FilesystemSource(entry)
    return Container(
        make_identity("fs", entry.resolve()),
        title or entry.name,
        source=source,
        registry=source.registry,
        content_type=content_type,
        created_at=created,
        modified_at=modified,
    )


def build_video(entry: Path) -> Item:
    created, modified = _timestamps(entry)
    try:
        size = entry.stat().st_size
    except OSError:
        size = None
    return Item(
        make_identity("fs", entry.resolve()),
        entry.stem,
        str(entry.resolve()),
        created_at=created,
        modified_at=modified,
        source_size=size,
    )


def build_application(identifier: str, title: Optional[str] = None) -> Container:
    """Top-level share for a directory."""
    path = Path(identifier).expanduser()
    container = filesystem_registry.require(path, EntryKind.CONTAINER)
    container.content_type = CONTAINER_CONTENT_TYPE
    if title:
        container.title = title
    return container


filesystem_registry = ClassifierRegistry()
filesystem_registry.register(EntryKind.CONTAINER, is_directory, build_folder, name="directory")
filesystem_registry.register(EntryKind.ITEM, is_video_file, build_video, name="video_file")


class FilesystemSource(BaseSource):
    """Lists a directory. Hidden entries are skipped; the rest is sorted by name."""

    registry = filesystem_registry

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"FilesystemSource({str(self.path)!r})"

    def _scan(self) -> List[Path]:
        try:
            entries = [entry for entry in self.path.iterdir() if not entry.name.startswith(".")]
        except OSError as e:
            raise SourceError(f"Unable to read directory {self.path}: {e}") from e
        return sorted(entries, key=lambda entry: entry.name.lower())

    async def list_entries(self) -> List[Path]:
        return await asyncio.to_thread(self._scan)
