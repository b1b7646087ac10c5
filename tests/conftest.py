"""
Pytest configuration and shared doubles.

The library tests use in-memory sources whose entries are plain dicts; the
pipeline tests use an encoder that appends fixed chunks to its output file
and a sink that can be told to fail.
"""

import asyncio
import itertools
import time
from typing import Any, Iterable, List, Optional

import pytest

from hmo_relay.configs import Settings
from hmo_relay.library import ClassifierRegistry, Container, EntryKind, Item
from hmo_relay.schemas import EncodingProfile
from hmo_relay.sources.base import BaseSource, SourceError
from hmo_relay.transcoder.encoder import checkpoint


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line("markers", "asyncio: mark test as async")


def build_item(entry: dict) -> Item:
    return Item(f"item:{entry['name']}", entry["name"], entry.get("url", f"file:///{entry['name']}"))


def build_folder(entry: dict) -> Container:
    source = MemorySource(entry.get("children", []))
    return Container(f"folder:{entry['name']}", entry["name"], source=source, registry=source.registry)


memory_registry = ClassifierRegistry()
memory_registry.register(EntryKind.ITEM, lambda e: e.get("kind") == "item", build_item, name="item")
memory_registry.register(EntryKind.CONTAINER, lambda e: e.get("kind") == "folder", build_folder, name="folder")


class MemorySource(BaseSource):
    """Backing source serving a fixed entry list, counting how often it is listed."""

    registry = memory_registry

    def __init__(self, entries: Iterable[Any], delay: float = 0.0, failures: int = 0):
        self.entries = list(entries)
        self.delay = delay
        self.failures = failures
        self.calls = 0

    async def list_entries(self) -> List[Any]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures > 0:
            self.failures -= 1
            raise SourceError("catalog offline")
        return list(self.entries)


class ChunkEncoder:
    """
    Encoder double appending ``chunks`` to the output file, one per checkpoint.

    ``chunks=None`` writes ``filler`` forever until halted. ``fail_after``
    raises after that many chunks have been written.
    """

    def __init__(
        self,
        chunks: Optional[List[bytes]] = None,
        delay: float = 0.0,
        fail_after: Optional[int] = None,
        filler: bytes = b"x" * 100,
    ):
        self.chunks = chunks
        self.delay = delay
        self.fail_after = fail_after
        self.filler = filler
        self.checkpoints = 0
        self.calls = []

    def encode(self, source_identifier, output_path, profile, on_progress, cancel):
        self.calls.append((source_identifier, output_path, profile))
        chunks = self.chunks if self.chunks is not None else itertools.repeat(self.filler)
        total = len(self.chunks) if self.chunks is not None else 0
        written = 0
        with open(output_path, "ab") as output:
            for chunk in chunks:
                self.checkpoints += 1
                checkpoint(cancel, source_identifier)
                if self.fail_after is not None and written >= self.fail_after:
                    raise RuntimeError("encoder crashed")
                output.write(chunk)
                output.flush()
                written += 1
                if total:
                    on_progress(written / total)
                if self.delay:
                    time.sleep(self.delay)
        if self.fail_after is not None and written >= self.fail_after:
            raise RuntimeError("encoder crashed")


class CollectingSink:
    """Sink keeping every accepted write; optionally failing on the n-th call."""

    def __init__(self, fail_on: Optional[int] = None):
        self.fail_on = fail_on
        self.writes: List[bytes] = []
        self.attempts = 0

    @property
    def data(self) -> bytes:
        return b"".join(self.writes)

    async def write(self, data: bytes) -> None:
        self.attempts += 1
        if self.fail_on is not None and self.attempts >= self.fail_on:
            raise BrokenPipeError("client went away")
        self.writes.append(data)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        relay_poll_interval=0.01,
        relay_chunk_size=100,
        transcode_startup_delay=0.0,
        transcode_temp_dir=str(tmp_path),
        default_profile=EncodingProfile(resolution="320x240"),
    )


@pytest.fixture
def memory_source():
    return MemorySource


@pytest.fixture
def chunk_encoder():
    return ChunkEncoder


@pytest.fixture
def collecting_sink():
    return CollectingSink


@pytest.fixture
def library_container():
    """Factory for a source-backed container over in-memory entries."""

    def _make(entries, title="Movies", **kwargs) -> Container:
        source = MemorySource(entries, **kwargs)
        return Container(f"folder:{title}", title, source=source, registry=source.registry)

    return _make
