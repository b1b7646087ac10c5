import logging
import shutil

import httpx
import pytest

from hmo_relay.configs import Settings
from hmo_relay.const import CONTAINER_CONTENT_TYPE, FOLDER_CONTENT_TYPE
from hmo_relay.library import ContainerTree, Item, NodeKind, SourceUnavailable, UnclassifiedEntry
from hmo_relay.schemas import ApplicationConfig
from hmo_relay.sources import filesystem, plex
from hmo_relay.sources.base import SourceError, make_identity
from hmo_relay.sources.factory import SourceFactory

PLEX_URL = "http://plex.local:32400"

PLEX_RESPONSES = {
    "/library/sections": {
        "MediaContainer": {
            "Directory": [
                {"key": "1", "type": "movie", "title": "Movies", "updatedAt": 1700000000},
                {"key": "2", "type": "artist", "title": "Music"},
            ]
        }
    },
    "/library/sections/1/all": {
        "MediaContainer": {
            "Metadata": [
                {
                    "ratingKey": "10",
                    "key": "/library/metadata/10",
                    "type": "movie",
                    "title": "Alien",
                    "summary": "In space no one can hear you scream.",
                    "duration": 7020000,
                    "addedAt": 1700000000,
                    "Media": [{"Part": [{"key": "/library/parts/10/file.mkv", "size": 4096}]}],
                },
                {"ratingKey": "20", "key": "/library/metadata/20/children", "type": "show", "title": "Firefly"},
                {"ratingKey": "30", "key": "/library/metadata/30", "type": "movie", "title": "Unmatched"},
            ]
        }
    },
    "/library/metadata/20/children": {
        "MediaContainer": {
            "Metadata": [
                {"ratingKey": "21", "key": "/library/metadata/21/children", "type": "season", "title": "Season 1"},
            ]
        }
    },
}


@pytest.fixture
def media_dir(tmp_path):
    (tmp_path / "alien.mkv").write_bytes(b"a" * 10)
    (tmp_path / ".hidden.mkv").write_bytes(b"h")
    (tmp_path / "notes.txt").write_text("not a video")
    comedy = tmp_path / "Comedy"
    comedy.mkdir()
    (comedy / "brazil.MP4").write_bytes(b"b" * 20)
    return tmp_path


@pytest.fixture
def plex_transport():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        payload = PLEX_RESPONSES.get(request.url.path)
        if payload is None:
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(200, json=payload)

    transport = httpx.MockTransport(handler)
    transport.requests = requests
    return transport


@pytest.mark.asyncio
async def test_filesystem_lists_videos_and_folders(media_dir, caplog):
    movies = filesystem.build_application(str(media_dir), "Movies")

    with caplog.at_level(logging.WARNING):
        children = await movies.get_children()

    assert movies.title == "Movies"
    assert movies.content_type == CONTAINER_CONTENT_TYPE
    assert [child.title for child in children] == ["alien", "Comedy"]
    assert [child.kind for child in children] == [NodeKind.ITEM, NodeKind.CONTAINER]
    assert children[1].content_type == FOLDER_CONTENT_TYPE
    assert any("notes.txt" in record.message for record in caplog.records)

    alien = children[0]
    assert alien.source_identifier == str((media_dir / "alien.mkv").resolve())
    assert alien.source_size == 10
    assert alien.modified_at is not None

    brazil = (await children[1].get_children())[0]
    assert isinstance(brazil, Item)
    assert brazil.path == ("Movies", "Comedy", "brazil")


def test_filesystem_identity_is_stable(media_dir):
    first = filesystem.build_application(str(media_dir))
    second = filesystem.build_application(str(media_dir))

    assert first.identity == second.identity == make_identity("fs", media_dir.resolve())
    assert first.title == media_dir.name


def test_filesystem_application_must_be_a_directory(tmp_path):
    with pytest.raises(UnclassifiedEntry):
        filesystem.build_application(str(tmp_path / "missing"))


@pytest.mark.asyncio
async def test_filesystem_unreadable_directory_is_unavailable(media_dir):
    comedy = filesystem.build_application(str(media_dir / "Comedy"))
    shutil.rmtree(media_dir / "Comedy")

    with pytest.raises(SourceUnavailable) as exc_info:
        await comedy.get_children()

    assert isinstance(exc_info.value.__cause__, SourceError)
    assert not comedy.populated


@pytest.mark.asyncio
async def test_plex_walks_sections_shows_and_videos(plex_transport, caplog):
    server = plex.build_application(PLEX_URL, "Plex", token="secret", transport=plex_transport)

    with caplog.at_level(logging.INFO):
        sections = await server.get_children()
        movies = sections[0]
        entries = await movies.get_children()

    assert [section.title for section in sections] == ["Movies"]
    assert movies.content_type == CONTAINER_CONTENT_TYPE
    assert [entry.title for entry in entries] == ["Alien", "Firefly"]
    assert sum("Unknown type" in record.message for record in caplog.records) == 2

    alien, firefly = entries
    assert alien.source_identifier == f"{PLEX_URL}/library/parts/10/file.mkv?X-Plex-Token=secret"
    assert alien.description.startswith("In space")
    assert alien.duration == 7020000
    assert alien.source_size == 4096
    assert alien.created_at.year == 2023

    seasons = await firefly.get_children()
    assert [season.title for season in seasons] == ["Season 1"]
    assert seasons[0].content_type == FOLDER_CONTENT_TYPE

    assert all(request.headers["X-Plex-Token"] == "secret" for request in plex_transport.requests)
    assert all("secret" not in str(request.url) for request in plex_transport.requests)
    assert all("secret" not in record.getMessage() for record in caplog.records)
    assert [request.url.path for request in plex_transport.requests] == [
        "/library/sections",
        "/library/sections/1/all",
        "/library/metadata/20/children",
    ]


@pytest.mark.asyncio
async def test_plex_section_application_skips_section_listing(plex_transport):
    movies = plex.build_application(PLEX_URL, "Films", section="/library/sections/1/all", transport=plex_transport)

    entries = await movies.get_children()

    assert [entry.title for entry in entries] == ["Alien", "Firefly"]
    assert entries[0].source_identifier == f"{PLEX_URL}/library/parts/10/file.mkv"


@pytest.mark.asyncio
async def test_plex_record_without_part_is_skipped(caplog):
    records = [
        {"ratingKey": "1", "type": "movie", "title": "Good", "Media": [{"Part": [{"key": "/library/parts/1/a.mkv"}]}]},
        {"ratingKey": "2", "type": "movie", "title": "Odd", "Media": [{"id": 5}]},
        {"ratingKey": "3", "type": "movie", "title": "Worse", "Media": "broken"},
    ]
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"MediaContainer": {"Metadata": records}})
    )
    movies = plex.build_application(PLEX_URL, "Films", section="/library/sections/1/all", transport=transport)

    with caplog.at_level(logging.WARNING):
        entries = await movies.get_children()

    assert [entry.title for entry in entries] == ["Good"]
    assert movies.populated
    assert sum("Unknown type" in record.message for record in caplog.records) == 2


@pytest.mark.asyncio
async def test_plex_client_error_makes_container_unavailable(plex_transport):
    missing = plex.build_application(PLEX_URL, section="/library/sections/9/all", transport=plex_transport)

    with pytest.raises(SourceUnavailable):
        await missing.get_children()

    assert not missing.populated
    assert len(plex_transport.requests) == 1


@pytest.mark.asyncio
async def test_plex_invalid_json_is_source_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html>"))
    source = plex.PlexSource(PLEX_URL, transport=transport)

    with pytest.raises(SourceError):
        await source.list_entries()


def test_factory_builds_configured_applications(media_dir):
    settings = Settings(
        applications=[
            {"kind": "filesystem", "identifier": str(media_dir), "title": "Movies"},
            {"kind": "plex", "identifier": PLEX_URL, "title": "Plex", "token": "secret"},
        ]
    )

    tree = SourceFactory.build_tree(settings, "Living Room")

    assert isinstance(tree, ContainerTree)
    assert tree.root.title == "Living Room"
    assert [child.title for child in tree.root.loaded_children] == ["Movies", "Plex"]
    assert isinstance(tree.root.loaded_children[1].source, plex.PlexSource)


def test_factory_rejects_unknown_kind():
    config = ApplicationConfig.model_construct(kind="dlna", identifier="udp://239.255.255.250")

    with pytest.raises(SourceError):
        SourceFactory.create_application(config, Settings())
