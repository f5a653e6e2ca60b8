"""Shared fixtures: in-memory catalog, file access and tracking byte sources.

Nothing here touches the disk or the network; HTTP tests run against the real
aiohttp application through aiohttp's TestServer/TestClient.
"""

import io

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from library import ByteSource, MediaResource
from media_server import MediaHttpServer, ServerConfig


SONG_SIZE = 100_000


def pattern_bytes(size: int) -> bytes:
    """Deterministic, non-repeating-looking payload."""
    return bytes((i * 7 + i // 256) % 256 for i in range(size))


class TrackingBuffer(io.BytesIO):
    """BytesIO that counts how often it was closed."""

    def __init__(self, data: bytes):
        super().__init__(data)
        self.close_calls = 0

    def close(self):
        self.close_calls += 1
        super().close()


class FakeCatalog:
    """Catalog backed by a dict; records every lookup."""

    def __init__(self, songs=None):
        self.songs = {song.id: song for song in (songs or [])}
        self.lookups = []

    async def lookup(self, song_id):
        self.lookups.append(song_id)
        return self.songs.get(song_id)


class FakeFileAccess:
    """File access over in-memory blobs; records every source it hands out."""

    def __init__(self, blobs=None, errors=None):
        self.blobs = dict(blobs or {})
        self.errors = dict(errors or {})
        self.opened = []

    def open(self, locator):
        if locator in self.errors:
            raise self.errors[locator]
        if locator not in self.blobs:
            raise FileNotFoundError(locator)
        buffer = TrackingBuffer(self.blobs[locator])
        source = ByteSource(buffer, len(self.blobs[locator]), name=locator)
        source.buffer = buffer
        self.opened.append(source)
        return source


@pytest.fixture
def song_bytes():
    return pattern_bytes(SONG_SIZE)


@pytest.fixture
def art_bytes():
    return b'\xff\xd8\xff\xe0' + b'JFIF' + bytes(200)


@pytest.fixture
def catalog():
    return FakeCatalog([
        MediaResource(id="xyz", locator="songs/xyz.mp3", art_locator="art/xyz.jpg",
                      title="Track XYZ"),
        MediaResource(id="noart", locator="songs/noart.mp3"),
        MediaResource(id="missing", locator="songs/gone.mp3", art_locator="art/gone.jpg"),
        MediaResource(id="broken", locator="songs/broken.mp3", art_locator="art/broken.jpg"),
        MediaResource(id="empty", locator="songs/empty.mp3"),
        MediaResource(id="flac", locator="songs/track.flac", content_type="audio/flac"),
        MediaResource(id="pngart", locator="songs/noart.mp3", art_locator="art/cover.png"),
        MediaResource(id="rawart", locator="songs/noart.mp3", art_locator="art/cover-blob"),
    ])


@pytest.fixture
def files(song_bytes, art_bytes):
    return FakeFileAccess(
        blobs={
            "songs/xyz.mp3": song_bytes,
            "songs/noart.mp3": song_bytes[:1000],
            "songs/empty.mp3": b"",
            "songs/track.flac": song_bytes[:5000],
            "art/xyz.jpg": art_bytes,
            "art/cover.png": b"\x89PNG\r\n\x1a\n" + bytes(50),
            "art/cover-blob": art_bytes,
        },
        errors={
            "songs/broken.mp3": PermissionError("permission denied"),
            "art/broken.jpg": PermissionError("permission denied"),
        },
    )


@pytest.fixture
def config():
    return ServerConfig(
        HOST="127.0.0.1",
        PORT=0,
        CHUNK_SIZE=4096,
        WRITE_TIMEOUT=5.0,
        SHUTDOWN_GRACE=0.1,
        ENABLE_MDNS=False,
    )


@pytest.fixture
def http_server(catalog, files, config):
    return MediaHttpServer(catalog, files, config)


@pytest_asyncio.fixture
async def client(http_server):
    client = TestClient(TestServer(http_server.build_app()))
    await client.start_server()
    yield client
    await client.close()
