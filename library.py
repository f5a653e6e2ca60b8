"""
SongCast Server - Media Library
Catalog and file access collaborators used by the HTTP server.

The server only depends on the ``Catalog`` and ``FileAccess`` interfaces.
``LibraryCatalog`` and ``LocalFileAccess`` are the default implementations,
backed by a directory of music files on the local disk.
"""

import hashlib
import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


AUDIO_EXTENSIONS = ('.mp3', '.m4a', '.aac', '.flac', '.ogg', '.opus', '.wav')
ART_FILENAMES = ('cover.jpg', 'folder.jpg', 'front.jpg', 'cover.png', 'folder.png')


# ============================================================================
# Data model
# ============================================================================

@dataclass
class MediaResource:
    """A playable song as known to the catalog."""
    id: str
    locator: str
    art_locator: Optional[str] = None
    content_type: str = "audio/mpeg"
    title: str = ""


class ByteSource:
    """
    Seekable, readable handle over the bytes of one resource.

    Owned by a single request. ``close()`` may be called any number of times;
    the underlying handle is released on the first call only.
    """

    def __init__(self, fileobj: BinaryIO, size: int, name: str = ""):
        self._file = fileobj
        self.size = size
        self.name = name
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def seek(self, offset: int) -> None:
        self._file.seek(offset)

    def read(self, size: int) -> bytes:
        return self._file.read(size)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<ByteSource {self.name!r} {self.size} bytes ({state})>"


# ============================================================================
# Collaborator interfaces
# ============================================================================

class Catalog(Protocol):
    """Resolves song ids to media resources."""

    async def lookup(self, song_id: str) -> Optional[MediaResource]:
        ...


class FileAccess(Protocol):
    """Opens byte sources for resource locators."""

    def open(self, locator: str) -> ByteSource:
        """Raises FileNotFoundError if missing, OSError on other failures."""
        ...


# ============================================================================
# Local file access
# ============================================================================

class LocalFileAccess:
    """File access over the local filesystem; locators are paths."""

    def open(self, locator: str) -> ByteSource:
        f = open(locator, 'rb')
        try:
            size = os.fstat(f.fileno()).st_size
        except OSError:
            f.close()
            raise
        return ByteSource(f, size, name=os.path.basename(locator))


# ============================================================================
# Directory-backed catalog
# ============================================================================

def song_id_for(relative_path: str) -> str:
    """Stable id derived from a library-relative POSIX path."""
    return hashlib.sha1(relative_path.encode('utf-8')).hexdigest()[:16]


def find_cover_art(directory: Path) -> Optional[Path]:
    """Return the first well-known cover image in ``directory``, if any."""
    for filename in ART_FILENAMES:
        candidate = directory / filename
        if candidate.is_file():
            return candidate
    return None


class LibraryCatalog:
    """
    Catalog of the audio files under a music directory.

    The directory is scanned once on construction and again on ``rescan()``.
    Ids are stable across scans as long as files are not moved.
    """

    def __init__(self, root, default_content_type: str = "audio/mpeg"):
        self.root = Path(root).expanduser()
        self.default_content_type = default_content_type
        self._songs: Dict[str, MediaResource] = {}
        self.rescan()

    def rescan(self) -> int:
        """Rebuild the index. Returns number of songs found."""
        songs: Dict[str, MediaResource] = {}
        if not self.root.is_dir():
            logger.warning(f"Library path is not a directory: {self.root}")
            self._songs = songs
            return 0

        art_cache: Dict[Path, Optional[Path]] = {}
        for path in sorted(self.root.rglob('*')):
            if not path.is_file() or path.suffix.lower() not in AUDIO_EXTENSIONS:
                continue

            relative = path.relative_to(self.root).as_posix()
            if path.parent not in art_cache:
                art_cache[path.parent] = find_cover_art(path.parent)
            art = art_cache[path.parent]

            song_id = song_id_for(relative)
            songs[song_id] = MediaResource(
                id=song_id,
                locator=str(path),
                art_locator=str(art) if art else None,
                content_type=self._guess_type(path),
                title=path.stem,
            )

        self._songs = songs
        logger.info(f"Library: {len(songs)} songs in {self.root}")
        return len(songs)

    def _guess_type(self, path: Path) -> str:
        mime, _ = mimetypes.guess_type(path.name)
        if mime and mime.startswith('audio/'):
            return mime
        return self.default_content_type

    async def lookup(self, song_id: str) -> Optional[MediaResource]:
        return self._songs.get(song_id)

    def songs(self):
        return list(self._songs.values())

    def __len__(self) -> int:
        return len(self._songs)
