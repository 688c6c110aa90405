"""
Chunked reading of archive members. A chunk reader reuses one fixed buffer and
produces the bytes of an open member piece by piece, until a zero-length chunk
marks the end. Read failures are returned as values rather than raised, and
so is the outcome of loading a unit of code, so that only the callers facing
users decide when to raise.
"""

import importlib.util
from typing import TYPE_CHECKING
import zipfile
import zlib

from .errors import ArchiveError, ArchiveReadError, LoadError, MountError

if TYPE_CHECKING:
    from collections.abc import Iterator
    from types import CodeType
    from typing import IO, TypeAlias

    from .archive import VirtualArchive

    LoadResult: TypeAlias = 'CodeType | ArchiveError | SyntaxError | ValueError'


__all__ = ('BUFFER_SIZE', 'ChunkReader', 'load_unit', 'loadfile', 'READ_ERRORS')

BUFFER_SIZE = 8192

READ_ERRORS = (OSError, EOFError, zipfile.BadZipFile, zlib.error)


class ChunkReader:
    """A finite, non-restartable sequence of chunks read from one open file."""

    def __init__(
        self, file: 'IO[bytes]', path: str, capacity: int = BUFFER_SIZE
    ) -> None:
        if capacity <= 0:
            raise ValueError(f'chunk capacity {capacity} is not positive')
        self._file = file
        self._path = path
        self._buffer = bytearray(capacity)
        self._view = memoryview(self._buffer)
        self._done = False

    def __repr__(self) -> str:
        return f'<tane-chunks {self._path} capacity={len(self._buffer)}>'

    @property
    def capacity(self) -> int:
        return len(self._buffer)

    @property
    def done(self) -> bool:
        return self._done

    def pull(self, limit: 'None | int' = None) -> 'memoryview | ArchiveReadError':
        """
        Read the next chunk of at most capacity, or limit, bytes. The returned
        view aliases the reader's buffer and is only valid until the next pull.
        """
        size = len(self._buffer) if limit is None else min(len(self._buffer), limit)
        if self._done or size <= 0:
            return self._view[:0]

        try:
            count = self._file.readinto(self._view[:size]) # type: ignore[attr-defined]
        except READ_ERRORS as x:
            self._done = True
            return ArchiveReadError(self._path, x)

        if not count:
            self._done = True
            return self._view[:0]
        return self._view[:count]

    def __iter__(self) -> 'Iterator[bytes]':
        while True:
            chunk = self.pull()
            if isinstance(chunk, ArchiveError):
                raise chunk
            if len(chunk) == 0:
                return
            yield bytes(chunk)


def load_unit(
    archive: 'VirtualArchive', path: str, capacity: int = BUFFER_SIZE
) -> 'LoadResult':
    """Compile the unit of code at the path, returning code or an error."""
    try:
        file = archive.open_read(path)
    except (OSError, zipfile.BadZipFile, MountError) as x:
        return LoadError(f"couldn't open file: '{path}' ({x})")

    source = bytearray()
    with file:
        reader = ChunkReader(file, path, capacity)
        while True:
            chunk = reader.pull()
            if isinstance(chunk, ArchiveError):
                return chunk
            if len(chunk) == 0:
                break
            source += chunk

    try:
        text = importlib.util.decode_source(bytes(source))
        return compile(text, path, 'exec', dont_inherit=True)
    except (SyntaxError, ValueError) as x:
        return x


def loadfile(
    archive: 'VirtualArchive', path: str, capacity: int = BUFFER_SIZE
) -> 'CodeType':
    result = load_unit(archive, path, capacity)
    if isinstance(result, BaseException):
        raise result
    return result
