"""
Read-only handles on archive members. Each handle owns exactly one open
member. Handles should be closed explicitly or used as context managers; a
finalizer only reclaims abandoned handles as a safety net.
"""

import logging
from typing import TYPE_CHECKING
import weakref
import zipfile

from .chunks import BUFFER_SIZE, ChunkReader, READ_ERRORS
from .errors import ArchiveError, ArchiveReadError, ClosedHandleError, MountError

if TYPE_CHECKING:
    from typing import IO

    from .archive import VirtualArchive


__all__ = ('FileHandle', 'open_file')

logger = logging.getLogger('tane.handle')

READ_ALL = '*a'


def _release(file: 'IO[bytes]', path: str) -> None:
    try:
        file.close()
    except OSError as x:
        logger.debug('unable to release abandoned handle on "%s" (%s)', path, x)


class FileHandle:
    """An open, read-only member of the mounted archive."""

    def __init__(
        self, file: 'IO[bytes]', path: str, capacity: int = BUFFER_SIZE
    ) -> None:
        self._file: 'None | IO[bytes]' = file
        self._path = path
        self._reader = ChunkReader(file, path, capacity)
        self._finalizer = weakref.finalize(self, _release, file, path)

    def __repr__(self) -> str:
        state = 'closed' if self._file is None else 'open'
        return f'<tane-file {self._path} ({state})>'

    def __enter__(self) -> 'FileHandle':
        return self

    def __exit__(self, *args: object) -> None:
        if self._file is not None:
            self.close()

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._file is None

    def _check_open(self) -> 'IO[bytes]':
        if self._file is None:
            raise ClosedHandleError()
        return self._file

    # ----------------------------------------------------------------------------------

    def read(self, what: 'int | str' = READ_ALL) -> 'None | bytes':
        """
        Read the given number of bytes or, with "*a", all remaining bytes. At
        the end of the file, a bounded read returns None, whereas reading all
        bytes returns an empty bytestring.
        """
        file = self._check_open()
        if isinstance(what, int) and not isinstance(what, bool):
            if what < 0:
                raise ValueError('negative number of bytes')
            if self._at_eof(file):
                return None
            return self._read_bytes(what)
        if what == READ_ALL:
            return self._read_bytes(None)
        raise ValueError(f'invalid option "{what}"')

    def _at_eof(self, file: 'IO[bytes]') -> bool:
        if self._reader.done:
            return True
        peek = getattr(file, 'peek', None)
        if peek is None:
            return False
        try:
            return len(peek(1)) == 0
        except READ_ERRORS as x:
            raise ArchiveReadError(self._path, x) from x

    def _read_bytes(self, count: 'None | int') -> bytes:
        data = bytearray()
        while count is None or count > 0:
            chunk = self._reader.pull(count)
            if isinstance(chunk, ArchiveError):
                raise chunk
            if len(chunk) == 0:
                break
            data += chunk
            if count is not None:
                count -= len(chunk)
        return bytes(data)

    def close(self) -> 'bool | tuple[None, str]':
        file = self._check_open()
        try:
            file.close()
        except OSError as x:
            return None, str(x)

        self._finalizer.detach()
        self._file = None
        return True


def open_file(
    archive: 'VirtualArchive',
    path: str,
    mode: str = 'rb',
    capacity: int = BUFFER_SIZE,
) -> 'FileHandle | tuple[None, str]':
    if mode != 'rb':
        raise ValueError(f'invalid mode "{mode}"; only "rb" is supported')

    try:
        file = archive.open_read(path)
    except (OSError, zipfile.BadZipFile, MountError) as x:
        return None, str(x)
    return FileHandle(file, path, capacity)
