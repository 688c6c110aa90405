"""
Mounting of the zip archive embedded in an executable. The archive is appended
to the executable's own bytes, which `zipfile` handles natively, and exposed as
a read-only namespace with `/`-separated paths rooted at `/`.
"""

import json
import logging
import os
import platform
from typing import cast, TYPE_CHECKING
import zipfile

from packaging.specifiers import InvalidSpecifier, SpecifierSet

from .errors import MountError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from typing import IO


__all__ = (
    'basename',
    'base_directory',
    'check_metadata',
    'executable_path',
    'mount_archive',
    'VirtualArchive',
)

logger = logging.getLogger('tane.archive')

ROOT = '/'
METADATA_PATH = '/__tane__.json'

_NO_ARCHIVE = 'no archive found in the executable nor in the first argument'


def basename(path: str, separator: str = os.sep) -> str:
    if not separator:
        raise ValueError('empty directory separator')

    last_found = 0
    while True:
        index = path.find(separator, last_found)
        if index < 0:
            return path[last_found:]
        last_found = index + len(separator)


def base_directory(argv0: str) -> str:
    """Determine the directory holding the running executable."""
    return os.path.join(os.path.dirname(os.path.abspath(argv0)), '')


def executable_path(argv0: str, directory: str) -> str:
    return directory + basename(argv0)


class VirtualArchive:
    """
    A mounted archive. File members are indexed once, at mount time, together
    with all directories, whether the archive lists them explicitly or they
    are merely implied by member names.
    """

    @classmethod
    def mount(cls, source: str) -> 'VirtualArchive':
        try:
            archive = zipfile.ZipFile(source)
        except (OSError, zipfile.BadZipFile) as x:
            raise MountError(f'unable to mount "{source}": {x}') from x
        return cls(source, archive)

    def __init__(self, source: str, archive: zipfile.ZipFile) -> None:
        self._source = source
        self._archive: 'None | zipfile.ZipFile' = archive
        self._files: 'dict[str, zipfile.ZipInfo]' = {}
        self._directories = {''}

        for info in archive.infolist():
            name = info.filename.rstrip('/')
            if info.is_dir():
                self._directories.add(name)
            else:
                self._files[name] = info

            parent = name.rpartition('/')[0]
            while parent not in self._directories:
                self._directories.add(parent)
                parent = parent.rpartition('/')[0]

    def __repr__(self) -> str:
        state = 'mounted' if self._archive is not None else 'unmounted'
        return f'<tane-archive {self._source} ({state})>'

    def __enter__(self) -> 'VirtualArchive':
        return self

    def __exit__(self, *args: object) -> None:
        if self._archive is not None:
            self.unmount()

    @property
    def source(self) -> str:
        return self._source

    @property
    def root(self) -> str:
        return ROOT

    @property
    def mounted(self) -> bool:
        return self._archive is not None

    # ----------------------------------------------------------------------------------

    @staticmethod
    def to_member(path: str) -> 'None | str':
        """
        Convert a virtual path into a member name. Insecure paths, i.e., paths
        with backslashes or parent directory components, have no member.
        """
        if '\\' in path:
            return None
        parts = [part for part in path.split('/') if part not in ('', '.')]
        if '..' in parts:
            return None
        return '/'.join(parts)

    def exists(self, path: str) -> bool:
        member = self.to_member(path)
        return member is not None and (
            member in self._files or member in self._directories)

    def is_directory(self, path: str) -> bool:
        member = self.to_member(path)
        return member is not None and member in self._directories

    def size(self, path: str) -> int:
        return self._info(path).file_size

    def _info(self, path: str) -> zipfile.ZipInfo:
        member = self.to_member(path)
        if member is not None and member in self._directories:
            raise IsADirectoryError(f'"{path}" is a directory in archive')
        if member is None or member not in self._files:
            raise FileNotFoundError(f'no such file in archive: "{path}"')
        return self._files[member]

    def open_read(self, path: str) -> 'IO[bytes]':
        info = self._info(path)
        if self._archive is None:
            raise MountError(f'archive "{self._source}" is not mounted')
        return self._archive.open(info)

    def read_bytes(self, path: str) -> bytes:
        with self.open_read(path) as file:
            return file.read()

    def iter_files(self) -> 'Iterator[tuple[str, int]]':
        for name in sorted(self._files):
            yield ROOT + name, self._files[name].file_size

    def unmount(self) -> None:
        if self._archive is None:
            raise MountError(f'archive "{self._source}" already unmounted')
        self._archive.close()
        self._archive = None
        logger.debug('unmounted "%s"', self._source)


# --------------------------------------------------------------------------------------


def mount_archive(
    invocation: 'Sequence[str]',
    base_dir: 'None | str' = None,
) -> 'tuple[VirtualArchive, int]':
    """
    Mount the archive appended to the running executable or, failing that, the
    archive named by the first argument. Return the archive and the number of
    leading arguments consumed.
    """
    if len(invocation) == 0:
        raise MountError('no invocation path to locate the executable')

    argv0 = invocation[0]
    directory = base_directory(argv0) if base_dir is None else base_dir
    path = executable_path(argv0, directory)

    try:
        archive = VirtualArchive.mount(path)
    except MountError as x:
        logger.debug('executable is not an archive (%s)', x)
    else:
        logger.debug('mounted executable "%s"', path)
        return archive, 1

    if len(invocation) > 1:
        try:
            archive = VirtualArchive.mount(invocation[1])
        except MountError as x:
            logger.debug('first argument is not an archive (%s)', x)
        else:
            logger.debug('mounted fallback "%s"', invocation[1])
            return archive, 2

    raise MountError(_NO_ARCHIVE)


def check_metadata(
    archive: VirtualArchive,
    python_version: 'None | str' = None,
) -> 'None | dict[str, object]':
    if not archive.exists(METADATA_PATH):
        return None

    try:
        metadata = json.loads(archive.read_bytes(METADATA_PATH))
    except (ValueError, OSError, zipfile.BadZipFile) as x:
        raise MountError(f'archive metadata is malformed ({x})') from x
    if not isinstance(metadata, dict):
        raise MountError('archive metadata is not a JSON object')

    required = metadata.get('requires-python')
    if required is not None:
        if not isinstance(required, str):
            raise MountError('archive metadata has non-str "requires-python"')
        try:
            specifier = SpecifierSet(required)
        except InvalidSpecifier as x:
            raise MountError(f'archive metadata has invalid "requires-python" ({x})') from x

        version = python_version or platform.python_version()
        if not specifier.contains(version, prereleases=True):
            raise MountError(
                f'archive requires Python {required}, but this is Python {version}')

    logger.debug(
        'archive made by tane %s requires Python %s',
        metadata.get('version', '?'), required or 'of any version')
    return cast('dict[str, object]', metadata)
