from collections.abc import Iterator, Mapping
from contextlib import contextmanager
import io
from pathlib import Path
import sys
import tempfile
import zipfile

from tane.archive import VirtualArchive


# Stands in for the bytes of a native executable preceding the archive.
STUB = b'\x7fELF\x02\x01\x01' + b'\x00' * 57 + b'not really a binary\n'


class FailingFile(io.RawIOBase):
    """A file whose reads always fail."""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: object) -> int:
        raise OSError('disk on fire')


class StubbornFile(io.BytesIO):
    """A file that fails to close on the first attempt only."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self.close_attempts = 0

    def close(self) -> None:
        self.close_attempts += 1
        if self.close_attempts == 1:
            raise OSError('close failed')
        super().close()


@contextmanager
def scratch_directory() -> Iterator[Path]:
    with tempfile.TemporaryDirectory(prefix='tane-test-') as tmpdir:
        yield Path(tmpdir)


def write_archive(
    path: Path,
    files: 'Mapping[str, bytes | str]',
    *,
    stub: bytes = STUB,
    compression: int = zipfile.ZIP_DEFLATED,
) -> Path:
    with open(path, mode='wb') as file:
        file.write(stub)
        with zipfile.ZipFile(file, mode='w', compression=compression) as archive:
            for name, content in files.items():
                archive.writestr(name, content)
    return path


def write_launcher(path: Path) -> Path:
    """Write an executable without archive, which forces a fallback mount."""
    path.write_bytes(STUB)
    return path


@contextmanager
def mounted(files: 'Mapping[str, bytes | str]') -> Iterator[VirtualArchive]:
    with scratch_directory() as tmpdir:
        path = write_archive(tmpdir / 'app', files)
        with VirtualArchive.mount(str(path)) as archive:
            yield archive


def forget_modules(*names: str) -> None:
    for key in list(sys.modules):
        if any(key == name or key.startswith(name + '.') for name in names):
            del sys.modules[key]
