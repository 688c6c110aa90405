"""Exceptions raised by tane's archive, handle, and loading layers."""

__all__ = (
    'ArchiveError',
    'ArchiveReadError',
    'ClosedHandleError',
    'LoadError',
    'MountError',
)


class ArchiveError(Exception):
    """Base class for all errors about the embedded archive."""


class MountError(ArchiveError):
    """The archive could not be mounted or is unusable. Always fatal."""


class ArchiveReadError(ArchiveError):
    """Reading an open archive member failed."""

    def __init__(self, path: str, reason: object) -> None:
        super().__init__(f'error reading file "{path}": {reason}')
        self.path = path
        self.reason = reason


class ClosedHandleError(ArchiveError, ValueError):
    """A file handle was used after it had been closed."""

    def __init__(self) -> None:
        super().__init__('attempt to use a closed file')


class LoadError(ArchiveError):
    """A unit of code could not be opened for loading."""
