"""
The preloaded `seed` module, which gives code running from the archive access
to the archive's files:

    import seed

    handle = seed.open('/data/greeting.txt', 'rb')
    greeting = handle.read('*a')
    handle.close()
"""

from types import ModuleType
from typing import TYPE_CHECKING

from . import chunks
from .handle import open_file

if TYPE_CHECKING:
    from types import CodeType

    from .bootstrap import Context
    from .handle import FileHandle


def create_module(context: 'Context') -> ModuleType:
    archive = context.mounted()
    capacity = context.options.chunk_size

    def open(path: str, mode: str = 'rb') -> 'FileHandle | tuple[None, str]':
        return open_file(archive, path, mode, capacity)

    def loadfile(path: str) -> 'CodeType':
        return chunks.loadfile(archive, path, capacity)

    def exists(path: str) -> bool:
        return archive.exists(path)

    module = ModuleType('seed', 'Access to the archive embedded in this executable.')
    for fn in (open, loadfile, exists):
        fn.__module__ = 'seed'
        setattr(module, fn.__name__, fn)
    setattr(module, 'archive', archive.source)
    return module
