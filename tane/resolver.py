"""
Module resolution against the mounted archive. An archive resolver maps module
names to archive paths and serves as meta path finder and module loader for
the archive. A resolver chain is the ordered list of strategies the import
system consults, and a preload table holds modules registered by name.
"""

from importlib.abc import Loader
from importlib.machinery import BuiltinImporter, FrozenImporter, ModuleSpec, PathFinder
import importlib.util
import logging
import sys
from typing import TYPE_CHECKING

from .chunks import BUFFER_SIZE, load_unit, loadfile

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from types import CodeType, ModuleType
    from typing import Callable, TypeAlias

    from .archive import VirtualArchive
    from .bootstrap import Context

    ModuleFactory: TypeAlias = 'Callable[[Context], ModuleType]'


__all__ = ('ArchiveResolver', 'module_path', 'PreloadTable', 'ResolverChain')

logger = logging.getLogger('tane.resolver')

SOURCE_SUFFIX = '.py'
PACKAGE_INIT = '/__init__' + SOURCE_SUFFIX


def module_path(name: str) -> str:
    return '/' + name.replace('.', '/') + SOURCE_SUFFIX


class ArchiveResolver(Loader):
    """
    Meta path finder and module loader for modules stored in the archive. Plain
    modules, regular packages, and namespace packages are all supported. Since
    the resolver comes before the host's path finder, it defers to built-in and
    frozen modules and claims a directory without __init__ only if the path
    finder has no module by that name.
    """

    def __init__(self, archive: 'VirtualArchive', capacity: int = BUFFER_SIZE) -> None:
        self._archive = archive
        self._capacity = capacity

    def __repr__(self) -> str:
        return f'<tane-resolver {self._archive.source}>'

    def _locate(
        self, fullname: str, search_paths: 'None | Sequence[str]' = None
    ) -> 'tuple[None | str, None | str] | str':
        # Archived modules never shadow built-in or frozen modules.
        for importer, kind in ((BuiltinImporter, 'built-in'), (FrozenImporter, 'frozen')):
            if importer.find_spec(fullname) is not None:
                return f"'{fullname}' is a {kind} module"

        path = module_path(fullname)
        base = path[:-len(SOURCE_SUFFIX)]

        for candidate, pkgdir in ((path, None), (base + PACKAGE_INIT, base)):
            if self._archive.exists(candidate) and not self._archive.is_directory(candidate):
                return candidate, pkgdir

        # A directory without __init__ only becomes a namespace package if it
        # holds source and the host finds no other module of the same name.
        if (
            self._archive.is_directory(base)
            and self._has_source(base)
            and PathFinder.find_spec(fullname, search_paths) is None
        ):
            return None, base

        return f"no archive file '{path}'"

    def _has_source(self, directory: str) -> bool:
        prefix = directory + '/'
        return any(
            name.startswith(prefix) and name.endswith(SOURCE_SUFFIX)
            for name, _ in self._archive.iter_files()
        )

    def search(
        self, fullname: str, search_paths: 'None | Sequence[str]' = None
    ) -> 'ModuleSpec | str':
        located = self._locate(fullname, search_paths)
        if isinstance(located, str):
            return located

        path, pkgdir = located
        spec = ModuleSpec(fullname, self, origin=path, is_package=pkgdir is not None)
        if pkgdir is not None:
            assert spec.submodule_search_locations is not None
            spec.submodule_search_locations.append(pkgdir)
        spec.has_location = path is not None
        return spec

    def find_spec(
        self,
        fullname: str,
        search_paths: 'None | Sequence[str]' = None,
        target: 'None | ModuleType' = None,
    ) -> 'None | ModuleSpec':
        spec = self.search(fullname, search_paths)
        return spec if isinstance(spec, ModuleSpec) else None

    def create_module(self, spec: ModuleSpec) -> 'None | ModuleType':
        return None

    def exec_module(self, module: 'ModuleType') -> None:
        spec = module.__spec__
        assert spec is not None, 'module must have spec'
        if spec.origin is None:
            return # namespace package has no code

        code = load_unit(self._archive, spec.origin, self._capacity)
        if isinstance(code, BaseException):
            raise code
        exec(code, module.__dict__)

    def is_package(self, fullname: str) -> bool:
        located = self._locate(fullname)
        return not isinstance(located, str) and located[1] is not None

    def get_code(self, fullname: str) -> 'CodeType':
        return loadfile(self._archive, self.get_filename(fullname), self._capacity)

    def get_source(self, fullname: str) -> str:
        return importlib.util.decode_source(
            self._archive.read_bytes(self.get_filename(fullname)))

    def get_data(self, path: str) -> bytes:
        return self._archive.read_bytes(path)

    def get_filename(self, fullname: str) -> str:
        located = self._locate(fullname)
        if isinstance(located, str):
            raise ImportError(located, name=fullname)
        if located[0] is None:
            raise ImportError(f"namespace package '{fullname}' has no file", name=fullname)
        return located[0]


# --------------------------------------------------------------------------------------


class PreloadTable(Loader):
    """Modules created on first import by factories registered under a name."""

    def __init__(self, context: 'Context') -> None:
        self._context = context
        self._factories: 'dict[str, ModuleFactory]' = {}

    def __repr__(self) -> str:
        return f'<tane-preloads {", ".join(self._factories)}>'

    def __contains__(self, name: str) -> bool:
        return name in self._factories

    def register(self, name: str, factory: 'ModuleFactory') -> None:
        if name in self._factories:
            raise ValueError(f'module "{name}" is already preloaded')
        self._factories[name] = factory
        logger.debug('preloaded module "%s"', name)

    def search(self, fullname: str) -> 'ModuleSpec | str':
        if fullname not in self._factories:
            return f"no preloaded module '{fullname}'"
        return ModuleSpec(fullname, self, origin='preload')

    def find_spec(
        self,
        fullname: str,
        search_paths: 'None | Sequence[str]' = None,
        target: 'None | ModuleType' = None,
    ) -> 'None | ModuleSpec':
        spec = self.search(fullname)
        return spec if isinstance(spec, ModuleSpec) else None

    def create_module(self, spec: ModuleSpec) -> 'ModuleType':
        return self._factories[spec.name](self._context)

    def exec_module(self, module: 'ModuleType') -> None:
        pass


# --------------------------------------------------------------------------------------


class ResolverChain:
    """
    The ordered strategies for resolving modules. By default, the chain wraps
    sys.meta_path, so that the import system consults registered strategies.
    """

    def __init__(self, entries: 'None | list[object]' = None) -> None:
        self._entries: 'list[object]' = sys.meta_path if entries is None else entries # type: ignore[assignment]

    def __repr__(self) -> str:
        return f'<tane-chain {len(self._entries)} strategies>'

    def __iter__(self) -> 'Iterator[object]':
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, strategy: object) -> bool:
        return any(entry is strategy for entry in self._entries)

    def index(self, strategy: object) -> int:
        for index, entry in enumerate(self._entries):
            if entry is strategy:
                return index
        raise ValueError(f'{strategy!r} is not registered')

    def register(self, strategy: object, position: int = 1) -> None:
        """Insert the strategy at the position, by default as second strategy."""
        if strategy in self:
            raise ValueError(f'{strategy!r} is already registered')
        self._entries.insert(position, strategy)
        logger.debug('registered %r at position %d', strategy, self.index(strategy))

    def unregister(self, strategy: object) -> None:
        del self._entries[self.index(strategy)]
        logger.debug('unregistered %r', strategy)

    def resolve(
        self, fullname: str, search_paths: 'None | Sequence[str]' = None
    ) -> ModuleSpec:
        fragments = []
        for strategy in list(self._entries):
            search = getattr(strategy, 'search', None)
            if search is not None:
                result = search(fullname)
                if isinstance(result, ModuleSpec):
                    return result
                fragments.append(result)
                continue

            find_spec = getattr(strategy, 'find_spec', None)
            spec = None if find_spec is None else find_spec(fullname, search_paths)
            if spec is not None:
                return spec
            label = getattr(strategy, '__name__', type(strategy).__name__)
            fragments.append(f"no module '{fullname}' for {label}")

        raise ModuleNotFoundError(
            f"module '{fullname}' not found:" + ''.join(f'\n\t{f}' for f in fragments),
            name=fullname,
        )
