"""
Bootstrapping of an executable with embedded archive: Mount the archive,
register the archive's module resolver, register preloaded modules, and run
the archive's entry point with the remaining command line arguments.
"""

from dataclasses import dataclass, field
import logging
import os
import sys
import traceback
from typing import TextIO, TYPE_CHECKING

from .archive import check_metadata, mount_archive, VirtualArchive
from .chunks import BUFFER_SIZE, load_unit
from .errors import MountError
from .resolver import ArchiveResolver, PreloadTable, ResolverChain
from . import runtime

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from types import CodeType

    from .chunks import LoadResult
    from .resolver import ModuleFactory


__all__ = ('Bootstrapper', 'Context', 'ENTRY_POINT', 'main', 'Options', 'PRELOADS')

logger = logging.getLogger('tane.bootstrap')

ENTRY_POINT = '/init.py'

# Modules linked into the runtime. Add further modules here.
PRELOADS: 'dict[str, ModuleFactory]' = {
    'seed': runtime.create_module,
}


@dataclass
class Options:
    log_level: str = 'WARNING'
    chunk_size: int = BUFFER_SIZE

    @classmethod
    def from_environ(cls, environ: 'None | Mapping[str, str]' = None) -> 'Options':
        environ = os.environ if environ is None else environ

        log_level = environ.get('TANE_LOG', 'WARNING').upper()
        if log_level not in logging.getLevelNamesMapping():
            raise ValueError(f'TANE_LOG has invalid level "{log_level}"')

        chunk_size = BUFFER_SIZE
        raw_size = environ.get('TANE_CHUNK_SIZE')
        if raw_size is not None:
            try:
                chunk_size = int(raw_size)
            except ValueError:
                raise ValueError(f'TANE_CHUNK_SIZE "{raw_size}" is not an integer') from None
            if chunk_size <= 0:
                raise ValueError(f'TANE_CHUNK_SIZE {chunk_size} is not positive')

        return cls(log_level, chunk_size)


@dataclass
class Context:
    """The state shared by a bootstrapper and the components it sets up."""
    invocation: 'list[str]'
    meta_path: 'list[object]' = field(default_factory=lambda: sys.meta_path) # type: ignore[arg-type]
    stderr: TextIO = field(default_factory=lambda: sys.stderr)
    options: Options = field(default_factory=Options)
    base_dir: 'None | str' = None
    archive: 'None | VirtualArchive' = None
    skip: int = 0
    preloads: PreloadTable = field(init=False)

    def __post_init__(self) -> None:
        self.preloads = PreloadTable(self)

    def mounted(self) -> VirtualArchive:
        if self.archive is None or not self.archive.mounted:
            raise MountError('no archive is mounted')
        return self.archive


class Bootstrapper:
    """
    Sequencing of startup and shutdown. Each step is a method of its own, with
    run() executing all of them and turning errors into an exit code.
    """

    def __init__(
        self,
        context: Context,
        preloads: 'None | Mapping[str, ModuleFactory]' = None,
    ) -> None:
        self._context = context
        self._preloads = dict(PRELOADS if preloads is None else preloads)
        self._chain = ResolverChain(context.meta_path)
        self._resolver: 'None | ArchiveResolver' = None
        self.entry_namespace: 'None | dict[str, object]' = None

    def __repr__(self) -> str:
        return f'<tane-bootstrapper {self._context.archive!r}>'

    @property
    def context(self) -> Context:
        return self._context

    @property
    def chain(self) -> ResolverChain:
        return self._chain

    @property
    def resolver(self) -> 'None | ArchiveResolver':
        return self._resolver

    # ----------------------------------------------------------------------------------

    def initialize(self) -> None:
        if len(self._context.invocation) == 0:
            raise MountError('virtual filesystem init failed: no invocation path')
        self._chain.register(self._context.preloads, position=0)

    def mount(self) -> VirtualArchive:
        archive, skip = mount_archive(self._context.invocation, self._context.base_dir)
        self._context.archive = archive
        self._context.skip = skip
        check_metadata(archive)
        return archive

    def install_resolver(self) -> ArchiveResolver:
        resolver = ArchiveResolver(
            self._context.mounted(), self._context.options.chunk_size)
        self._chain.register(resolver, position=1)
        self._resolver = resolver
        return resolver

    def register_preloads(self) -> None:
        for name, factory in self._preloads.items():
            self._context.preloads.register(name, factory)

    def arguments(self) -> 'list[str]':
        return list(self._context.invocation[self._context.skip:])

    def program(self) -> str:
        """The last argument consumed by mounting, i.e., the archive's path."""
        return self._context.invocation[self._context.skip - 1]

    def load_entry(self) -> 'LoadResult':
        return load_unit(
            self._context.mounted(), ENTRY_POINT, self._context.options.chunk_size)

    def invoke(self, code: 'CodeType', args: 'Sequence[str]') -> 'dict[str, object]':
        namespace: 'dict[str, object]' = {
            '__name__': '__main__',
            '__file__': ENTRY_POINT,
            '__doc__': None,
            '__package__': None,
            '__spec__': None,
        }
        self.entry_namespace = namespace

        saved_argv = sys.argv
        sys.argv = [self.program(), *args]
        try:
            exec(code, namespace)
        finally:
            sys.argv = saved_argv
        return namespace

    def shutdown(self) -> None:
        for strategy in (self._resolver, self._context.preloads):
            if strategy is not None and strategy in self._chain:
                self._chain.unregister(strategy)
        self._resolver = None

        archive = self._context.archive
        if archive is not None and archive.mounted:
            archive.unmount()

    # ----------------------------------------------------------------------------------

    def run(self) -> int:
        stderr = self._context.stderr

        try:
            self.initialize()
            self.mount()
            self.install_resolver()
            self.register_preloads()
        except MountError as x:
            print(f'tane: {x}', file=stderr)
            self.shutdown()
            return 1

        try:
            args = self.arguments()
            code = self.load_entry()
            if isinstance(code, BaseException):
                raise code
            logger.debug('invoking "%s" with %d arguments', ENTRY_POINT, len(args))
            self.invoke(code, args)
        except SystemExit as x:
            return self._exit_code(x)
        except Exception as x:
            stderr.write(''.join(traceback.format_exception(x)))
            return 1
        finally:
            self.shutdown()

        return 0

    def _exit_code(self, x: SystemExit) -> int:
        if x.code is None:
            return 0
        if isinstance(x.code, int):
            return x.code
        print(x.code, file=self._context.stderr)
        return 1


def main(argv: 'None | Sequence[str]' = None) -> int:
    try:
        options = Options.from_environ()
    except ValueError as x:
        print(f'tane: {x}', file=sys.stderr)
        return 1

    logging.basicConfig(
        level=options.log_level, format='%(name)s: %(message)s', stream=sys.stderr)
    context = Context(list(sys.argv if argv is None else argv), options=options)
    return Bootstrapper(context).run()


if __name__ == '__main__':
    sys.exit(main())
