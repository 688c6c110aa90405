from contextlib import nullcontext
import io
import json
import logging
import os
from pathlib import Path
import sys
import tomllib
from typing import cast, NamedTuple, TYPE_CHECKING
import zipfile

from packaging.specifiers import InvalidSpecifier, SpecifierSet

from tane import __version__

if TYPE_CHECKING:
    from collections.abc import Iterator
    from contextlib import AbstractContextManager
    from typing import Protocol

    class Writable(Protocol):
        def write(self, data: 'bytes | bytearray') -> int:
            ...


logger = logging.getLogger('tane.maker')

_STUB = b'#!/usr/bin/env python3\n'

_SHIM = b"""\
# DO NOT EDIT! This module was automatically generated by tane.
# It runs the archive's entry point when Python executes the archive.
from tane.bootstrap import main

raise SystemExit(main())
"""

ENTRY_NAME = 'init.py'
SHIM_NAME = '__main__.py'
METADATA_NAME = '__tane__.json'

_SKIPPED_DIRECTORIES = ('__pycache__', '.git', '.hg', '.venv')
_SKIPPED_SUFFIXES = ('.pyc', '.pyo')


class ArchivedFile(NamedTuple):
    """The local path and the archive member name for an archived file."""
    path: Path
    key: str


def load_tool_config(root: 'str | Path') -> 'dict[str, object]':
    """
    Read tane's settings from the pyproject.toml file in the root directory.
    The "requires-python" setting falls back on the project's.
    """
    path = Path(root) / 'pyproject.toml'
    if not path.exists():
        return {}

    with open(path, mode='rb') as file:
        metadata = cast('dict[str, object]', tomllib.load(file))

    config: 'dict[str, object]' = {}
    project = metadata.get('project')
    if isinstance(project, dict) and 'requires-python' in project:
        config['requires-python'] = project['requires-python']

    tool = metadata.get('tool')
    settings = tool.get('tane') if isinstance(tool, dict) else None
    if settings is not None:
        if not isinstance(settings, dict):
            raise ValueError(f'"{path}" has non-table "tool.tane" entry')
        config.update(settings)

    for key in ('requires-python', 'stub'):
        if key in config and not isinstance(config[key], str):
            raise ValueError(f'"{path}" has non-str "{key}" entry')
    return config


class ArchiveMaker:
    """
    Class to create self-contained executables, i.e., a stub followed by a zip
    archive with the code and data of an application rooted in one directory.
    """

    def __init__(
        self,
        root: 'str | Path',
        *,
        output: 'None | str | Path' = None,
        stub: 'None | str | Path' = None,
        requires_python: 'None | str' = None,
        compresslevel: int = 6,
    ) -> None:
        self._root = Path(root)
        self._output = output
        self._compresslevel = compresslevel

        config = load_tool_config(self._root)
        self._stub = stub if stub is not None else cast('None | str', config.get('stub'))
        self._requires_python = (
            requires_python if requires_python is not None
            else cast('None | str', config.get('requires-python'))
        )
        if self._requires_python is not None:
            try:
                SpecifierSet(self._requires_python)
            except InvalidSpecifier as x:
                raise ValueError(
                    f'invalid requires-python "{self._requires_python}"') from x

    def __repr__(self) -> str:
        return f'<tane-maker {self._root}>'

    # ----------------------------------------------------------------------------------

    def run(self) -> None:
        files = sorted(self.list_files(), key=lambda f: f.key)
        self.check_files(files)
        stub = self.read_stub()
        archive = self.emit_archive(files)

        # The nullcontext prevents closing of stdout's binary stream when done.
        context: 'AbstractContextManager[Writable]'
        if self._output is None:
            context = nullcontext(sys.stdout.buffer)
        else:
            context = open(self._output, mode='wb')

        with context as executable:
            executable.write(stub)
            executable.write(archive)

        if self._output is not None:
            mode = os.stat(self._output).st_mode
            os.chmod(self._output, mode | 0o111)
            logger.info(
                'wrote "%s" with %d files (%d bytes)',
                self._output, len(files), len(stub) + len(archive))

    # ----------------------------------------------------------------------------------

    def list_files(self) -> 'Iterator[ArchivedFile]':
        root = self._root.absolute()
        if not root.is_dir():
            raise ValueError(f'archive root "{self._root}" is not a directory')

        pending = list(root.iterdir())
        while pending:
            item = pending.pop()
            if item.is_file():
                if item.suffix not in _SKIPPED_SUFFIXES:
                    key = str(item.relative_to(root)).replace('\\', '/')
                    yield ArchivedFile(item, key)
            elif item.is_dir() and item.name not in _SKIPPED_DIRECTORIES:
                pending.extend(item.iterdir())

    def check_files(self, files: 'list[ArchivedFile]') -> None:
        keys = {file.key for file in files}
        if ENTRY_NAME not in keys:
            raise ValueError(f'archive root "{self._root}" has no {ENTRY_NAME}')
        for reserved in (SHIM_NAME, METADATA_NAME):
            if reserved in keys:
                raise ValueError(
                    f'archive root "{self._root}" must not contain {reserved}')

    def read_stub(self) -> bytes:
        if self._stub is None:
            return _STUB
        with open(self._stub, mode='rb') as file:
            return file.read()

    def emit_metadata(self) -> bytes:
        metadata: 'dict[str, str]' = {
            'version': __version__,
            'entry': '/' + ENTRY_NAME,
        }
        if self._requires_python is not None:
            metadata['requires-python'] = self._requires_python
        return json.dumps(metadata, indent=2).encode('utf8')

    def emit_archive(self, files: 'list[ArchivedFile]') -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(
            buffer,
            mode='w',
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=self._compresslevel,
        ) as archive:
            for file in files:
                logger.debug('archiving "%s"', file.key)
                archive.write(file.path, arcname=file.key)
            archive.writestr(SHIM_NAME, _SHIM)
            archive.writestr(METADATA_NAME, self.emit_metadata())
        return buffer.getvalue()
