from argparse import ArgumentParser, HelpFormatter, RawTextHelpFormatter
from dataclasses import dataclass
import logging
import os
import sys
from textwrap import dedent
import traceback

from .maker import ArchiveMaker


def parser() -> ArgumentParser:
    try:
        width = min(os.get_terminal_size()[0], 70)
    except OSError:
        width = 70

    def width_limited_formatter(prog: str) -> HelpFormatter:
        return RawTextHelpFormatter(prog, width=width)

    parser = ArgumentParser('tane',
        description=dedent("""
            Combine a Python application's code and data into a single,
            self-contained executable.

            Tane packs all files below the application's root directory into a
            zip archive and appends that archive to a stub. By default, the
            stub is a "#!/usr/bin/env python3" line, so that the executable
            can be run like any other Python script, as long as tane itself is
            installed. Use the `-s`/`--stub` option to prepend another stub,
            e.g., a frozen launcher.

            When the executable runs, tane mounts the archive appended to it,
            makes the archived modules importable, and executes the archive's
            "init.py" with the remaining command line arguments. If the
            executable cannot be mounted, tane mounts the first argument
            instead. Hence "tane-run app.zip ARGS" also runs an application.

            Code running from the archive reads archived files with the
            preloaded `seed` module's `open()` function.
        """),
        formatter_class=width_limited_formatter)
    parser.add_argument(
        '-o', '--output',
        metavar='FILENAME',
        help='write executable to this file')
    parser.add_argument(
        '-p', '--requires-python',
        metavar='SPECIFIER',
        help='refuse to run with Python versions not\nmatching this specifier')
    parser.add_argument(
        '-s', '--stub',
        metavar='FILENAME',
        help='prepend this file instead of a shebang line')
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='enable verbose output')
    parser.add_argument(
        'root',
        metavar='APPROOT',
        help='include all files below the application\'s\nroot directory, '
        'which must contain "init.py"')
    return parser


@dataclass
class ToolOptions:
    output: 'None | str' = None
    requires_python: 'None | str' = None
    stub: 'None | str' = None
    verbose: bool = False
    root: str = ''


def main() -> None:
    options = parser().parse_args(namespace=ToolOptions())
    logging.basicConfig(
        level=logging.INFO if options.verbose else logging.WARNING,
        format='%(name)s: %(message)s',
    )

    try:
        ArchiveMaker(
            options.root,
            output=options.output,
            stub=options.stub,
            requires_python=options.requires_python,
        ).run()
    except Exception as x:
        if options.verbose:
            traceback.print_exception(x)
        else:
            print(f'Error: {x}')
        sys.exit(1)


if __name__ == '__main__':
    main()
