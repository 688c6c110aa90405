#!.venv/bin/python

# mypy: disallow_any_expr = false

from dataclasses import dataclass
from importlib import import_module
import os
from pathlib import Path
import subprocess
import shutil
import sys

from test.console import Console


# ======================================================================================


@dataclass
class Options:
    test_runner: str
    console: Console
    module_name: str = ''
    verbose: bool = False

    def make_verbose(self) -> None:
        self.verbose = True
        self.console.verbose = True

    def test_command(self) -> list[str]:
        command = [sys.executable, self.test_runner]
        if self.verbose:
            command.append('-v')
        return command


EXPECTED_OUTPUT = 'Made with tane\nHello, a and b!\n'


def run_tests(options: Options) -> int:
    console = options.console
    console.info("Getting started with Tane's test suite...")
    console.detail(f'Running "{sys.executable}"')
    console.detail(f' - Python {sys.version}')

    try:
        import tane
    except ImportError:
        console.error('Unable to import tane')
        sys.exit(1)

    console.detail(f'Testing tane {tane.__version__}')

    cwd = Path('.').absolute()
    tmpdir = cwd / 'tmp'

    shutil.rmtree(tmpdir, ignore_errors=True)
    tmpdir.mkdir()

    # ----------------------------------------------------------------------------------

    console.info('Running unit tests...')

    for module in (
        'test.tane_archive',
        'test.tane_chunks',
        'test.tane_handle',
        'test.tane_resolver',
        'test.tane_bootstrap',
        'test.tane_maker',
    ):
        console.detail(f'╭──── {module}')
        subprocess.run([*options.test_command(), 'run-test-module', module], check=True)
        console.detail('╰─╼')

    # ----------------------------------------------------------------------------------

    console.info('Making executable from example application...')
    app = tmpdir / 'app'
    subprocess.run([
            sys.executable,
            '-m', 'tane',
            '-o', str(app),
            'example'
        ],
        check=True
    )
    console.detail('Created tmp/app')

    # The shim inside the archive imports tane, which need not be installed.
    environ = dict(os.environ)
    environ['PYTHONPATH'] = os.pathsep.join(
        p for p in (str(cwd), environ.get('PYTHONPATH')) if p)

    # ----------------------------------------------------------------------------------

    console.info('Running executable with its own and with a fallback archive...')
    err_count = 0
    for label, command in (
        ('self-mounted', [sys.executable, str(app), 'a', 'b']),
        ('fallback', [sys.executable, '-m', 'tane.bootstrap', str(app), 'a', 'b']),
    ):
        completion = subprocess.run(
            command, env=environ, capture_output=True, encoding='utf8')
        if completion.returncode == 0 and completion.stdout == EXPECTED_OUTPUT:
            console.detail(f'The {label} application greeted as expected')
        else:
            console.detail(
                f'The {label} application exited with status {completion.returncode}:')
            for line in (completion.stdout + completion.stderr).splitlines()[:5]:
                console.detail(f'    {line}')
            err_count += 1

    if err_count > 0:
        console.error('Running the example application is broken!')
        raise SystemExit(1)

    # ----------------------------------------------------------------------------------

    console.info('Inspecting executable...')
    completion = subprocess.run(
        [sys.executable, '-m', 'tane.debug', str(app)],
        capture_output=True,
        encoding='utf8',
    )
    if completion.returncode != 0:
        console.error('Inspection found malformed files in tmp/app!')
        console.detail(completion.stdout)
        sys.exit(1)

    console.detail(f'All {completion.stdout.count("archived file")} files are readable')

    # ----------------------------------------------------------------------------------

    console.success('W00t! All tests passed!')

    shutil.rmtree(tmpdir)
    return 0

# ======================================================================================

def run_module_test(options: Options) -> int:
    console = options.console
    module = import_module(options.module_name)

    errors = 0
    for key in dir(module):
        if not key.startswith('test_'):
            continue
        value = getattr(module, key)
        if not callable(value):
            continue

        console.detail(f'├─ {value.__name__}')
        with console.new_prefix('│   '):
            try:
                value(options.console)
            except Exception as x:
                console.exception(x)
                errors += 1

    return bool(errors + console.failed_assertions)

# --------------------------------------------------------------------------------------

if __name__ == '__main__':
    options = Options(sys.argv[0], Console(sys.stdout))
    console = options.console

    try:
        fn = run_tests
        for arg in sys.argv[1:]:
            if arg == '-v':
                options.make_verbose()
            elif arg == 'run-test-module':
                fn = run_module_test
            elif fn == run_module_test and options.module_name == '':
                options.module_name = arg
            else:
                raise SystemExit(f'unrecognized command line argument "{arg}"')

        if fn == run_module_test and options.module_name == '':
            raise SystemExit('can\'t "run-test-module" without module name')

        sys.exit(fn(options))

    except SystemExit as x:
        code = x.code
        if isinstance(code, str):
            console.error(code)
            code = 1
        sys.exit(code)

    except subprocess.CalledProcessError as x:
        console.info(
            f'command "{" ".join(x.cmd)}" failed with exit status {x.returncode}')
        sys.exit(1)

    except Exception as x:
        console.exception(x)
        sys.exit(1)
