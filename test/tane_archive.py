import json
import os

from .console import Console
from .support import mounted, scratch_directory, write_archive, write_launcher
from tane.archive import (
    base_directory,
    basename,
    check_metadata,
    executable_path,
    mount_archive,
    VirtualArchive,
)
from tane.errors import MountError


FILES = {
    'init.py': 'print("hello")\n',
    'pkg/__init__.py': '',
    'pkg/mod.py': 'VALUE = 1\n',
    'data/': '',
    'data/blob.bin': bytes(range(256)),
}


def test_basename(console: Console) -> None:
    for path, separator, expected in (
        ('/usr/local/bin/app', '/', 'app'),
        ('app', '/', 'app'),
        ('./app', '/', 'app'),
        ('bin/', '/', ''),
        ('C:\\Program Files\\app.exe', '\\', 'app.exe'),
        ('a::b::c', '::', 'c'),
        ('', '/', ''),
    ):
        console.assert_eq(basename(path, separator), expected)

    with console.assert_raises(ValueError):
        basename('a/b', '')


def test_executable_path(console: Console) -> None:
    console.assert_eq(executable_path('bin/app', '/opt/bin/'), '/opt/bin/app')
    console.assert_eq(executable_path('app', '/opt/bin/'), '/opt/bin/app')
    console.assert_eq(base_directory('app'), os.path.join(os.getcwd(), ''))
    console.assert_op(str.endswith, base_directory('bin/app'), os.sep)


def test_namespace(console: Console) -> None:
    with mounted(FILES) as archive:
        console.assert_eq(archive.root, '/')
        console.assert_op(archive.exists, '/init.py')
        console.assert_op(archive.exists, 'init.py')
        console.assert_op(archive.exists, '//pkg/./mod.py')
        console.assert_op(archive.exists, '/pkg')
        console.assert_op(archive.is_directory, '/pkg')
        console.assert_op(archive.is_directory, '/data')
        console.assert_op(archive.is_directory, '/')
        console.assert_op(archive.is_directory, '/init.py', expected=False)
        console.assert_op(archive.exists, '/missing.py', expected=False)
        console.assert_op(archive.exists, '/pkg/../init.py', expected=False)
        console.assert_op(archive.exists, '\\init.py', expected=False)

        console.assert_eq(archive.size('/data/blob.bin'), 256)
        console.assert_eq(archive.read_bytes('/pkg/mod.py'), b'VALUE = 1\n')
        console.assert_eq(
            [name for name, _ in archive.iter_files()],
            ['/data/blob.bin', '/init.py', '/pkg/__init__.py', '/pkg/mod.py'],
        )

        with console.assert_raises(FileNotFoundError):
            archive.open_read('/missing.py')
        with console.assert_raises(IsADirectoryError):
            archive.open_read('/pkg')


def test_mount_failure(console: Console) -> None:
    with scratch_directory() as tmpdir:
        with console.assert_raises(MountError):
            VirtualArchive.mount(str(tmpdir / 'missing'))
        with console.assert_raises(MountError):
            VirtualArchive.mount(str(write_launcher(tmpdir / 'launcher')))
        with console.assert_raises(MountError):
            VirtualArchive.mount(str(tmpdir))


def test_unmount_once(console: Console) -> None:
    with scratch_directory() as tmpdir:
        archive = VirtualArchive.mount(str(write_archive(tmpdir / 'app', FILES)))
        console.assert_op(lambda a: a.mounted, archive)
        archive.unmount()
        console.assert_op(lambda a: a.mounted, archive, expected=False)

        with console.assert_raises(MountError):
            archive.unmount()
        with console.assert_raises(MountError):
            archive.open_read('/init.py')


def test_mount_self_then_fallback(console: Console) -> None:
    with scratch_directory() as tmpdir:
        app = str(write_archive(tmpdir / 'app', FILES))
        launcher = str(write_launcher(tmpdir / 'launcher'))

        archive, skip = mount_archive([app, 'a', 'b'])
        with archive:
            console.assert_eq(archive.source, app)
            console.assert_eq(skip, 1)
        self_args = [app, 'a', 'b'][skip:]

        base_dir = str(tmpdir) + os.sep
        archive, skip = mount_archive(['launcher', app, 'a', 'b'], base_dir)
        with archive:
            console.assert_eq(archive.source, app)
            console.assert_eq(skip, 2)
        fallback_args = ['launcher', app, 'a', 'b'][skip:]

        console.assert_eq(self_args, ['a', 'b'])
        console.assert_eq(fallback_args, self_args)

        with console.assert_raises(MountError):
            mount_archive([launcher])
        with console.assert_raises(MountError):
            mount_archive([launcher, launcher, 'a'])
        with console.assert_raises(MountError):
            mount_archive([])


def test_check_metadata(console: Console) -> None:
    def metadata(value: object) -> 'dict[str, str]':
        return {'__tane__.json': json.dumps(value)}

    with mounted(FILES) as archive:
        console.assert_is(check_metadata(archive), None)

    with mounted(metadata({'version': '0.1.0', 'requires-python': '>=3.8'})) as archive:
        result = check_metadata(archive, '3.12.1')
        console.assert_eq(result, {'version': '0.1.0', 'requires-python': '>=3.8'})
        console.assert_op(lambda a: check_metadata(a) is not None, archive)
        console.assert_op(lambda a: check_metadata(a, '3.13.0rc1') is not None, archive)

    with mounted(metadata({'requires-python': '>=3.13'})) as archive:
        with console.assert_raises(MountError):
            check_metadata(archive, '3.12.1')

    for bad_metadata in (
        {'__tane__.json': '{"requires-python": '},
        metadata(['>=3.8']),
        metadata({'requires-python': 38}),
        metadata({'requires-python': 'three point eight'}),
    ):
        with mounted(bad_metadata) as archive:
            with console.assert_raises(MountError):
                check_metadata(archive)
