import sys

from tane.archive import check_metadata, VirtualArchive
from tane.chunks import READ_ERRORS
from tane.errors import MountError


def inspect(path: str) -> int:
    """Check that every file in the executable's archive can be read."""
    try:
        archive = VirtualArchive.mount(path)
    except MountError as x:
        print(f'Error: {x}')
        return 1

    errors = 0
    with archive:
        try:
            metadata = check_metadata(archive)
        except MountError as x:
            print(f'Error: {x}')
            errors += 1
        else:
            if metadata is not None:
                print(f'archive made by tane {metadata.get("version", "?")}')

        for name, size in archive.iter_files():
            if size == 0:
                print(f'archived file "{name}" is empty')
                continue

            try:
                data = archive.read_bytes(name)
                print(f'archived file "{name}" has {len(data)} bytes')
            except READ_ERRORS as x:
                print(f'Error: archived file "{name}" is malformed ({x})')
                errors += 1

    return 1 if errors else 0


if __name__ == '__main__':
    if len(sys.argv) != 2:
        print('Usage: python -m tane.debug <path-to-executable>')
        sys.exit(1)
    sys.exit(inspect(sys.argv[1]))
