def greet(names: 'list[str]') -> str:
    if not names:
        return 'Hello, nobody!'
    return 'Hello, ' + ' and '.join(names) + '!'
