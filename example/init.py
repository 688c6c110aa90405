import sys

import seed
from greeter import greet

with seed.open('/greeter/banner.txt') as handle:
    banner = handle.read('*a')

print(banner.decode('utf8').strip())
print(greet(sys.argv[1:]))
