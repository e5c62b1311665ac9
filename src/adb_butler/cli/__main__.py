"""
Allow running butlerctl as a module: python -m adb_butler.cli
"""

import sys
from .butlerctl import main

if __name__ == "__main__":
    sys.exit(main())
