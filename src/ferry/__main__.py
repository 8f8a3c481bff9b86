"""Allow running Ferry with ``python -m ferry``."""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
