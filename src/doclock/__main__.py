"""Allow ``python -m doclock``."""

import sys

from doclock.cli import main

if __name__ == "__main__":
    sys.exit(main())
