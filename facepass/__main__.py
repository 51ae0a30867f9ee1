"""Entry point for running facepass as a module.

Usage: python -m facepass <command> [options]
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
