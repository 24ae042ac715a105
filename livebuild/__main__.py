"""
Entry point for running livebuild via `python -m livebuild`.
"""

import sys

from .main import main

if __name__ == "__main__":
    sys.exit(main())
