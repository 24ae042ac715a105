"""Run livebuild from a source checkout."""

import sys

from livebuild.main import main

if __name__ == "__main__":
    sys.exit(main())
