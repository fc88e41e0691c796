"""Entry point for the Forever Paws command line client."""

import sys

from forever_paws.cli import main

if __name__ == "__main__":
    sys.exit(main())
