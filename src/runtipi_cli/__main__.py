"""Entry point for ``python -m runtipi_cli``."""

import sys

from runtipi_cli.cli import main

if __name__ == "__main__":
    sys.exit(main())
