"""Signal desk entrypoint."""

from __future__ import annotations

import sys

from signal_desk.cli import main

if __name__ == "__main__":
    sys.exit(main())
