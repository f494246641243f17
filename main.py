from __future__ import annotations

import sys

from ralph_loop.cli import main


if __name__ == "__main__":
	sys.exit(main())
