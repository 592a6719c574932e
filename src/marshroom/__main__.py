"""Allow `python -m marshroom`."""

import sys

from marshroom.cli import main

sys.exit(main())
