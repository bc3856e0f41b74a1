"""Allow ``python -m cadence_ext``."""

import sys

from cadence_ext.cli import main

if __name__ == "__main__":
    sys.exit(main())
