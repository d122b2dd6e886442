"""Allow running as ``python -m msil_comparator``."""

import sys

from msil_comparator.cli import main

sys.exit(main())
