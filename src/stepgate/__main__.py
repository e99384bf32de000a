"""Allow ``python -m stepgate``."""

import sys

from .cli import main

sys.exit(main())
