"""Allow ``python -m azdo_cli``."""

import sys

from azdo_cli.cli import main

sys.exit(main())
