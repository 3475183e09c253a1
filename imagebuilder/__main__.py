"""Allow ``python -m imagebuilder``."""

import sys

from imagebuilder import cli

sys.exit(cli.main())
