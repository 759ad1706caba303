"""Allow ``python -m mesh_features``."""

import sys

from mesh_features.cli import main

sys.exit(main())
