"""Test package initialisation.

The project source lives one directory level above this package, so the
``modules`` and ``utils`` namespace packages are not importable when the
tests run in isolation.  Append the repository root to ``sys.path`` here
instead of repeating the adjustment in every test module.
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))
