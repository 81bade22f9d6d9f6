"""Pytest configuration for project root.

Ensures the ``src`` packages are importable without installation.
"""

from __future__ import annotations

import sys
from pathlib import Path

# Add the ``src`` directory to ``sys.path`` so that ``noether_core`` and
# ``bots`` are importable without ``pip install -e .``.
SRC_PATH = Path(__file__).resolve().parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))
