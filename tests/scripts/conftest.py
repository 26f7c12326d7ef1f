"""Conftest for scripts tests."""

import sys
from pathlib import Path

# Add the repository root to sys.path so 'from scripts.xxx import' works
_scripts_dir = Path(__file__).parent.parent.parent / "scripts"
if str(_scripts_dir.parent) not in sys.path:
    sys.path.insert(0, str(_scripts_dir.parent))
