"""
Global test configuration for Hymn.

Puts ``src/`` on the import path and pins the environment to ``test`` before
any hymn module reads its settings.
"""

import os
import sys
from pathlib import Path

os.environ["ENV"] = "test"
os.environ.setdefault("OPENAI_API_KEY", "")

# Ensure the project src directory is importable without relying on external environment.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))
