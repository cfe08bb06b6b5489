"""Pytest configuration helpers.

Put the project's `src/` directory and this directory on `sys.path` so that
`from econlens...` and the shared `factories` module import during collection.
"""
from pathlib import Path
import os
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
TESTS = ROOT / "tests"
for p in (SRC, TESTS):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))


@pytest.fixture(autouse=True)
def _clean_econlens_env(monkeypatch):
    """Keep developer ECONLENS_* settings (API keys in particular) out of the tests."""
    for name in list(os.environ):
        if name.startswith("ECONLENS_"):
            monkeypatch.delenv(name, raising=False)
