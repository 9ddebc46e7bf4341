"""Pytest configuration.

Application code lives in the top-level `src/` namespace package and the
tests import it as `from src.modules...` / `from tests.fakes...`. The repo
root is put on `sys.path` so that works however pytest is launched.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from tests.fakes import RecordingSink  # noqa: E402


@pytest.fixture
def sink():
    """Sink that keeps every noted decode issue"""
    return RecordingSink()
