# SPDX-License-Identifier: Apache-2.0
"""
Repository-wide pytest setup: source-checkout imports and a clean
``SEEDFORGE_*`` environment for every test.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def clean_seedforge_env(monkeypatch):
    """Keep an operator's shell settings (API keys, targets, state dirs) out of tests."""
    for name in [name for name in os.environ if name.startswith("SEEDFORGE_")]:
        monkeypatch.delenv(name)
