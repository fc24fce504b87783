from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest


# Ensure the repo root (which contains `greenchain/`) is importable even when
# pytest is invoked with a specific test file path.
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from greenchain.models import SolverSettings  # noqa: E402


@pytest.fixture
def fast_settings() -> SolverSettings:
    return SolverSettings(mesh_scaling=16, error_control=1, tolerance=1e-8, verbosity=-1)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(20150729)
