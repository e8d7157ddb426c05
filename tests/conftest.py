# Make the repository root importable during tests
import sys
from pathlib import Path

import pytest

# tests/ is one level below the repo root
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from mining_comps.models import Company  # noqa: E402


@pytest.fixture
def barrick() -> Company:
    return Company(ticker="abx.to", name="Barrick Gold Corp", name_alt="Barrick")
