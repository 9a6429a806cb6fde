from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from adaptive_tests.engine import reset_discovery_engines
from tests._fixtures.repo_builder import RepoBuilder


@pytest.fixture
def repo_builder(tmp_path: Path) -> RepoBuilder:
    """Provide a reusable source tree builder rooted at the pytest tmp_path."""
    return RepoBuilder(tmp_path)


@pytest.fixture(autouse=True)
def _isolated_engines() -> Iterator[None]:
    reset_discovery_engines()
    yield
    reset_discovery_engines()
