"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from rootstock.context import BuildContext
from rootstock.observability import StructuredLogger
from rootstock.options import BuildOptions


@pytest.fixture
def ctx() -> BuildContext:
    return BuildContext.background()


@pytest.fixture
def options(tmp_path: Path) -> BuildOptions:
    """Options that allocate bundles inside the test's temporary directory."""
    return BuildOptions(tmp_dir=tmp_path / "bundles", poll_interval=0.02)


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger()
