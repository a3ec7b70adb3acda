"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from qagen.generation.repository import TrainingRepository


@pytest.fixture()
def clean_env(monkeypatch) -> None:
    """Drop QAGEN_* variables inherited from the developer shell."""
    for name in list(os.environ):
        if name.startswith("QAGEN_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "qagen.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[TrainingRepository]:
    repo = TrainingRepository(db_path)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()
