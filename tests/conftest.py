"""
Shared pytest fixtures:
- File-backed and in-memory stores (closed after each test)
- Box factories with and without a codec
- Clean BOXSTORE_* environment for config tests
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Iterator

import pytest

from boxstore import Box, JSONCodec, box_factory, open_store
from boxstore.db import SQLiteStore


@pytest.fixture
def store(tmp_path: Path) -> Iterator[SQLiteStore]:
    """A fresh file-backed store (WAL, per-thread connections)."""
    s = open_store(f"sqlite:///{tmp_path / 'db.box'}")
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def mem_store() -> Iterator[SQLiteStore]:
    s = open_store("memory://")
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def boxes(store: SQLiteStore) -> Callable[[str], Box]:
    """Factory of root boxes without a codec."""
    return box_factory(store)


@pytest.fixture
def json_boxes(store: SQLiteStore) -> Callable[[str], Box]:
    """Factory of root boxes using the JSON codec."""
    return box_factory(store, JSONCodec())


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Drop BOXSTORE_* variables and point the data dir at a temp directory."""
    for k in list(os.environ):
        if k.startswith("BOXSTORE_"):
            monkeypatch.delenv(k, raising=False)
    data_dir = tmp_path / "data"
    monkeypatch.setenv("BOXSTORE_DATA_DIR", str(data_dir))
    return data_dir
