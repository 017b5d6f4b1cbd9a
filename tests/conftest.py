# tests/conftest.py
from __future__ import annotations

import pytest

from feedstore.config import Settings


@pytest.fixture(autouse=True)
def _isolate_db(tmp_path, monkeypatch):
    monkeypatch.setenv("FEEDSTORE_DB_PATH", str(tmp_path / "test.db"))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(db_path=str(tmp_path / "feeds.db"), sync_workers=4)
