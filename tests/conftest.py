from __future__ import annotations

import sys
from pathlib import Path

import pytest


ROOT_DIR = Path(__file__).resolve().parents[1]
TESTS_DIR = ROOT_DIR / "tests"

for path in (ROOT_DIR, TESTS_DIR):
    value = str(path)
    if path.exists() and value not in sys.path:
        sys.path.insert(0, value)


@pytest.fixture
def db_session(tmp_path):
    from app import db as app_db

    app_db.configure_database(f"sqlite:///{(tmp_path / 'catalog.db').as_posix()}")
    app_db.init_db()
    with app_db.SessionLocal() as db:
        yield db


@pytest.fixture
def settings():
    from app.config import get_settings

    return get_settings()
