"""Pytest configuration for the drift monitor test suite."""

import os
import sys
from pathlib import Path
from typing import Generator

import pytest


def _ensure_test_env() -> None:
    """Seed environment variables so tests never reach real endpoints."""
    os.environ.setdefault("EMAIL_RELAY_URL", "http://relay.test/send")
    os.environ.setdefault("DRIFT_LOG_LEVEL", "DEBUG")


_ensure_test_env()

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from models import Base  # noqa: E402


@pytest.fixture
def sqlite_session_factory(tmp_path: Path) -> Generator[sessionmaker, None, None]:
    """Provide a sqlite session factory backed by a temp file."""
    db_path = tmp_path / "drift.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    yield factory
    engine.dispose()
