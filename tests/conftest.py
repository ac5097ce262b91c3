"""Shared test fixtures for toastcast tests."""

import random

import pytest

from toastcast import db
from toastcast.config import Config, SchedulerConfig, StorageConfig, ToastsConfig
from toastcast.narration import NarrationResult
from toastcast.stores import SqliteStores
from toastcast.synthesis import ContentSynthesizer


@pytest.fixture
def db_path(tmp_path):
    """Initialize a real SQLite database using schema.sql and return its path."""
    path = tmp_path / "test.db"
    db.init_db(path)
    return path


@pytest.fixture
def db_conn(db_path):
    """Yield a database connection with row factory set."""
    with db.get_db(db_path) as conn:
        yield conn


@pytest.fixture
def stores(db_path):
    return SqliteStores(db_path)


@pytest.fixture
def make_config(tmp_path, db_path):
    """Factory fixture that creates Config instances with tmp paths."""
    def _make_config(**overrides):
        defaults = {
            "db_path": db_path,
            "scheduler": SchedulerConfig(lock_path=str(tmp_path / "scheduler.lock")),
            "toasts": ToastsConfig(),
            "storage": StorageConfig(public_dir=tmp_path / "public"),
        }
        defaults.update(overrides)
        return Config(**defaults)
    return _make_config


@pytest.fixture
def make_user(db_path):
    """Factory fixture that inserts a user row and returns the User."""
    def _make_user(user_id=None, **overrides):
        defaults = {
            "name": "Test User",
            "timezone": "UTC",
            "weekly_toast_day": 0,
            "voice_style": "friendly",
            "is_system": False,
        }
        defaults.update(overrides)
        with db.get_db(db_path) as conn:
            new_id = db.create_user(conn, user_id=user_id, **defaults)
            return db.get_user(conn, new_id)
    return _make_user


@pytest.fixture
def add_notes(db_path):
    """Factory fixture that inserts notes for a user at the given instants."""
    def _add_notes(user_id, *created_at, content="Reflection"):
        ids = []
        with db.get_db(db_path) as conn:
            for i, when in enumerate(created_at):
                ids.append(db.create_note(conn, user_id, f"{content} {i + 1}", created_at=when))
        return ids
    return _add_notes


class FakeNarrator:
    """Narrator double that records calls and returns a fixed result."""

    def __init__(self, result=None):
        self.result = result or NarrationResult.success("https://cdn.example.com/audio/toast.mp3")
        self.calls = []

    def narrate(self, text, voice_style, user_id):
        self.calls.append((text, voice_style, user_id))
        return self.result


@pytest.fixture
def fake_narrator():
    return FakeNarrator()


@pytest.fixture
def make_narrator():
    """Factory fixture for narrator doubles returning a given NarrationResult."""
    return FakeNarrator


@pytest.fixture
def template_synthesizer():
    """Synthesizer with no provider: always the deterministic template path."""
    return ContentSynthesizer(provider=None, rng=random.Random(0))
