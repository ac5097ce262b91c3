"""Tests for toastcast.cli module."""

import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from toastcast import db
from toastcast.cli import main
from toastcast.logging_setup import reset_logging


@pytest.fixture(autouse=True)
def _isolate(monkeypatch):
    for var in (
        "TOASTCAST_OPENAI_API_KEY", "TOASTCAST_ELEVENLABS_API_KEY", "TOASTCAST_SUPABASE_SERVICE_KEY",
        "OPENAI_API_KEY", "ELEVENLABS_API_KEY", "SUPABASE_URL", "SUPABASE_SERVICE_KEY",
    ):
        monkeypatch.delenv(var, raising=False)
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(
        f'db_path = "{tmp_path / "cli.db"}"\n'
        "[storage]\n"
        f'public_dir = "{tmp_path / "public"}"\n'
    )
    return path


def _run(config_file, *args):
    with patch.object(sys, "argv", ["toastcast", "-c", str(config_file), *args]):
        main()


def _seed(db_path, user_id=42, weekly_toast_day=0, notes=2):
    db.init_db(db_path)
    now = datetime.now(timezone.utc)
    with db.get_db(db_path) as conn:
        db.create_user(conn, user_id=user_id, name="Ada", weekly_toast_day=weekly_toast_day)
        for i in range(notes):
            db.create_note(conn, user_id, f"Note {i}", created_at=now - timedelta(days=i + 1))


class TestCli:
    def test_init(self, config_file, tmp_path, capsys):
        _run(config_file, "init")
        assert (tmp_path / "cli.db").exists()
        assert "Database initialized" in capsys.readouterr().out

    def test_generate_creates_toast(self, config_file, tmp_path, capsys):
        _seed(tmp_path / "cli.db", weekly_toast_day=3)
        _run(config_file, "generate", "-u", "42")
        out = capsys.readouterr().out
        assert "Toast 1 (weekly, 2 note(s))" in out
        assert "Error: TTS service not configured." in out

        _run(config_file, "toasts", "-u", "42")
        assert "[1] weekly" in capsys.readouterr().out

    def test_generate_simulated_persists_nothing(self, config_file, tmp_path, capsys):
        _seed(tmp_path / "cli.db")
        _run(config_file, "generate", "-u", "42", "--simulate")
        assert "Simulated toast" in capsys.readouterr().out
        with db.get_db(tmp_path / "cli.db") as conn:
            assert db.list_toasts(conn, 42) == []

    def test_generate_unknown_user(self, config_file, tmp_path):
        db.init_db(tmp_path / "cli.db")
        with pytest.raises(SystemExit) as exc_info:
            _run(config_file, "generate", "-u", "7")
        assert exc_info.value.code == 1

    def test_generate_without_notes(self, config_file, tmp_path, capsys):
        _seed(tmp_path / "cli.db", notes=0)
        _run(config_file, "generate", "-u", "42")
        assert "no_notes" in capsys.readouterr().out

    def test_toasts_empty(self, config_file, tmp_path, capsys):
        db.init_db(tmp_path / "cli.db")
        _run(config_file, "toasts", "-u", "42")
        assert "No toasts found" in capsys.readouterr().out

    def test_next(self, config_file, tmp_path, capsys):
        _seed(tmp_path / "cli.db", notes=0)
        _run(config_file, "next", "-u", "42")
        assert "Next toast for user 42: Sunday" in capsys.readouterr().out

    def test_regenerate_audio_missing_toast(self, config_file, tmp_path):
        db.init_db(tmp_path / "cli.db")
        with pytest.raises(SystemExit):
            _run(config_file, "regenerate-audio", "5")

    def test_tick(self, config_file, tmp_path, capsys):
        db.init_db(tmp_path / "cli.db")
        _run(config_file, "tick")
        assert "Immediate toast generation completed" in capsys.readouterr().out
