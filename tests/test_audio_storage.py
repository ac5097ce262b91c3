"""Tests for toastcast.audio_storage module."""

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest

from toastcast.audio_storage import (
    FallbackStorage,
    LocalStorage,
    StorageUnavailableError,
    SupabaseStorage,
    build_audio_storage,
)
from toastcast.config import Config, StorageConfig


def _supabase_client(buckets=("audio",)):
    client = MagicMock()
    client.storage.list_buckets.return_value = [SimpleNamespace(name=name) for name in buckets]
    bucket = client.storage.from_.return_value
    bucket.get_public_url.side_effect = (
        lambda path: f"https://proj.supabase.co/storage/v1/object/public/audio/{path}"
    )
    return client


class TestSupabaseStorage:
    def _storage(self, client):
        return SupabaseStorage("https://proj.supabase.co", "svc-key", bucket="audio", client=client)

    def test_upload_returns_public_url(self):
        client = _supabase_client()

        url = self._storage(client).upload(b"mp3", "toast-1.mp3")

        assert url == "https://proj.supabase.co/storage/v1/object/public/audio/toast-1.mp3"
        client.storage.from_.assert_called_with("audio")
        args, kwargs = client.storage.from_.return_value.upload.call_args
        assert args == ("toast-1.mp3", b"mp3")
        assert kwargs["file_options"]["content-type"] == "audio/mpeg"
        assert kwargs["file_options"]["upsert"] == "true"
        client.storage.create_bucket.assert_not_called()

    def test_creates_missing_bucket(self):
        client = _supabase_client(buckets=("avatars",))

        self._storage(client).upload(b"mp3", "x.mp3")

        args, kwargs = client.storage.create_bucket.call_args
        assert args == ("audio",)
        assert kwargs["options"]["public"] is True

    def test_bucket_checked_once(self):
        client = _supabase_client()
        storage = self._storage(client)
        storage.upload(b"a", "a.mp3")
        storage.upload(b"b", "b.mp3")
        assert client.storage.list_buckets.call_count == 1

    def test_upload_error_raises_storage_unavailable(self):
        client = _supabase_client()
        client.storage.from_.return_value.upload.side_effect = RuntimeError("payload too large")
        with pytest.raises(StorageUnavailableError, match="payload too large"):
            self._storage(client).upload(b"mp3", "x.mp3")

    def test_network_error_raises_storage_unavailable(self):
        client = _supabase_client()
        client.storage.list_buckets.side_effect = httpx.ConnectError("refused")
        with pytest.raises(StorageUnavailableError):
            self._storage(client).upload(b"mp3", "x.mp3")

    @patch("toastcast.audio_storage.create_client")
    def test_client_created_lazily(self, mock_create):
        storage = SupabaseStorage("https://proj.supabase.co", "svc-key", timeout=12)
        mock_create.assert_not_called()

        assert storage.client is mock_create.return_value
        assert storage.client is mock_create.return_value
        mock_create.assert_called_once()
        args, kwargs = mock_create.call_args
        assert args == ("https://proj.supabase.co", "svc-key")
        assert kwargs["options"].storage_client_timeout == 12

class TestLocalStorage:
    def test_writes_file_and_returns_path(self, tmp_path):
        url = LocalStorage(tmp_path).upload(b"mp3-bytes", "toast-42.mp3")
        assert url == "/audio/toast-42.mp3"
        assert (tmp_path / "audio" / "toast-42.mp3").read_bytes() == b"mp3-bytes"

    def test_unwritable_dir_raises(self, tmp_path):
        blocker = tmp_path / "public"
        blocker.write_text("not a directory")
        with pytest.raises(StorageUnavailableError):
            LocalStorage(blocker).upload(b"x", "x.mp3")


class TestFallbackStorage:
    def test_primary_used_when_healthy(self):
        primary, fallback = MagicMock(), MagicMock()
        primary.upload.return_value = "https://cdn/x.mp3"
        assert FallbackStorage(primary, fallback).upload(b"x", "x.mp3") == "https://cdn/x.mp3"
        fallback.upload.assert_not_called()

    def test_falls_back_on_primary_failure(self, tmp_path):
        primary = MagicMock()
        primary.upload.side_effect = StorageUnavailableError("down")
        url = FallbackStorage(primary, LocalStorage(tmp_path)).upload(b"x", "x.mp3")
        assert url == "/audio/x.mp3"


class TestBuildAudioStorage:
    def test_local_only_without_supabase(self, tmp_path):
        storage = build_audio_storage(Config(storage=StorageConfig(public_dir=tmp_path)))
        assert isinstance(storage, LocalStorage)
        assert storage.audio_dir == Path(tmp_path) / "audio"

    def test_supabase_with_local_fallback(self, tmp_path):
        storage = build_audio_storage(Config(storage=StorageConfig(
            supabase_url="https://proj.supabase.co", supabase_service_key="k", public_dir=tmp_path,
        )))
        assert isinstance(storage, FallbackStorage)
        assert isinstance(storage.primary, SupabaseStorage)
        assert isinstance(storage.fallback, LocalStorage)
