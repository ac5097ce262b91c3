"""Durable storage for narration audio: Supabase Storage with a local-disk fallback."""

import logging
from pathlib import Path

from supabase import ClientOptions, create_client

from .config import Config

logger = logging.getLogger("toastcast.audio_storage")

AUDIO_CONTENT_TYPE = "audio/mpeg"
BUCKET_FILE_SIZE_LIMIT = 50 * 1024 * 1024


class StorageUnavailableError(Exception):
    """The storage backend could not accept the upload."""


class SupabaseStorage:
    """Uploads to a public Supabase Storage bucket through the supabase client."""

    def __init__(
        self,
        url: str,
        service_key: str,
        bucket: str = "audio",
        timeout: float = 30.0,
        client=None,
    ):
        self.url = url
        self.service_key = service_key
        self.bucket = bucket
        self.timeout = timeout
        self._client = client
        self._bucket_ready = False

    @property
    def client(self):
        if self._client is None:
            self._client = create_client(
                self.url,
                self.service_key,
                options=ClientOptions(storage_client_timeout=int(self.timeout)),
            )
        return self._client

    def ensure_bucket(self) -> None:
        """Create the bucket as public if it does not exist yet."""
        if self._bucket_ready:
            return
        existing = {b.name for b in self.client.storage.list_buckets()}
        if self.bucket not in existing:
            logger.info("Creating storage bucket %s", self.bucket)
            self.client.storage.create_bucket(
                self.bucket,
                options={
                    "public": True,
                    "file_size_limit": BUCKET_FILE_SIZE_LIMIT,
                    "allowed_mime_types": [AUDIO_CONTENT_TYPE],
                },
            )
        self._bucket_ready = True

    def upload(self, data: bytes, filename: str) -> str:
        try:
            self.ensure_bucket()
            bucket = self.client.storage.from_(self.bucket)
            bucket.upload(
                filename,
                data,
                file_options={
                    "content-type": AUDIO_CONTENT_TYPE,
                    "cache-control": "3600",
                    "upsert": "true",
                },
            )
            return bucket.get_public_url(filename)
        except Exception as e:
            raise StorageUnavailableError(f"Supabase upload failed: {e}") from e


class LocalStorage:
    """Writes audio under <public_dir>/audio and serves it from /audio/."""

    def __init__(self, public_dir: Path, url_prefix: str = "/audio"):
        self.audio_dir = Path(public_dir) / "audio"
        self.url_prefix = url_prefix.rstrip("/")

    def upload(self, data: bytes, filename: str) -> str:
        try:
            self.audio_dir.mkdir(parents=True, exist_ok=True)
            (self.audio_dir / filename).write_bytes(data)
        except OSError as e:
            raise StorageUnavailableError(f"Local audio write failed: {e}") from e
        return f"{self.url_prefix}/{filename}"


class FallbackStorage:
    """Try the primary backend, then the fallback. Same URL shape either way."""

    def __init__(self, primary, fallback):
        self.primary = primary
        self.fallback = fallback

    def upload(self, data: bytes, filename: str) -> str:
        try:
            return self.primary.upload(data, filename)
        except StorageUnavailableError as e:
            logger.error("Primary audio storage failed, falling back to local storage: %s", e)
        return self.fallback.upload(data, filename)


def build_audio_storage(config: Config):
    local = LocalStorage(config.storage.public_dir)
    if not config.storage.supabase_enabled:
        return local
    supabase = SupabaseStorage(
        config.storage.supabase_url,
        config.storage.supabase_service_key,
        bucket=config.storage.bucket,
        timeout=config.storage.timeout,
    )
    return FallbackStorage(supabase, local)
