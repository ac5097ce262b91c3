"""Narration: text-to-speech for toasts with classified, non-raising failures."""

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum

import httpx

from .audio_storage import StorageUnavailableError, build_audio_storage
from .config import Config
from .voices import Voice, voice_for_style

logger = logging.getLogger("toastcast.narration")

DEFAULT_STABILITY = 0.5
DEFAULT_SIMILARITY_BOOST = 0.75


class NarrationError(str, Enum):
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    TIMEOUT = "timeout"
    NOT_CONFIGURED = "not_configured"
    AUTH_FAILED = "auth_failed"
    STORAGE_FAILED = "storage_failed"
    UNKNOWN = "unknown"

    @property
    def message(self) -> str:
        return _ERROR_MESSAGES[self]

    @property
    def marker(self) -> str:
        """Legacy in-band form shown where an audio player would be."""
        return f"Error: {self.message}"

    @classmethod
    def parse(cls, value: str | None) -> "NarrationError":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


_ERROR_MESSAGES = {
    NarrationError.RATE_LIMITED: "Too many requests. Please try again later.",
    NarrationError.QUOTA_EXCEEDED: "Voice generation quota exceeded. Please try again later.",
    NarrationError.TIMEOUT: "Voice generation timed out. Please try again later.",
    NarrationError.NOT_CONFIGURED: "TTS service not configured.",
    NarrationError.AUTH_FAILED: "TTS service authentication failed.",
    NarrationError.STORAGE_FAILED: "Failed to save generated audio.",
    NarrationError.UNKNOWN: "Voice generation failed. Please try again later.",
}


@dataclass(frozen=True)
class NarrationResult:
    url: str | None = None
    error: NarrationError | None = None

    @classmethod
    def success(cls, url: str) -> "NarrationResult":
        return cls(url=url)

    @classmethod
    def failure(cls, error: NarrationError) -> "NarrationResult":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.url)

    @property
    def marker(self) -> str:
        return self.url if self.ok else (self.error or NarrationError.UNKNOWN).marker


class SpeechProviderError(Exception):
    """A speech provider call failed; `kind` is the classified reason."""

    def __init__(self, kind: NarrationError, detail: str = ""):
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail


@dataclass(frozen=True)
class CreditStatus:
    remaining: int
    limit: int
    low: bool


def classify_response(status_code: int, body) -> NarrationError:
    """Map an ElevenLabs error response to a narration error."""
    detail = body.get("detail") if isinstance(body, dict) else None
    detail_status = detail.get("status") if isinstance(detail, dict) else None
    if status_code == 429:
        return NarrationError.RATE_LIMITED
    if detail_status == "quota_exceeded" or status_code == 402:
        return NarrationError.QUOTA_EXCEEDED
    if status_code in (401, 403):
        return NarrationError.AUTH_FAILED
    if status_code in (408, 504):
        return NarrationError.TIMEOUT
    return NarrationError.UNKNOWN


class ElevenLabsClient:
    """Minimal ElevenLabs REST client."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.elevenlabs.io",
        timeout: float = 15.0,
        quota_warning_threshold: int = 2000,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.quota_warning_threshold = quota_warning_threshold

    def synthesize_speech(self, text: str, voice_id: str) -> bytes:
        try:
            resp = httpx.post(
                f"{self.base_url}/v1/text-to-speech/{voice_id}",
                headers={
                    "xi-api-key": self.api_key,
                    "Content-Type": "application/json",
                    "Accept": "audio/mpeg",
                },
                json={
                    "text": text,
                    "voice_settings": {
                        "stability": DEFAULT_STABILITY,
                        "similarity_boost": DEFAULT_SIMILARITY_BOOST,
                    },
                },
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise SpeechProviderError(NarrationError.TIMEOUT, str(e)) from e
        except httpx.HTTPError as e:
            raise SpeechProviderError(NarrationError.UNKNOWN, str(e)) from e

        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {"detail": resp.text}
            kind = classify_response(resp.status_code, body)
            logger.error("ElevenLabs error %d (%s): %s", resp.status_code, kind.value, str(body)[:300])
            raise SpeechProviderError(kind, f"HTTP {resp.status_code}")

        if not resp.content:
            raise SpeechProviderError(NarrationError.UNKNOWN, "empty audio response")
        return resp.content

    def check_credits(self) -> CreditStatus | None:
        """Remaining character credits, or None if they cannot be determined."""
        try:
            resp = httpx.get(
                f"{self.base_url}/v1/user",
                headers={"xi-api-key": self.api_key},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            subscription = resp.json().get("subscription") or {}
            used = int(subscription["character_count"])
            limit = int(subscription["character_limit"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning("Could not check ElevenLabs credits: %s", e)
            return None

        remaining = limit - used
        low = remaining < self.quota_warning_threshold
        if low:
            logger.warning("ElevenLabs credits low: %d characters remaining", remaining)
        return CreditStatus(remaining=remaining, limit=limit, low=low)


class OpenAISpeech:
    """OpenAI TTS, used when ElevenLabs credits are exhausted."""

    def __init__(self, api_key: str, model: str = "tts-1", timeout: float = 15.0, client=None):
        if client is None:
            from openai import OpenAI
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.client = client
        self.model = model

    def synthesize_speech(self, text: str, voice: str) -> bytes:
        import openai

        try:
            response = self.client.audio.speech.create(model=self.model, voice=voice, input=text)
        except openai.APITimeoutError as e:
            raise SpeechProviderError(NarrationError.TIMEOUT, str(e)) from e
        except openai.RateLimitError as e:
            raise SpeechProviderError(NarrationError.RATE_LIMITED, str(e)) from e
        except openai.AuthenticationError as e:
            raise SpeechProviderError(NarrationError.AUTH_FAILED, str(e)) from e
        except openai.OpenAIError as e:
            raise SpeechProviderError(NarrationError.UNKNOWN, str(e)) from e
        return response.content


class UserRateLimiter:
    """Per-user hourly request cap, in process memory."""

    WINDOW_SECONDS = 3600

    def __init__(self, max_per_hour: int, clock=time.monotonic):
        self.max_per_hour = max_per_hour
        self._clock = clock
        self._entries: dict[int, tuple[int, float]] = {}  # user_id -> (count, reset_at)
        self._lock = threading.Lock()

    def allow(self, user_id: int) -> bool:
        if self.max_per_hour <= 0:
            return True
        now = self._clock()
        with self._lock:
            expired = [uid for uid, (_, reset_at) in self._entries.items() if now >= reset_at]
            for uid in expired:
                del self._entries[uid]
            count, reset_at = self._entries.get(user_id, (0, now + self.WINDOW_SECONDS))
            if count >= self.max_per_hour:
                return False
            self._entries[user_id] = (count + 1, reset_at)
            return True


class Narrator:
    """Converts toast text into a stored audio asset.

    narrate() always returns a NarrationResult; provider and storage
    failures become classified errors.
    """

    def __init__(
        self,
        client: ElevenLabsClient | None,
        storage,
        rate_limiter: UserRateLimiter | None = None,
        fallback_speech: OpenAISpeech | None = None,
        check_credits: bool = True,
    ):
        self.client = client
        self.storage = storage
        self.rate_limiter = rate_limiter
        self.fallback_speech = fallback_speech
        self.check_credits = check_credits

    def _synthesize(self, text: str, voice: Voice) -> bytes:
        if self.check_credits:
            credits = self.client.check_credits()
            if credits is not None and credits.remaining < len(text):
                logger.warning(
                    "Not enough ElevenLabs credits: %d needed, %d available",
                    len(text), credits.remaining,
                )
                if self.fallback_speech is None:
                    raise SpeechProviderError(NarrationError.QUOTA_EXCEEDED, "insufficient credits")
                return self.fallback_speech.synthesize_speech(text, voice.openai_voice)

        try:
            return self.client.synthesize_speech(text, voice.elevenlabs_id)
        except SpeechProviderError as e:
            if e.kind is NarrationError.QUOTA_EXCEEDED and self.fallback_speech is not None:
                logger.info("ElevenLabs quota exceeded, falling back to OpenAI TTS")
                return self.fallback_speech.synthesize_speech(text, voice.openai_voice)
            raise

    def narrate(self, text: str, voice_style: str | None, user_id: int) -> NarrationResult:
        if self.client is None:
            return NarrationResult.failure(NarrationError.NOT_CONFIGURED)

        if self.rate_limiter is not None and not self.rate_limiter.allow(user_id):
            logger.warning("Narration rate limit exceeded for user %s", user_id)
            return NarrationResult.failure(NarrationError.RATE_LIMITED)

        voice = voice_for_style(voice_style)
        try:
            audio = self._synthesize(text, voice)
        except SpeechProviderError as e:
            logger.error("Narration failed for user %s: %s", user_id, e)
            return NarrationResult.failure(e.kind)
        except Exception:
            logger.exception("Unexpected narration failure for user %s", user_id)
            return NarrationResult.failure(NarrationError.UNKNOWN)

        filename = f"toast-{user_id}-{uuid.uuid4().hex[:12]}.mp3"
        try:
            url = self.storage.upload(audio, filename)
        except StorageUnavailableError as e:
            logger.error("Could not store narration for user %s: %s", user_id, e)
            return NarrationResult.failure(NarrationError.STORAGE_FAILED)
        except Exception:
            logger.exception("Unexpected storage failure for user %s", user_id)
            return NarrationResult.failure(NarrationError.STORAGE_FAILED)

        logger.info("Narration stored for user %s (voice: %s): %s", user_id, voice.name, url)
        return NarrationResult.success(url)


def build_narrator(config: Config) -> Narrator:
    speech = config.speech
    client = None
    if speech.elevenlabs_api_key:
        client = ElevenLabsClient(
            speech.elevenlabs_api_key,
            base_url=speech.elevenlabs_url,
            timeout=speech.timeout,
            quota_warning_threshold=speech.quota_warning_threshold,
        )
    else:
        logger.info("ElevenLabs not configured, toasts will not be narrated")

    fallback = None
    if speech.openai_fallback and config.llm.openai_api_key:
        fallback = OpenAISpeech(
            config.llm.openai_api_key, model=speech.openai_model, timeout=speech.timeout,
        )

    return Narrator(
        client,
        build_audio_storage(config),
        rate_limiter=UserRateLimiter(speech.max_requests_per_hour),
        fallback_speech=fallback,
        check_credits=speech.check_credits,
    )
