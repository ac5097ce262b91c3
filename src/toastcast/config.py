"""Configuration loading for toastcast."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import tomli

logger = logging.getLogger("toastcast.config")


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"           # INFO or DEBUG
    output: str = "console"       # console, file, or both
    file: str = ""                # log file path
    rotate: bool = True           # enable rotation
    max_size_mb: int = 10         # max file size before rotation
    backup_count: int = 5         # rotated files to keep
    levels: dict[str, str] = field(default_factory=dict)  # component -> level, e.g. {"scheduler": "DEBUG"}


@dataclass
class SchedulerConfig:
    cron: str = "*/15 * * * *"  # tick cadence, evaluated in UTC
    max_workers: int = 1  # users processed in parallel per tick (1 = sequential)
    idle_sleep: float = 5.0  # seconds between cadence checks in daemon mode
    lock_path: str = "/tmp/toastcast-scheduler.lock"


@dataclass
class ToastsConfig:
    """Toast generation settings."""
    run_mode: str = "production"  # "production" or "simulated"
    excluded_user_ids: list[int] = field(default_factory=lambda: [9999])  # synthetic accounts
    default_voice_style: str = "friendly"
    activity_logging: bool = True


@dataclass
class LLMConfig:
    """Language-generation provider."""
    provider: str = ""           # "", "claude", or "openai"
    model: str = ""              # empty = provider default
    timeout: float = 30.0
    openai_api_key: str = ""
    max_tokens: int = 400
    temperature: float = 0.7


@dataclass
class SpeechConfig:
    """Voice-synthesis provider."""
    elevenlabs_api_key: str = ""
    elevenlabs_url: str = "https://api.elevenlabs.io"
    timeout: float = 15.0
    max_requests_per_hour: int = 10  # per user
    quota_warning_threshold: int = 2000  # characters remaining
    check_credits: bool = True
    openai_fallback: bool = False  # use OpenAI TTS when ElevenLabs quota is exhausted
    openai_model: str = "tts-1"


@dataclass
class StorageConfig:
    """Audio storage: Supabase Storage with local-disk fallback."""
    supabase_url: str = ""
    supabase_service_key: str = ""
    bucket: str = "audio"
    timeout: float = 30.0
    public_dir: Path = field(default_factory=lambda: Path("public"))

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path("data/toastcast.db"))
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    toasts: ToastsConfig = field(default_factory=ToastsConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @property
    def simulated(self) -> bool:
        """Whether generation runs against no-op persistence."""
        return self.toasts.run_mode.lower() == "simulated"

    def is_excluded_user(self, user_id: int) -> bool:
        return user_id in self.toasts.excluded_user_ids


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from TOML file."""
    if config_path is None:
        # Look for config in standard locations
        candidates = [
            Path("config/config.toml"),
            Path.home() / ".config/toastcast/config.toml",
            Path("/etc/toastcast/config.toml"),
        ]
        for candidate in candidates:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None or not config_path.exists():
        config = Config()
    else:
        with open(config_path, "rb") as f:
            data = tomli.load(f)
        config = _parse_config(data)
        logger.debug("Loaded config from %s", config_path)

    _apply_env_overrides(config)
    return config


def _parse_config(data: dict) -> Config:
    config = Config()

    if "db_path" in data:
        config.db_path = Path(data["db_path"])

    if "logging" in data:
        log = data["logging"]
        config.logging = LoggingConfig(
            level=log.get("level", "INFO"),
            output=log.get("output", "console"),
            file=log.get("file", ""),
            rotate=log.get("rotate", True),
            max_size_mb=log.get("max_size_mb", 10),
            backup_count=log.get("backup_count", 5),
            levels={str(k): str(v) for k, v in log.get("levels", {}).items()},
        )

    if "scheduler" in data:
        sched = data["scheduler"]
        config.scheduler = SchedulerConfig(
            cron=sched.get("cron", "*/15 * * * *"),
            max_workers=max(1, sched.get("max_workers", 1)),
            idle_sleep=sched.get("idle_sleep", 5.0),
            lock_path=sched.get("lock_path", "/tmp/toastcast-scheduler.lock"),
        )

    if "toasts" in data:
        t = data["toasts"]
        config.toasts = ToastsConfig(
            run_mode=t.get("run_mode", "production"),
            excluded_user_ids=[int(uid) for uid in t.get("excluded_user_ids", [9999])],
            default_voice_style=t.get("default_voice_style", "friendly"),
            activity_logging=t.get("activity_logging", True),
        )

    if "llm" in data:
        llm = data["llm"]
        config.llm = LLMConfig(
            provider=llm.get("provider", ""),
            model=llm.get("model", ""),
            timeout=llm.get("timeout", 30.0),
            openai_api_key=llm.get("openai_api_key", ""),
            max_tokens=llm.get("max_tokens", 400),
            temperature=llm.get("temperature", 0.7),
        )

    if "speech" in data:
        sp = data["speech"]
        config.speech = SpeechConfig(
            elevenlabs_api_key=sp.get("elevenlabs_api_key", ""),
            elevenlabs_url=sp.get("elevenlabs_url", "https://api.elevenlabs.io"),
            timeout=sp.get("timeout", 15.0),
            max_requests_per_hour=sp.get("max_requests_per_hour", 10),
            quota_warning_threshold=sp.get("quota_warning_threshold", 2000),
            check_credits=sp.get("check_credits", True),
            openai_fallback=sp.get("openai_fallback", False),
            openai_model=sp.get("openai_model", "tts-1"),
        )

    if "storage" in data:
        st = data["storage"]
        config.storage = StorageConfig(
            supabase_url=st.get("supabase_url", ""),
            supabase_service_key=st.get("supabase_service_key", ""),
            bucket=st.get("bucket", "audio"),
            timeout=st.get("timeout", 30.0),
            public_dir=Path(st.get("public_dir", "public")),
        )

    return config


def _apply_env_overrides(config: Config) -> None:
    """Environment variable overrides for secrets (allows EnvironmentFile= usage)."""
    _env_secret_overrides = [
        ("TOASTCAST_OPENAI_API_KEY", "llm", "openai_api_key"),
        ("TOASTCAST_ELEVENLABS_API_KEY", "speech", "elevenlabs_api_key"),
        ("TOASTCAST_SUPABASE_SERVICE_KEY", "storage", "supabase_service_key"),
    ]
    for env_var, section, field_name in _env_secret_overrides:
        val = os.environ.get(env_var)
        if val:
            setattr(getattr(config, section), field_name, val)

    # Conventional provider variables only fill settings left empty
    _env_defaults = [
        ("OPENAI_API_KEY", "llm", "openai_api_key"),
        ("ELEVENLABS_API_KEY", "speech", "elevenlabs_api_key"),
        ("SUPABASE_URL", "storage", "supabase_url"),
        ("SUPABASE_SERVICE_KEY", "storage", "supabase_service_key"),
    ]
    for env_var, section, field_name in _env_defaults:
        val = os.environ.get(env_var)
        if val and not getattr(getattr(config, section), field_name):
            setattr(getattr(config, section), field_name, val)
