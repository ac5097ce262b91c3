"""Static voice catalogue: voice styles to provider voice identifiers."""

import logging
from dataclasses import dataclass

logger = logging.getLogger("toastcast.voices")


@dataclass(frozen=True)
class Voice:
    id: str
    name: str
    description: str
    elevenlabs_id: str
    openai_voice: str  # OpenAI TTS voice used when falling back


VOICES: dict[str, Voice] = {
    v.id: v for v in [
        Voice("amelia", "Amelia", "Warm and encouraging", "ZF6FPAbjXT4488VcRRnw", "nova"),
        Voice("david-antfield", "David", "Professional and clear", "jvcMcno3QtjOzGtfpjoI", "echo"),
        Voice("giovanni", "Giovanni", "Smooth and confident", "zcAOhNBS3c14rBihAFp1", "onyx"),
        Voice("grandpa", "Grandpa Spuds Oxley", "Wise and comforting", "NOpBlnGInO9m6vDvFkFC", "echo"),
        Voice("maeve", "Maeve", "Gentle and soothing", "XB0fDUnXU5powFXDhCwa", "shimmer"),
        Voice("rachel", "Rachel", "Friendly and upbeat", "21m00Tcm4TlvDq8ikWAM", "alloy"),
        Voice("ranger", "Ranger", "Strong and motivational", "MF3mGyEYCl7XYWbV9V6O", "onyx"),
        Voice("sam", "Sam", "Casual and relatable", "yoZ06aMxZJJ28mfd3POQ", "nova"),
    ]
}

# Older style names still stored in user preferences
ALIASES: dict[str, str] = {
    "david": "david-antfield",
    "motivational": "rachel",
    "friendly": "rachel",
    "poetic": "giovanni",
    "custom": "rachel",
}

DEFAULT_VOICE = VOICES["rachel"]


def voice_for_style(style: str | None) -> Voice:
    """Catalogue entry for a voice style. Unknown styles get the default voice."""
    key = (style or "").strip().lower()
    key = ALIASES.get(key, key)
    voice = VOICES.get(key)
    if voice is None:
        if key:
            logger.info("No voice mapping for style %r, using %s", style, DEFAULT_VOICE.name)
        return DEFAULT_VOICE
    return voice


def available_voices() -> list[Voice]:
    return sorted(VOICES.values(), key=lambda v: v.name)
