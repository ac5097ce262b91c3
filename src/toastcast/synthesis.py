"""Toast text synthesis from reflection notes, with a templated fallback."""

import logging
import random
import subprocess

from .config import Config

logger = logging.getLogger("toastcast.synthesis")

SYSTEM_PROMPT = (
    "You are a motivational coach who creates personalized weekly celebrations "
    "based on reflection notes. Keep the tone warm, encouraging, and celebratory. "
    "Highlight patterns, progress, and growth. Keep responses under 200 words."
)

OPENAI_DEFAULT_MODEL = "gpt-4o"
CLAUDE_DEFAULT_MODEL = "sonnet"


class NoReflectionsError(Exception):
    """There are no reflections to build a toast from."""

    def __init__(self, message: str = "No notes found for this period. Add some reflections first!"):
        super().__init__(message)


class LanguageProviderError(Exception):
    """The language-generation provider failed or returned nothing usable."""


def build_user_prompt(note_contents: list[str]) -> str:
    joined = "\n\n".join(note_contents)
    return (
        "Create a personalized celebratory toast based on these reflection notes "
        f"from the past week:\n\n{joined}"
    )


def _plural(count: int, word: str) -> str:
    return word if count == 1 else f"{word}s"


def fallback_toast(note_count: int, rng: random.Random | None = None) -> str:
    """Templated toast that mentions the note count. Pure string formatting."""
    moments = _plural(note_count, "moment")
    reflections = _plural(note_count, "reflection")
    templates = [
        f"Here's to a week of reflection and growth! You took time to document {note_count} "
        f"{moments} this week. Each note represents a step in your journey - keep building "
        "on this momentum!",
        f"Celebrating your consistency this week! With {note_count} {reflections}, you're "
        "creating a valuable record of your journey. These moments of awareness are powerful "
        "tools for growth.",
        f"A toast to your mindfulness! Your {note_count} {reflections} this week show your "
        "commitment to self-awareness. These insights will serve you well as you continue "
        "forward.",
    ]
    return (rng or random).choice(templates)


class ClaudeCLIProvider:
    """Completes prompts with the `claude` CLI in print mode."""

    def __init__(self, model: str = CLAUDE_DEFAULT_MODEL, timeout: float = 30.0):
        self.model = model or CLAUDE_DEFAULT_MODEL
        self.timeout = timeout

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        try:
            result = subprocess.run(
                [
                    "claude",
                    "-p", "-",
                    "--model", self.model,
                    "--system-prompt", system_prompt,
                ],
                input=user_prompt,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise LanguageProviderError(f"claude timed out after {self.timeout}s") from e
        except FileNotFoundError as e:
            raise LanguageProviderError("Claude CLI not found") from e

        if result.returncode != 0:
            raise LanguageProviderError(
                f"claude exited with {result.returncode}: "
                f"{(result.stderr or result.stdout or '')[:200]}"
            )
        return result.stdout.strip()


class OpenAIProvider:
    """Completes prompts with the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: str,
        model: str = OPENAI_DEFAULT_MODEL,
        timeout: float = 30.0,
        max_tokens: int = 400,
        temperature: float = 0.7,
        client=None,
    ):
        if client is None:
            from openai import OpenAI
            # A single attempt per synthesis; the caller falls back on failure
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.client = client
        self.model = model or OPENAI_DEFAULT_MODEL
        self.max_tokens = max_tokens
        self.temperature = temperature

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        if not response.choices:
            raise LanguageProviderError("OpenAI returned no choices")
        return (response.choices[0].message.content or "").strip()


def build_language_provider(config: Config):
    """Provider for config.llm, or None when text generation is not configured."""
    llm = config.llm
    provider = llm.provider.lower()
    if provider == "claude":
        return ClaudeCLIProvider(model=llm.model, timeout=llm.timeout)
    if provider == "openai":
        if not llm.openai_api_key:
            logger.warning("OpenAI provider selected but no API key configured, using templates")
            return None
        return OpenAIProvider(
            api_key=llm.openai_api_key,
            model=llm.model,
            timeout=llm.timeout,
            max_tokens=llm.max_tokens,
            temperature=llm.temperature,
        )
    if provider:
        logger.warning("Unknown language provider %r, using templates", llm.provider)
    return None


class ContentSynthesizer:
    """Turns reflection texts into toast prose.

    One provider attempt; any failure or empty output degrades to
    fallback_toast().
    """

    def __init__(self, provider=None, rng: random.Random | None = None):
        self.provider = provider
        self.rng = rng or random.Random()

    def synthesize(self, note_contents: list[str]) -> str:
        contents = [c for c in (note_contents or []) if c and c.strip()]
        if not contents:
            raise NoReflectionsError()

        if self.provider is None:
            return fallback_toast(len(contents), self.rng)

        try:
            text = self.provider.complete(SYSTEM_PROMPT, build_user_prompt(contents))
        except Exception as e:
            logger.warning("Language provider failed, using template: %s", e)
            return fallback_toast(len(contents), self.rng)

        if not text or not text.strip():
            logger.warning("Language provider returned empty text, using template")
            return fallback_toast(len(contents), self.rng)
        return text.strip()
