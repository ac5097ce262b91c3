"""Tests for toastcast.synthesis module."""

import random
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from toastcast.config import Config, LLMConfig
from toastcast.synthesis import (
    SYSTEM_PROMPT,
    ClaudeCLIProvider,
    ContentSynthesizer,
    LanguageProviderError,
    NoReflectionsError,
    OpenAIProvider,
    build_language_provider,
    build_user_prompt,
    fallback_toast,
)


class TestFallbackToast:
    @pytest.mark.parametrize("seed", range(10))
    def test_mentions_note_count(self, seed):
        text = fallback_toast(3, random.Random(seed))
        assert "3" in text
        assert text

    def test_singular(self):
        for seed in range(10):
            text = fallback_toast(1, random.Random(seed))
            assert "1 reflections" not in text
            assert "1 moments" not in text

    def test_covers_all_templates(self):
        rng = random.Random(1)
        texts = {fallback_toast(2, rng) for _ in range(200)}
        assert len(texts) == 3


class TestBuildUserPrompt:
    def test_joins_notes_with_blank_lines(self):
        prompt = build_user_prompt(["first", "second"])
        assert "first\n\nsecond" in prompt
        assert prompt.startswith("Create a personalized celebratory toast")


class TestContentSynthesizer:
    def test_empty_input_raises(self):
        with pytest.raises(NoReflectionsError):
            ContentSynthesizer().synthesize([])

    def test_blank_contents_raise(self):
        with pytest.raises(NoReflectionsError):
            ContentSynthesizer().synthesize(["", "   ", None])

    def test_no_provider_uses_template(self):
        text = ContentSynthesizer(rng=random.Random(0)).synthesize(["a", "b", "c"])
        assert "3" in text

    def test_provider_text_returned(self):
        provider = MagicMock()
        provider.complete.return_value = "  Here's to you!  "
        text = ContentSynthesizer(provider).synthesize(["a", "b"])
        assert text == "Here's to you!"
        provider.complete.assert_called_once_with(SYSTEM_PROMPT, build_user_prompt(["a", "b"]))

    def test_provider_failure_falls_back(self):
        provider = MagicMock()
        provider.complete.side_effect = LanguageProviderError("boom")
        text = ContentSynthesizer(provider, random.Random(0)).synthesize(["a", "b", "c"])
        assert "3" in text
        assert provider.complete.call_count == 1

    def test_unexpected_exception_falls_back(self):
        provider = MagicMock()
        provider.complete.side_effect = RuntimeError("network down")
        text = ContentSynthesizer(provider, random.Random(0)).synthesize(["a"])
        assert "1" in text

    def test_empty_provider_output_falls_back(self):
        provider = MagicMock()
        provider.complete.return_value = "   "
        text = ContentSynthesizer(provider, random.Random(0)).synthesize(["a", "b"])
        assert "2" in text

    def test_blank_notes_not_sent_to_provider(self):
        provider = MagicMock()
        provider.complete.return_value = "ok"
        ContentSynthesizer(provider).synthesize(["real", "  "])
        provider.complete.assert_called_once_with(SYSTEM_PROMPT, build_user_prompt(["real"]))


class TestClaudeCLIProvider:
    @patch("toastcast.synthesis.subprocess.run")
    def test_success(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="Cheers!\n", stderr="")
        assert ClaudeCLIProvider(model="haiku").complete("sys", "user") == "Cheers!"
        cmd = mock_run.call_args[0][0]
        assert cmd[:3] == ["claude", "-p", "-"]
        assert "haiku" in cmd
        assert mock_run.call_args.kwargs["input"] == "user"

    @patch("toastcast.synthesis.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired("claude", 30)
        with pytest.raises(LanguageProviderError, match="timed out"):
            ClaudeCLIProvider().complete("sys", "user")

    @patch("toastcast.synthesis.subprocess.run")
    def test_missing_binary(self, mock_run):
        mock_run.side_effect = FileNotFoundError()
        with pytest.raises(LanguageProviderError, match="not found"):
            ClaudeCLIProvider().complete("sys", "user")

    @patch("toastcast.synthesis.subprocess.run")
    def test_nonzero_exit(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="auth error")
        with pytest.raises(LanguageProviderError, match="auth error"):
            ClaudeCLIProvider().complete("sys", "user")


class TestOpenAIProvider:
    def _response(self, content):
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = content
        return response

    def test_calls_chat_completions(self):
        client = MagicMock()
        client.chat.completions.create.return_value = self._response("Cheers!")
        provider = OpenAIProvider("key", client=client)
        assert provider.complete("sys", "user") == "Cheers!"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["max_tokens"] == 400
        assert kwargs["temperature"] == 0.7
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}

    def test_no_choices(self):
        client = MagicMock()
        client.chat.completions.create.return_value = MagicMock(choices=[])
        with pytest.raises(LanguageProviderError):
            OpenAIProvider("key", client=client).complete("sys", "user")


class TestBuildLanguageProvider:
    def test_none_when_unconfigured(self):
        assert build_language_provider(Config()) is None

    def test_claude(self):
        provider = build_language_provider(Config(llm=LLMConfig(provider="claude", model="opus")))
        assert isinstance(provider, ClaudeCLIProvider)
        assert provider.model == "opus"

    def test_openai_without_key(self):
        assert build_language_provider(Config(llm=LLMConfig(provider="openai"))) is None

    def test_openai_with_key(self):
        with patch("openai.OpenAI") as mock_openai:
            provider = build_language_provider(
                Config(llm=LLMConfig(provider="openai", openai_api_key="sk-test")),
            )
        assert isinstance(provider, OpenAIProvider)
        assert mock_openai.call_args.kwargs["max_retries"] == 0

    def test_unknown_provider(self):
        assert build_language_provider(Config(llm=LLMConfig(provider="parrot"))) is None
