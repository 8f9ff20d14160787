"""
Tests for transcription post-processing.
"""

import pytest

from voxkey.utils import TextProcessor

remove_filler_words = TextProcessor.remove_filler_words
ensure_ending_punctuation = TextProcessor.ensure_ending_punctuation


@pytest.fixture
def processor(config):
    return TextProcessor(config)


class TestRemoveFillerWords:
    """Tests for filler word removal."""

    def test_removes_um(self):
        """Should remove 'um' filler words."""
        assert "Hello world" in remove_filler_words("Hello um world")
        assert "Hello world" in remove_filler_words("Hello umm world")

    def test_removes_uh(self):
        """Should remove 'uh' fillers."""
        assert "Hello world" in remove_filler_words("Hello uh world")
        assert "Hello world" in remove_filler_words("Hello uhh world")

    def test_removes_hmm(self):
        """Should remove 'hmm' fillers."""
        assert "Hello world" in remove_filler_words("Hello hmm world")

    def test_preserves_real_words(self):
        """Should not remove words that contain filler patterns."""
        result = remove_filler_words("The umbrella is here")
        assert "umbrella" in result

    def test_removes_trailing_hallucinations(self):
        """Should remove common Whisper hallucinations at end of text."""
        test_cases = [
            ("Hello world. Thank you for watching.", "Hello world."),
            ("Hello world. Subscribe to my channel.", "Hello world."),
            ("Hello world. Please like and subscribe.", "Hello world."),
            ("Hello world. See you next time.", "Hello world."),
        ]
        for input_text, expected in test_cases:
            result = remove_filler_words(input_text)
            assert result == expected, f"Failed for: {input_text}"

    def test_removes_space_before_punctuation(self):
        """Should remove spaces before punctuation."""
        assert remove_filler_words("Hello , world .") == "Hello, world."

    def test_cleans_multiple_spaces(self):
        """Should collapse repeated spaces."""
        assert "  " not in remove_filler_words("Hello    world")

    def test_handles_only_fillers(self):
        """Should return empty text for only fillers."""
        assert remove_filler_words("um uh hmm") == ""


class TestEnsureEndingPunctuation:
    """Tests for ensuring proper ending punctuation."""

    def test_adds_period_if_missing(self):
        """Should add a period if missing."""
        assert ensure_ending_punctuation("Hello world") == "Hello world."

    def test_preserves_existing_punctuation(self):
        """Should keep existing ending punctuation."""
        assert ensure_ending_punctuation("Hello world.") == "Hello world."
        assert ensure_ending_punctuation("How are you?") == "How are you?"
        assert ensure_ending_punctuation("Hello world!") == "Hello world!"

    def test_strips_whitespace(self):
        """Should strip surrounding whitespace."""
        assert ensure_ending_punctuation("  Hello world  ") == "Hello world."

    def test_handles_empty_string(self):
        """Should handle an empty string."""
        assert ensure_ending_punctuation("") == ""


class TestProcess:
    """Tests for the full post-processing pipeline."""

    def test_full_pipeline(self, processor):
        """Should apply every cleanup step."""
        assert processor.process("  um Hello , world uh ") == "Hello, world."

    def test_empty_input_unchanged(self, processor):
        """Should leave empty input unchanged."""
        assert processor.process("") == ""

    def test_only_fillers_becomes_empty(self, processor):
        """Should turn filler-only text into nothing."""
        assert processor.process("um, uh.") == ""

    def test_name_replacements(self, processor, config):
        """Should apply configured name replacements."""
        config.set_config_value({"callum": "Calum"}, 'post_processing', 'name_replacements')
        assert processor.process("ask callum about it") == "ask Calum about it."

    def test_prompt_leak_removed(self, processor, config):
        """Should remove a leaked initial prompt."""
        config.set_config_value("Use proper punctuation please.", 'model_options', 'initial_prompt')
        assert processor.process("Use proper punctuation please. Ship it") == "Ship it."

    def test_disabled_only_strips(self, processor, config):
        """Should only strip whitespace when disabled."""
        config.set_config_value(False, 'post_processing', 'enabled')
        assert processor.process("  um hello  ") == "um hello"

    def test_punctuation_optional(self, processor, config):
        """Should skip ending punctuation when disabled."""
        config.set_config_value(False, 'post_processing', 'ensure_punctuation')
        assert processor.process("hello world") == "hello world"
