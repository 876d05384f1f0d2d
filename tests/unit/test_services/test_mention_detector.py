"""Unit tests for review mention detection."""

import pytest

from src.services.mention_detector import MentionDetector, strip_code


@pytest.fixture
def detector() -> MentionDetector:
    return MentionDetector(trigger_token="@codereview", aliases_enabled=True)


class TestHasMention:
    """Tests for MentionDetector.has_mention."""

    @pytest.mark.parametrize(
        "text",
        [
            "@codereview",
            "Please take a look @codereview",
            "@CodeReview can you check this?",
            "(@codereview)",
            "done, @codereview.",
            "line one\n@codereview\nline three",
        ],
    )
    def test_detects_trigger_token(self, detector, text) -> None:
        assert detector.has_mention(text) is True

    @pytest.mark.parametrize(
        "text",
        [
            None,
            "",
            "   ",
            "This needs a review eventually",
            "email me at me@codereview.dev",
            "@codereviewer is a different account",
            "@@codereview",
            "@codereview-bot",
        ],
    )
    def test_ignores_non_mentions(self, detector, text) -> None:
        assert detector.has_mention(text) is False

    def test_ignores_token_inside_code(self, detector) -> None:
        assert detector.has_mention("Use `@codereview` to trigger") is False
        assert detector.has_mention("```\n@codereview\n```") is False
        assert detector.has_mention("~~~text\n@codereview\n~~~\nthanks") is False

    def test_detects_token_after_code_block(self, detector) -> None:
        assert detector.has_mention("```py\nx = 1\n```\n@codereview please") is True

    @pytest.mark.parametrize(
        "text",
        ["@code-review", "@code_review please", "code review please", "Review my code!"],
    )
    def test_aliases(self, detector, text) -> None:
        assert detector.has_mention(text) is True

    def test_aliases_can_be_disabled(self) -> None:
        strict = MentionDetector(trigger_token="@codereview", aliases_enabled=False)

        assert strict.has_mention("@code-review") is False
        assert strict.has_mention("@codereview") is True

    def test_custom_trigger_token(self) -> None:
        custom = MentionDetector(trigger_token="@reviewbot", aliases_enabled=False)

        assert custom.has_mention("hey @reviewbot") is True
        assert custom.has_mention("hey @codereview") is False

    def test_empty_token_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            MentionDetector(trigger_token="  ")


def test_strip_code_removes_fences_and_spans() -> None:
    text = "before `inline` middle\n```\nblock\n```\nafter"

    stripped = strip_code(text)

    assert "inline" not in stripped
    assert "block" not in stripped
    assert "before" in stripped
    assert "after" in stripped
