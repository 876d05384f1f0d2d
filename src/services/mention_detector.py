"""Detect review requests in pull request descriptions and comments."""

import logging
import re

from src.config.settings import settings

logger = logging.getLogger(__name__)

# Code is removed before matching so quoted tokens never trigger a review
FENCED_CODE_PATTERN = re.compile(r"(```|~~~)[^\n]*\n.*?(?:\n\1|\Z)", re.DOTALL)
INLINE_CODE_PATTERN = re.compile(r"`+[^`\n]*`+")

# Variants of the trigger people type in practice
ALIAS_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(?<![\w@])@code[-_ ]review(?![\w-])", re.IGNORECASE),
    re.compile(r"\bcode\s+review\s+please\b", re.IGNORECASE),
    re.compile(r"\breview\s+my\s+code\b", re.IGNORECASE),
]


def strip_code(text: str) -> str:
    """Remove fenced code blocks and inline code spans from markdown."""
    without_fences = FENCED_CODE_PATTERN.sub(" ", text)
    return INLINE_CODE_PATTERN.sub(" ", without_fences)


class MentionDetector:
    """Case-insensitive, word-bounded search for the review trigger token."""

    def __init__(
        self,
        trigger_token: str | None = None,
        aliases_enabled: bool | None = None,
    ) -> None:
        token = (trigger_token or settings.review_trigger_token).strip()
        if not token:
            raise ValueError("Review trigger token must not be empty")
        self.trigger_token = token
        self.aliases_enabled = (
            settings.mention_aliases_enabled if aliases_enabled is None else aliases_enabled
        )
        self._pattern = re.compile(
            rf"(?<![\w@]){re.escape(token)}(?![\w-])", re.IGNORECASE
        )

    def has_mention(self, text: str | None) -> bool:
        """
        Check whether text requests a review.

        Args:
            text: PR description or comment body (may be None)

        Returns:
            True if the trigger token, or an enabled alias, appears outside code
        """
        if not text or not text.strip():
            return False

        searchable = strip_code(text)
        if self._pattern.search(searchable):
            return True
        if self.aliases_enabled:
            return any(pattern.search(searchable) for pattern in ALIAS_PATTERNS)
        return False
