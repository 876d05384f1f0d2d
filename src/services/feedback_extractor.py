"""Recover structured feedback from a previously posted review comment.

The hidden JSON block is read first because it is lossless. Comments that
lack it (or carry a damaged copy) are parsed from their visible markdown.
Nothing here raises on malformed input: a re-review without recovered
context is still a valid review.
"""

import logging
import re
from typing import Any

from pydantic import ValidationError

from src.models.feedback import ExtractedFeedback
from src.utils.comment_splitter import part_position, strip_part_banner
from src.utils.comment_state import SNIPPET_MARKER, parse_feedback_from_comment

logger = logging.getLogger(__name__)

SECTION_HEADING = re.compile(r"^###\s+(.*?)\s*$")
CATEGORY_HEADING = re.compile(r"^####\s+(.*?)\s*$")
STRENGTH_ITEM = re.compile(r"^\*\*\d+\.\s+(.+?)\*\*$")
IMPROVEMENT_ITEM = re.compile(r"^#####\s+\d+\.\s+(.+?)\s*$")
SUGGESTION_LINE = re.compile(r"^\*\*Suggestion:\*\*\s*(.*)$")
REFERENCE_LINE = re.compile(r"^(?:📚\s*)?\*\*Reference:\*\*\s*\[([^\]]*)\]\(([^)\s]+)\)")
FENCE_OPEN = re.compile(r"^(`{3,}|~{3,})[\w+-]*$")
CHECKBOX_LINE = re.compile(r"^- \[[ xX]\]")

# Category display names (lowercase, letters only) -> category key
CATEGORY_NAMES: dict[str, str] = {
    "code quality": "code_quality",
    "security": "security",
    "performance": "performance",
    "best practice": "best_practice",
    "best practices": "best_practice",
    "readability": "readability",
    "functionality": "functionality",
    "maintainability": "maintainability",
    "architecture": "architecture",
    "other": "other",
}


def category_from_display(text: str) -> str:
    """Map a category subheading (emoji allowed) to a category key."""
    name = " ".join(re.sub(r"[^a-z ]", " ", text.lower()).split())
    return CATEGORY_NAMES.get(name, "other")


def _closes_fence(fence: str, stripped: str) -> bool:
    return bool(stripped) and set(stripped) == {fence[0]} and len(stripped) >= len(fence)


def _section_type(heading: str) -> str | None:
    lowered = heading.lower()
    if "strength" in lowered:
        return "strength"
    if "improvement" in lowered and "progress" not in lowered:
        return "improvement"
    return None


def _validate_items(raw_items: list[Any]) -> list[ExtractedFeedback]:
    items = []
    for raw in raw_items:
        try:
            items.append(ExtractedFeedback.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"Skipping invalid feedback item: {e.error_count()} error(s)")
    return items


class _MarkdownFeedbackParser:
    """Line-based parser for the visible review markdown."""

    def __init__(self) -> None:
        self.items: list[dict[str, Any]] = []
        self.section: str | None = None
        self.category = "other"
        self.current: dict[str, Any] | None = None
        self.suggestion_lines: list[str] | None = None
        # Open fence inside the suggestion text, if any
        self.suggestion_fence: str | None = None
        self.fence: str | None = None
        self.code_lines: list[str] = []

    def _flush(self) -> None:
        if self.current is None:
            return
        if self.suggestion_lines is not None:
            self.current["suggestion"] = "\n".join(self.suggestion_lines).strip()
        self.items.append(self.current)
        self.current = None
        self.suggestion_lines = None
        self.suggestion_fence = None

    def _close_fence(self) -> None:
        if self.current is not None:
            self.current["code_snippet"] = "\n".join(self.code_lines)
        self.fence = None
        self.code_lines = []

    def feed(self, line: str) -> None:
        stripped = line.strip()

        if self.fence is not None:
            if _closes_fence(self.fence, stripped):
                self._close_fence()
            else:
                self.code_lines.append(line)
            return

        if self.suggestion_fence is not None and self.suggestion_lines is not None:
            self.suggestion_lines.append(line)
            if _closes_fence(self.suggestion_fence, stripped):
                self.suggestion_fence = None
            return

        heading = SECTION_HEADING.match(stripped)
        if heading:
            self._flush()
            self.section = _section_type(heading.group(1))
            self.category = "other"
            return
        if stripped == "---":
            self._flush()
            self.section = None
            return
        if self.section is None:
            return

        category = CATEGORY_HEADING.match(stripped)
        if category:
            self._flush()
            self.category = category_from_display(category.group(1))
            return

        if self.section == "strength":
            strength = STRENGTH_ITEM.match(stripped)
            if strength:
                self.items.append(
                    {
                        "feedback_type": "strength",
                        "category": self.category,
                        "point": strength.group(1).strip(),
                    }
                )
            return

        improvement = IMPROVEMENT_ITEM.match(stripped)
        if improvement:
            self._flush()
            self.current = {
                "feedback_type": "improvement",
                "category": self.category,
                "point": improvement.group(1).strip(),
            }
            return
        if self.current is None:
            return

        if stripped == SNIPPET_MARKER:
            self._end_suggestion()
            return
        fence = FENCE_OPEN.match(stripped)
        if fence and self.suggestion_lines is not None:
            self.suggestion_lines.append(line)
            self.suggestion_fence = fence.group(1)
            return
        if fence:
            self.fence = fence.group(1)
            self.code_lines = []
            return
        reference = REFERENCE_LINE.match(stripped)
        if reference:
            self._end_suggestion()
            self.current["reference_url"] = reference.group(2)
            return
        if CHECKBOX_LINE.match(stripped):
            self._end_suggestion()
            return
        suggestion = SUGGESTION_LINE.match(stripped)
        if suggestion:
            self.suggestion_lines = [suggestion.group(1)]
            return
        if self.suggestion_lines is not None and self.current.get("suggestion") is None:
            self.suggestion_lines.append(line)

    def _end_suggestion(self) -> None:
        if self.current is not None and self.suggestion_lines is not None:
            self.current["suggestion"] = "\n".join(self.suggestion_lines).strip()
            self.suggestion_lines = None

    def finish(self) -> list[dict[str, Any]]:
        if self.fence is not None:
            self._close_fence()
        self._flush()
        return self.items


def parse_markdown_feedback(body: str) -> list[ExtractedFeedback]:
    """Parse feedback items from the visible markdown of a review comment."""
    parser = _MarkdownFeedbackParser()
    for line in body.splitlines():
        parser.feed(line)
    return _validate_items(parser.finish())


def extract_feedback(body: str | None) -> list[ExtractedFeedback]:
    """
    Recover the feedback items encoded in a review comment.

    Args:
        body: Full comment body (split parts already joined)

    Returns:
        Feedback items in their original order, or [] when none are found
    """
    if not body or not body.strip():
        return []

    try:
        embedded = parse_feedback_from_comment(body)
        if embedded is not None:
            items = _validate_items(embedded)
            if items or not embedded:
                logger.debug(f"Recovered {len(items)} feedback items from embedded block")
                return items
            logger.warning("Embedded feedback block unusable, parsing markdown instead")

        items = parse_markdown_feedback(body)
        logger.debug(f"Recovered {len(items)} feedback items from markdown")
        return items
    except Exception:
        logger.exception("Feedback extraction failed; continuing without prior feedback")
        return []


def join_comment_parts(bodies: list[str]) -> str:
    """Reassemble a split review comment from its parts, in posting order."""
    return "".join(strip_part_banner(body) for body in bodies)


def is_continuation_part(body: str | None) -> bool:
    """Check whether a comment body is part 2 or later of a split comment."""
    position = part_position(body or "")
    return position is not None and position[0] > 1
