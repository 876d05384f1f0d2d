"""Embed and recover review feedback as hidden HTML comment metadata.

Every review comment the orchestrator posts carries its feedback items as a
JSON document inside an HTML comment. GitHub does not render it, and a later
re-review reads it back instead of parsing the visible markdown.

Example format:
<!-- AI-REVIEW-FEEDBACK
[
  {"feedback_type": "improvement", "category": "security", "point": "..."}
]
-->
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

# Identifies a comment as written by the orchestrator
AI_REVIEW_MARKER = "<!-- ai-code-review -->"

# Precedes the code snippet of an improvement, separating it from the suggestion
SNIPPET_MARKER = "<!-- ai-review-snippet -->"

FEEDBACK_START_MARKER = "<!-- AI-REVIEW-FEEDBACK"
FEEDBACK_END_MARKER = "-->"

FEEDBACK_PATTERN = re.compile(
    r"<!--\s*AI-REVIEW-FEEDBACK\s*\r?\n(.*?)\r?\n\s*-->",
    re.DOTALL | re.IGNORECASE,
)


def has_review_marker(body: str | None) -> bool:
    """Check whether a comment body was written by the orchestrator."""
    return bool(body) and AI_REVIEW_MARKER in body  # type: ignore[operator]


def serialize_feedback_to_comment(feedback: list[dict[str, Any]]) -> str:
    """
    Serialize feedback items to the hidden HTML comment format.

    `>` is escaped inside the JSON so item text can never close the
    HTML comment early.

    Args:
        feedback: Feedback items as plain dictionaries

    Returns:
        HTML comment string that can be appended to a comment body
    """
    try:
        json_str = json.dumps(feedback, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.error(f"Failed to serialize feedback to comment: {e}")
        # Markdown parsing still recovers the items
        return ""
    json_str = json_str.replace(">", "\\u003e")
    return f"\n\n{FEEDBACK_START_MARKER}\n{json_str}\n{FEEDBACK_END_MARKER}"


def parse_feedback_from_comment(body: str | None) -> list[Any] | None:
    """
    Parse the embedded feedback block from a comment body.

    Args:
        body: The full comment body text that may contain the block

    Returns:
        The decoded JSON list if found and valid, None otherwise
    """
    if not body:
        return None

    match = FEEDBACK_PATTERN.search(body)
    if not match:
        logger.debug("No embedded feedback found in comment body")
        return None

    try:
        data = json.loads(match.group(1).strip())
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse embedded feedback JSON: {e}")
        return None

    if not isinstance(data, list):
        logger.warning(f"Embedded feedback is not a list: {type(data)}")
        return None
    return data


def strip_feedback_from_comment(body: str) -> str:
    """
    Remove the embedded feedback block and the review marker from a body.

    Args:
        body: The full comment body text

    Returns:
        The visible part of the comment
    """
    if not body:
        return body

    cleaned = FEEDBACK_PATTERN.sub("", body).replace(AI_REVIEW_MARKER, "")
    return cleaned.strip()
