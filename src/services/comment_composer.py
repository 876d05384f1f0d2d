"""Render review results as the markdown comment posted on a pull request.

The layout is also the contract read back by `feedback_extractor`:

    ### ✨ Strengths / ### 🛠️ Improvements     section headings
    #### <emoji> <Category>                      category subsections
    **N. point**                                 strength items
    ##### N. point                               improvement items
    **Suggestion:** ...                          improvement suggestion
    <!-- ai-review-snippet --> ```...```         optional code snippet
    📚 **Reference:** [url](url)                 optional reference

A hidden JSON copy of the feedback items closes every comment.
"""

import logging
import re
import uuid

from src.config.settings import settings
from src.models.feedback import EvaluationResult, ExtractedFeedback, ReviewResult
from src.utils.comment_state import (
    AI_REVIEW_MARKER,
    SNIPPET_MARKER,
    serialize_feedback_to_comment,
)

logger = logging.getLogger(__name__)

REVIEW_HEADER = "## 🤖 AI Code Review"
PROGRESS_HEADING = "### 📈 Progress on Previous Feedback"
STRENGTHS_HEADING = "### ✨ Strengths"
IMPROVEMENTS_HEADING = "### 🛠️ Improvements"
SUGGESTION_LABEL = "**Suggestion:**"
REFERENCE_LABEL = "📚 **Reference:**"
RESOLVED_CHECKBOX = "- [ ] Resolved"

# Category key -> (emoji, display name); display order follows this table
CATEGORY_DISPLAY: dict[str, tuple[str, str]] = {
    "security": ("🔒", "Security"),
    "functionality": ("⚙️", "Functionality"),
    "code_quality": ("🧩", "Code Quality"),
    "performance": ("⚡", "Performance"),
    "architecture": ("🏗️", "Architecture"),
    "maintainability": ("🔧", "Maintainability"),
    "readability": ("📖", "Readability"),
    "best_practice": ("📐", "Best Practice"),
    "other": ("📌", "Other"),
}

PROGRESS_LABELS = {
    "improved": "✅ **Improved**",
    "partially_improved": "🟡 **Partially improved**",
    "not_improved": "❌ **Not improved**",
}

_LONGEST_BACKTICKS = re.compile(r"`+")


def single_line(text: str) -> str:
    """Collapse whitespace so text fits on one markdown line."""
    return " ".join(text.split())


def code_fence(snippet: str) -> str:
    """Return a backtick fence longer than any backtick run in the snippet."""
    longest = max((len(m) for m in _LONGEST_BACKTICKS.findall(snippet)), default=0)
    return "`" * max(3, longest + 1)


def category_display(category: str) -> str:
    """Return '<emoji> <Display>' for a category key."""
    emoji, name = CATEGORY_DISPLAY.get(category, CATEGORY_DISPLAY["other"])
    return f"{emoji} {name}"


def _group_by_category(
    items: list[ExtractedFeedback],
) -> list[tuple[str, list[ExtractedFeedback]]]:
    groups: dict[str, list[ExtractedFeedback]] = {}
    for item in items:
        groups.setdefault(item.category, []).append(item)
    return [(key, groups[key]) for key in CATEGORY_DISPLAY if key in groups]


def _render_strengths(strengths: list[ExtractedFeedback]) -> list[str]:
    lines = [STRENGTHS_HEADING, ""]
    number = 1
    for category, items in _group_by_category(strengths):
        lines += [f"#### {category_display(category)}", ""]
        for item in items:
            lines += [f"**{number}. {single_line(item.point)}**", ""]
            number += 1
    return lines


def _render_improvement(number: int, item: ExtractedFeedback) -> list[str]:
    lines = [f"##### {number}. {single_line(item.point)}", ""]
    if item.suggestion:
        lines += [f"{SUGGESTION_LABEL} {item.suggestion.strip()}", ""]
    if item.code_snippet:
        snippet = item.code_snippet.rstrip("\n")
        fence = code_fence(snippet)
        lines += [SNIPPET_MARKER, fence, snippet, fence, ""]
    if item.reference_url:
        url = item.reference_url.strip()
        lines += [f"{REFERENCE_LABEL} [{url}]({url})", ""]
    lines += [RESOLVED_CHECKBOX, ""]
    return lines


def _render_improvements(improvements: list[ExtractedFeedback]) -> list[str]:
    lines = [IMPROVEMENTS_HEADING, ""]
    number = 1
    for category, items in _group_by_category(improvements):
        lines += [f"#### {category_display(category)}", ""]
        for item in items:
            lines += _render_improvement(number, item)
            number += 1
    return lines


def _render_progress(evaluations: list[EvaluationResult]) -> list[str]:
    lines = [PROGRESS_HEADING, ""]
    counts = {status: 0 for status in PROGRESS_LABELS}
    for evaluation in evaluations:
        counts[evaluation.status] += 1
        item = evaluation.improvement
        _, category_name = CATEGORY_DISPLAY.get(item.category, CATEGORY_DISPLAY["other"])
        lines.append(
            f"- {PROGRESS_LABELS[evaluation.status]} ({category_name}): "
            f"{single_line(item.point)}"
        )
        if evaluation.evidence:
            lines.append(f"  - {single_line(evaluation.evidence)}")
    lines += [
        "",
        f"_{counts['improved']} improved, {counts['partially_improved']} partially "
        f"improved, {counts['not_improved']} not improved._",
        "",
    ]
    return lines


def compose_review_comment(
    result: ReviewResult,
    *,
    review_number: int = 1,
    evaluations: list[EvaluationResult] | None = None,
    review_id: str | None = None,
    bot_name: str | None = None,
) -> str:
    """
    Build the markdown body for one review cycle.

    Args:
        result: Structured output of the AI reviewer
        review_number: 1 for the first review, higher for re-reviews
        evaluations: Progress of previously raised improvements (re-reviews)
        review_id: Identifier shown in the footer; generated when omitted
        bot_name: Name shown in the footer

    Returns:
        Comment body including the review marker and hidden feedback block
    """
    review_id = review_id or uuid.uuid4().hex[:12]
    bot_name = bot_name or settings.bot_name

    lines = [AI_REVIEW_MARKER, REVIEW_HEADER, ""]
    if review_number > 1:
        lines += [
            f"> 🔁 **Re-review #{review_number}**: this review follows up on "
            "earlier feedback for this pull request.",
            "",
        ]
    if result.summary.strip():
        lines += [result.summary.strip(), ""]
    if review_number > 1 and evaluations:
        lines += _render_progress(evaluations)

    strengths = result.strengths
    improvements = result.improvements
    if strengths:
        lines += _render_strengths(strengths)
    if improvements:
        lines += _render_improvements(improvements)
    if not strengths and not improvements:
        lines += ["_No findings: nothing to highlight or change in this revision._", ""]

    trigger = settings.review_trigger_token
    lines += [
        "---",
        f"_Reviewed by {bot_name} · Review ID `{review_id}`_",
        "",
        f"Comment `{trigger}` on this pull request to request another review.",
    ]

    body = "\n".join(lines)
    body += serialize_feedback_to_comment(
        [item.model_dump(mode="json") for item in result.feedbacks]
    )
    logger.debug(
        f"Composed review comment {review_id}: {len(strengths)} strengths, "
        f"{len(improvements)} improvements, {len(body)} characters"
    )
    return body
