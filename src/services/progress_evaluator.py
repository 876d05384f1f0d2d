"""Heuristic progress tracking for previously raised improvements.

On a re-review every earlier improvement is compared with the strengths and
issues the reviewer reports for the current code. Matching is keyword
overlap (prefix tolerant, so "password" matches "passwords") combined with
a category inferred from a keyword table. The verdict is advisory framing
for the next comment, not a verification of the fix.
"""

import logging
import re

from src.models.feedback import EvaluationResult, ExtractedFeedback

logger = logging.getLogger(__name__)

# Substrings that suggest a category; matched against lowercase text
CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "security": [
        "password", "hash", "bcrypt", "salt", "encrypt", "secret", "credential",
        "token", "injection", "xss", "csrf", "sanitiz", "auth", "vulnerab",
        "plaintext", "permission",
    ],
    "performance": [
        "n+1", "query", "queries", "join", "cache", "optimiz", "latency",
        "complexity", "loop", "slow", "memory", "index",
    ],
    "readability": [
        "comment", "readab", "variable name", "naming", "format", "docstring",
        "indent", "clarity",
    ],
    "maintainability": [
        "duplicat", "repeated", "reuse", "extract", "refactor", "modular",
        "coupling", "hardcod", "magic number",
    ],
    "functionality": [
        "bug", "edge case", "null", "crash", "incorrect", "exception",
        "validation", "off-by-one",
    ],
    "architecture": ["layer", "dependency", "separation", "responsibilit", "design"],
    "best_practice": ["convention", "idiom", "lint", "type hint", "best practice"],
    "code_quality": ["variable", "rename", "dead code", "unused", "complex function"],
}  # fmt: skip

# Language signalling that a fix is under way but not finished
HEDGE_WORDS = frozenset({
    "partially", "partial", "progress", "progressing", "some", "started",
    "begun", "somewhat", "initial", "still",
})  # fmt: skip

STOPWORDS = frozenset({
    "the", "and", "for", "with", "that", "this", "are", "was", "were", "has",
    "have", "had", "been", "not", "but", "from", "into", "use", "using", "used",
    "should", "could", "would", "can", "now", "more", "less", "code", "its",
    "implemented", "implement", "implementation", "added", "add", "adding",
    "improve", "improved", "improvement", "improvements", "needs", "need",
    "needed", "properly", "proper", "better", "issue", "issues", "problem",
    "remains", "remain", "again", "clear", "clearly", "appropriate",
    "appropriately", "make", "makes", "via", "all", "there", "their", "them",
    "they", "one", "also", "only", "very", "much", "many", "several", "few",
    "new", "where", "when", "which", "what", "each", "other", "like", "just",
    "yet", "already", "being", "does", "done", "instead", "lot", "lots",
    "occurs", "occur", "visible", "seen", "is", "of", "to", "in", "a", "an",
    "do", "does", "any", "well", "good", "still", "some", "now",
})  # fmt: skip

_TOKEN_PATTERN = re.compile(r"[a-z0-9+]+")


def tokenize(text: str) -> list[str]:
    """Split text into lowercase word tokens."""
    return _TOKEN_PATTERN.findall(text.lower())


def extract_keywords(text: str) -> set[str]:
    """Return the significant words of a text."""
    return {
        word for word in tokenize(text) if len(word) >= 3 and word not in STOPWORDS
    }


def _common_prefix(a: str, b: str) -> int:
    length = 0
    for x, y in zip(a, b, strict=False):
        if x != y:
            break
        length += 1
    return length


def words_match(a: str, b: str) -> bool:
    """Check whether two words refer to the same thing, tolerating inflection."""
    if a == b:
        return True
    shorter, longer = sorted((a, b), key=len)
    if len(shorter) >= 4 and longer.startswith(shorter):
        return True
    common = _common_prefix(a, b)
    return common >= 6 or (common >= 4 and common >= len(shorter) - 2)


def keyword_overlap(topic: set[str], text: str) -> int:
    """Count topic keywords that appear (inflected or not) in text."""
    words = extract_keywords(text)
    return sum(1 for keyword in topic if any(words_match(keyword, w) for w in words))


def infer_categories(text: str) -> set[str]:
    """Return the categories whose keywords occur in text."""
    lowered = text.lower()
    return {
        category
        for category, keywords in CATEGORY_KEYWORDS.items()
        if any(keyword in lowered for keyword in keywords)
    }


def is_hedged(text: str) -> bool:
    """Check whether text describes partial or unfinished progress."""
    return any(word in HEDGE_WORDS for word in tokenize(text))


def _topic_text(improvement: ExtractedFeedback) -> str:
    return f"{improvement.point} {improvement.suggestion or ''}".strip()


def evaluate_improvement(
    improvement: ExtractedFeedback,
    current_strengths: list[str],
    current_issues: list[str],
) -> EvaluationResult:
    """
    Classify whether one previous improvement was addressed.

    Args:
        improvement: An improvement from the previous review
        current_strengths: Strength texts of the current review
        current_issues: Issue texts of the current review

    Returns:
        improved, partially_improved or not_improved with evidence
    """
    topic_text = _topic_text(improvement)
    topic = extract_keywords(topic_text)
    categories = (infer_categories(topic_text) | {improvement.category}) - {"other"}

    def score(text: str) -> tuple[int, bool]:
        return keyword_overlap(topic, text), bool(infer_categories(text) & categories)

    scored_strengths = [(text, *score(text)) for text in current_strengths if text.strip()]
    scored_issues = [(text, *score(text)) for text in current_issues if text.strip()]

    # 1. A confident matching strength
    strong = [
        (text, overlap, same)
        for text, overlap, same in scored_strengths
        if (overlap >= 2 or (overlap >= 1 and same)) and not is_hedged(text)
    ]
    if strong:
        text = max(strong, key=lambda s: (s[1], s[2]))[0]
        return EvaluationResult(improvement=improvement, status="improved", evidence=text)

    related_strengths = [s for s in scored_strengths if s[1] >= 1 or s[2]]
    best_strength = (
        max(related_strengths, key=lambda s: (s[1], s[2]))[0] if related_strengths else None
    )

    # 2. The same topic is still reported as an issue
    overlapping_issues = [i for i in scored_issues if i[1] >= 1]
    if overlapping_issues:
        issue = max(overlapping_issues, key=lambda i: (i[1], i[2]))[0]
        if best_strength:
            return EvaluationResult(
                improvement=improvement,
                status="partially_improved",
                evidence=f"Progress: {best_strength} Remaining: {issue}",
            )
        return EvaluationResult(
            improvement=improvement,
            status="not_improved",
            evidence=f"Still reported: {issue}",
        )

    # 3. Related progress or a remaining issue in the same category
    category_issues = [i[0] for i in scored_issues if i[2]]
    if best_strength or category_issues:
        parts = []
        if best_strength:
            parts.append(f"Progress: {best_strength}")
        if category_issues:
            parts.append(f"Remaining: {category_issues[0]}")
        return EvaluationResult(
            improvement=improvement,
            status="partially_improved",
            evidence=" ".join(parts),
        )

    # 4. Nothing in the current review refers to it
    return EvaluationResult(
        improvement=improvement,
        status="not_improved",
        evidence=improvement.suggestion or improvement.point,
    )


def evaluate_improvements(
    previous_feedback: list[ExtractedFeedback],
    current_strengths: list[str],
    current_issues: list[str],
) -> list[EvaluationResult]:
    """Evaluate every previous improvement; strengths are ignored."""
    results = [
        evaluate_improvement(item, current_strengths, current_issues)
        for item in previous_feedback
        if item.is_improvement
    ]
    if results:
        summary = {
            status: sum(1 for r in results if r.status == status)
            for status in ("improved", "partially_improved", "not_improved")
        }
        logger.info(f"Progress evaluation: {summary}")
    return results
