"""Feedback models shared by the reviewer, the composer and the extractor."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

FeedbackType = Literal["strength", "improvement"]
FeedbackCategory = Literal[
    "code_quality",
    "security",
    "performance",
    "best_practice",
    "readability",
    "functionality",
    "maintainability",
    "architecture",
    "other",
]
ProgressStatus = Literal["improved", "partially_improved", "not_improved"]

FEEDBACK_CATEGORIES: tuple[str, ...] = (
    "code_quality",
    "security",
    "performance",
    "best_practice",
    "readability",
    "functionality",
    "maintainability",
    "architecture",
    "other",
)


class ExtractedFeedback(BaseModel):
    """A single feedback item.

    Produced by the AI reviewer and recovered later from the posted
    review comment.
    """

    feedback_type: FeedbackType
    category: FeedbackCategory = "other"
    point: str
    suggestion: str | None = None
    code_snippet: str | None = None
    reference_url: str | None = None

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, v: object) -> str:
        """Map unknown or differently cased categories to a known key."""
        if not isinstance(v, str):
            return "other"
        key = v.strip().lower().replace("-", "_").replace(" ", "_")
        if key == "best_practices":
            key = "best_practice"
        return key if key in FEEDBACK_CATEGORIES else "other"

    @field_validator("suggestion", "code_snippet", "reference_url", mode="before")
    @classmethod
    def blank_to_none(cls, v: object) -> object:
        """Treat empty optional strings as absent."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def is_improvement(self) -> bool:
        """Check if this item asks for a change.

        Returns:
            True if feedback_type is "improvement"
        """
        return self.feedback_type == "improvement"


class EvaluationResult(BaseModel):
    """Progress verdict for one previously raised improvement."""

    improvement: ExtractedFeedback
    status: ProgressStatus
    evidence: str = ""


class ReviewResult(BaseModel):
    """Structured output of the AI reviewer.

    `current_strengths` and `current_issues` are free text describing the
    code as it is now; they feed the progress evaluation on re-reviews.
    """

    summary: str = ""
    feedbacks: list[ExtractedFeedback] = Field(default_factory=list)
    current_strengths: list[str] = Field(default_factory=list)
    current_issues: list[str] = Field(default_factory=list)

    @property
    def strengths(self) -> list[ExtractedFeedback]:
        """Feedback items praising the change."""
        return [f for f in self.feedbacks if f.feedback_type == "strength"]

    @property
    def improvements(self) -> list[ExtractedFeedback]:
        """Feedback items asking for a change."""
        return [f for f in self.feedbacks if f.feedback_type == "improvement"]

    def strength_texts(self) -> list[str]:
        """Return strength texts, derived from the items when none were given."""
        if self.current_strengths:
            return list(self.current_strengths)
        return [f.point for f in self.strengths]

    def issue_texts(self) -> list[str]:
        """Return issue texts, derived from the items when none were given."""
        if self.current_issues:
            return list(self.current_issues)
        return [
            f"{f.point} {f.suggestion or ''}".strip() for f in self.improvements
        ]


class ReviewRequest(BaseModel):
    """Everything the AI reviewer receives for one review cycle."""

    owner: str
    repo: str
    pr_number: int
    title: str = ""
    description: str = ""
    author: str | None = None
    diff: str = ""
    changed_files: list[str] = Field(default_factory=list)
    trigger_text: str = ""
    is_re_review: bool = False
    review_number: int = 1
    previous_feedback: list[ExtractedFeedback] = Field(default_factory=list)
    previous_comment_body: str | None = None

    @property
    def repo_full_name(self) -> str:
        """Return 'owner/repo'."""
        return f"{self.owner}/{self.repo}"
