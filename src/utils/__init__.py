"""Utility functions and helpers."""

from .comment_splitter import split_comment_body, strip_part_banner
from .filters import render_diff, select_reviewable_diffs, should_review_file
from .logging import setup_observability
from .rate_limiter import with_exponential_backoff
from .signature import sign_payload, verify_signature

__all__ = [
    "setup_observability",
    "should_review_file",
    "select_reviewable_diffs",
    "render_diff",
    "with_exponential_backoff",
    "split_comment_body",
    "strip_part_banner",
    "sign_payload",
    "verify_signature",
]
