"""Select and render the pull request files sent to the AI reviewer."""

import re
from pathlib import PurePosixPath
from re import Pattern

from src.models.github_types import FileDiff

# Files that never benefit from a code review
EXCLUDED_PATTERNS: list[Pattern[str]] = [
    # Lock files
    re.compile(r"(package-lock\.json|yarn\.lock|pnpm-lock\.yaml)$"),
    re.compile(r"(Pipfile|poetry|Gemfile|composer|Cargo)\.lock$"),
    # Build output and dependencies
    re.compile(r"^(dist|build|out|target|\.next|coverage)/"),
    re.compile(r"(^|/)(node_modules|vendor|venv|\.venv|__pycache__)/"),
    # Generated or minified code
    re.compile(r"\.generated\.[^/]+$"),
    re.compile(r"(\.pb\.go|_pb2\.py|\.g\.dart)$"),
    re.compile(r"\.min\.(js|css)$"),
    re.compile(r"\.map$"),
    # Binary assets
    re.compile(r"\.(png|jpe?g|gif|svg|ico|webp|bmp)$", re.IGNORECASE),
    re.compile(r"\.(pdf|zip|tar|gz|rar|7z|jar)$", re.IGNORECASE),
    re.compile(r"\.(mp4|mp3|avi|mov|wav|ttf|woff2?|eot|otf)$", re.IGNORECASE),
    re.compile(r"\.(db|sqlite3?)$"),
]

CODE_EXTENSIONS = {
    ".py", ".js", ".ts", ".jsx", ".tsx", ".go", ".java", ".kt", ".cs",
    ".cpp", ".c", ".h", ".hpp", ".rs", ".rb", ".php", ".swift", ".scala",
    ".sh", ".sql", ".dart", ".vue", ".svelte",
}  # fmt: skip


def should_review_file(file_path: str) -> bool:
    """Determine if a file should be included in the review.

    Args:
        file_path: Repository-relative path

    Returns:
        True unless an exclusion pattern matches
    """
    return all(not pattern.search(file_path) for pattern in EXCLUDED_PATTERNS)


def is_code_file(file_path: str) -> bool:
    """Check if a file is source code based on its extension."""
    return PurePosixPath(file_path).suffix.lower() in CODE_EXTENSIONS


def select_reviewable_diffs(diffs: list[FileDiff], max_files: int) -> list[FileDiff]:
    """Filter excluded and deleted files, code first, limited to `max_files`.

    Args:
        diffs: Files changed by the pull request
        max_files: Maximum number of files to keep

    Returns:
        The prioritized files, preserving order within each group
    """
    reviewable = [
        d for d in diffs if not d.is_deleted_file and should_review_file(d.filename)
    ]
    code = [d for d in reviewable if is_code_file(d.filename)]
    other = [d for d in reviewable if not is_code_file(d.filename)]
    return (code + other)[:max_files]


def render_diff(diffs: list[FileDiff], max_patch_chars: int) -> str:
    """Render file diffs as one unified-diff style text block."""
    sections = []
    for diff in diffs:
        patch = diff.patch or "(no textual diff available)"
        if len(patch) > max_patch_chars:
            patch = patch[:max_patch_chars] + "\n... (diff truncated)"
        header = f"--- {diff.filename} ({diff.status}, +{diff.additions}/-{diff.deletions})"
        sections.append(f"{header}\n{patch}")
    return "\n\n".join(sections)
