"""Split oversized comment bodies into numbered parts.

GitHub rejects comment bodies above 65536 characters. Long reviews are
posted as several comments; every part after the first starts with a
banner naming its position so readers can follow the sequence.
"""

import re

# Break points searched for when cutting a part, best first
_BOUNDARIES = ("\n\n", "\n#")

PART_BANNER_PATTERN = re.compile(
    r"\A<!-- ai-review-part (\d+)/(\d+) -->\n\*\*\(continued, part \d+/\d+\)\*\*\n\n"
)


def part_banner(index: int, total: int) -> str:
    """Return the banner prefixed to continuation part `index` of `total`."""
    return (
        f"<!-- ai-review-part {index}/{total} -->\n"
        f"**(continued, part {index}/{total})**\n\n"
    )


def _find_break(text: str, size: int) -> int:
    """Return where to end a part of at most `size` characters."""
    if len(text) <= size:
        return len(text)

    window = text[:size]
    best = -1
    for boundary in _BOUNDARIES:
        position = window.rfind(boundary)
        # Cut before the boundary so the next part starts with it
        if position > size // 2 and position > best:
            best = position
    return best if best > 0 else size


def _chunk(body: str, first_size: int, size: int) -> list[str]:
    chunks: list[str] = []
    remaining = body
    current = first_size
    while remaining:
        end = _find_break(remaining, current)
        chunks.append(remaining[:end])
        remaining = remaining[end:]
        current = size
    return chunks


def split_comment_body(body: str, limit: int) -> list[str]:
    """
    Split a comment body so that no part exceeds `limit` characters.

    Parts after the first carry a "part k/n" banner, which counts against
    the limit. Joining the parts after `strip_part_banner` reproduces the
    original body.

    Args:
        body: Full comment body
        limit: Maximum characters per posted comment

    Returns:
        List of comment bodies, a single element when no split is needed
    """
    if len(body) <= limit:
        return [body]

    # The banner length depends on the digit count of the total, so grow the
    # estimate until the chunk count fits.
    total_estimate = 2
    while True:
        banner_size = len(part_banner(total_estimate, total_estimate))
        if banner_size >= limit:
            raise ValueError(f"Comment limit {limit} is too small to split into parts")
        chunks = _chunk(body, limit, limit - banner_size)
        if len(str(len(chunks))) <= len(str(total_estimate)):
            break
        total_estimate = len(chunks)

    total = len(chunks)
    return [
        chunk if index == 1 else part_banner(index, total) + chunk
        for index, chunk in enumerate(chunks, start=1)
    ]


def strip_part_banner(part: str) -> str:
    """Remove a continuation banner from a posted part, if present."""
    return PART_BANNER_PATTERN.sub("", part, count=1)


def part_position(body: str) -> tuple[int, int] | None:
    """Return (index, total) for a continuation part, None for other bodies."""
    match = PART_BANNER_PATTERN.match(body or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))
