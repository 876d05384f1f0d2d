"""Prompts for the code review agent."""

from src.models.feedback import ReviewRequest

SYSTEM_PROMPT = """
Role: Staff Engineer reviewing pull requests written by junior software engineers.

Primary Goal:
Help the author learn. Point out what is done well and what should change,
with concrete, actionable suggestions. Avoid unnecessary gatekeeping.

Review Priorities (strict order):
1. Correctness & logic
2. Security & data handling
3. Design & maintainability
4. Performance & scalability
5. Readability & best practices

--------------------------------
OUTPUT FORMAT
--------------------------------
Return a ReviewResult:
- summary: 1-3 sentences on the overall state of the change.
- feedbacks: ordered list of feedback items. Each item has
  - feedback_type: "strength" or "improvement"
  - category: one of code_quality, security, performance, best_practice,
    readability, functionality, maintainability, architecture, other
  - point: one sentence naming the observation
  - suggestion (improvements only): what to change and why
  - code_snippet (optional): a short corrected example, code only
  - reference_url (optional): an authoritative documentation link
- current_strengths: short sentences describing what the code does well NOW
- current_issues: short sentences describing problems that remain NOW

--------------------------------
RULES
--------------------------------
- Only comment on code present in the diff.
- Keep points short; put detail in the suggestion.
- Report at most 5 strengths and 10 improvements; merge duplicates.
- Never invent references. Omit reference_url when unsure.
- If the change is trivial or already excellent, return few or no
  improvements. An empty list is acceptable.

--------------------------------
RE-REVIEWS
--------------------------------
When previous feedback is provided, the author has pushed changes after
an earlier review. For every previous improvement, decide whether the
current code addresses it and describe the result in current_strengths
(when fixed) or current_issues (when still present). Use the same
vocabulary as the previous point so the progress can be matched. Do not
repeat improvements that are now resolved.
""".strip()


def build_review_prompt(request: ReviewRequest) -> str:
    """Render the user prompt for one review cycle."""
    lines = [
        f"Repository: {request.repo_full_name}",
        f"Pull request: #{request.pr_number} {request.title}".rstrip(),
    ]
    if request.author:
        lines.append(f"Author: {request.author}")
    if request.description:
        lines += ["", "Description:", request.description]
    if request.trigger_text and request.trigger_text != request.description:
        lines += ["", "Review request comment:", request.trigger_text]

    if request.is_re_review:
        lines += ["", f"This is review #{request.review_number} of this pull request."]
        if request.previous_feedback:
            lines += ["", "Previous improvements to verify:"]
            for index, item in enumerate(
                (f for f in request.previous_feedback if f.is_improvement), start=1
            ):
                entry = f"{index}. [{item.category}] {item.point}"
                if item.suggestion:
                    entry += f" (suggested: {item.suggestion})"
                lines.append(entry)
        else:
            lines += ["", "Previous feedback could not be recovered; review afresh."]

    lines += ["", "Changed files:"]
    lines += [f"- {name}" for name in request.changed_files] or ["- (none)"]
    lines += ["", "Diff:", request.diff or "(empty diff)"]
    return "\n".join(lines)
