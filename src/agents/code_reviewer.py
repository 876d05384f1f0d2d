"""Code review agent using Pydantic AI and OpenAI."""

import logging
import os
from functools import lru_cache

from pydantic_ai import Agent, RunContext
from pydantic_ai.models.openai import OpenAIResponsesModel

from src.config.settings import settings
from src.models.feedback import ReviewRequest, ReviewResult
from src.prompts.code_reviewer_prompt import SYSTEM_PROMPT, build_review_prompt
from src.utils.rate_limiter import with_exponential_backoff

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_code_review_agent() -> Agent[ReviewRequest, ReviewResult]:
    """Build the review agent on first use.

    Creating the model needs the OpenAI key, so the agent is not built at
    import time.
    """
    # Pydantic AI reads the key from the environment
    if settings.openai_api_key:
        os.environ.setdefault("OPENAI_API_KEY", settings.openai_api_key)

    agent = Agent(
        model=OpenAIResponsesModel(settings.openai_model),
        deps_type=ReviewRequest,
        output_type=ReviewResult,
        system_prompt=SYSTEM_PROMPT,
        retries=settings.max_retries,
    )

    @agent.system_prompt
    def add_dynamic_context(ctx: RunContext[ReviewRequest]) -> str:
        """Add repository and cycle context."""
        mode = (
            f"re-review #{ctx.deps.review_number}" if ctx.deps.is_re_review else "first review"
        )
        return f"Repo: {ctx.deps.repo_full_name} | PR: #{ctx.deps.pr_number} | Mode: {mode}"

    return agent


async def run_code_review(
    request: ReviewRequest, agent: Agent[ReviewRequest, ReviewResult] | None = None
) -> ReviewResult:
    """
    Ask the AI reviewer for feedback on one pull request.

    Args:
        request: Pull request metadata, diff and re-review context
        agent: Agent override, mainly for tests

    Returns:
        The structured review
    """
    review_agent = agent or get_code_review_agent()
    prompt = build_review_prompt(request)

    logger.info(
        f"Requesting AI review for {request.repo_full_name}#{request.pr_number} "
        f"({len(request.changed_files)} files, re-review={request.is_re_review})"
    )
    run_result = await with_exponential_backoff(
        review_agent.run, prompt, deps=request, max_retries=3
    )
    result = run_result.output

    logger.info(
        f"AI review completed for {request.repo_full_name}#{request.pr_number}: "
        f"{len(result.strengths)} strengths, {len(result.improvements)} improvements"
    )
    return result
