"""AI-backed summary writer for daily briefs."""

import logging
from typing import Any

from pydantic_ai import Agent

from ..models import DailyTriageBrief
from .agents import brief_summary_agent
from .models import BriefSummaryResponse
from .prompts import format_brief_prompt

logger = logging.getLogger(__name__)


class AISummaryWriter:
    """Rephrases deterministic bullets with a PydanticAI agent.

    The brief synthesizer re-clamps whatever comes back, so the agent can
    only change wording, never the bullet bounds. ``rewrite`` blocks on the
    agent and must be called outside a running event loop.
    """

    def __init__(
        self,
        model: Any,
        agent: Agent[None, BriefSummaryResponse] | None = None,
    ):
        """Initialize the writer.

        Args:
            model: Model identifier (e.g. 'openai:gpt-4o-mini') or model instance
            agent: Agent to run; defaults to the shared brief summary agent
        """
        self.model = model
        self.agent = agent or brief_summary_agent

    def rewrite(self, bullets: list[str], brief: DailyTriageBrief) -> list[str]:
        """Return rewritten bullets for ``brief``."""
        sections = {
            name: [
                f"{t.priority.value} {t.classification.value} "
                f"{t.original_item.reference}: {t.original_item.title}"
                for t in items
            ]
            for name, items in brief.sections().items()
        }
        stats = (
            f"open={brief.stats.total_open} new={brief.stats.new_today} "
            f"closed={brief.stats.closed_today}"
        )
        prompt = format_brief_prompt(bullets, sections, stats)
        result = self.agent.run_sync(prompt, model=self.model)
        logger.debug("Summary agent returned %d bullet(s)", len(result.output.bullets))
        return list(result.output.bullets)
