"""PydanticAI agents for brief writing."""

from pydantic_ai import Agent

from .models import BriefSummaryResponse
from .prompts import BRIEF_SUMMARY_PROMPT

# Brief summary agent - model is chosen per call
brief_summary_agent = Agent(
    output_type=BriefSummaryResponse,
    instructions=BRIEF_SUMMARY_PROMPT,
    retries=2,
)
