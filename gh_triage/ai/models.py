"""Pydantic models for AI summary responses."""

from pydantic import BaseModel, ConfigDict, Field


class BriefSummaryResponse(BaseModel):
    """Structured response for executive summary rewriting."""

    model_config = ConfigDict(extra="forbid")

    bullets: list[str] = Field(
        description="Three to five executive summary bullets, one sentence each"
    )
