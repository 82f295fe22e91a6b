"""Stage interfaces wired together by the pipeline.

Each stage has one production implementation; tests substitute fakes.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from .models import (
    Classification,
    DailyTriageBrief,
    FetchResult,
    HistoricalDecision,
    ProjectContext,
    TriagedItem,
    TriageFeedback,
)


class ResearchCollector(Protocol):
    """Fetches and normalizes raw activity. No judgment."""

    def fetch_recent_activity(
        self, since: datetime, repo_ids: Sequence[str]
    ) -> FetchResult: ...

    def enrich_item_context(self, item_id: str) -> str: ...


class ContextProvider(Protocol):
    """Knows about the team, its goals and past decisions."""

    def get_project_context(self, workspace_id: str) -> ProjectContext: ...

    def get_review_history(
        self, limit: int, workspace_id: str | None = None
    ) -> list[HistoricalDecision]: ...


class SummaryWriter(Protocol):
    """Rephrases deterministic summary bullets."""

    def rewrite(self, bullets: list[str], brief: DailyTriageBrief) -> list[str]: ...


class DeliveryChannel(Protocol):
    """Posts briefs and alerts to a messaging surface."""

    def post_daily_brief(self, brief: DailyTriageBrief, channel_id: str) -> str: ...

    def post_alert(
        self, item: TriagedItem, channel_id: str, workspace_id: str = "default"
    ) -> None: ...

    def update_message_state(self, message_id: str, state: Any) -> None: ...


class FeedbackSink(Protocol):
    """Receives interaction events and derives advisory suggestions."""

    def record_feedback(self, feedback: TriageFeedback) -> None: ...

    def generate_optimization_suggestions(self) -> list[str]: ...

    def feedback_by_classification(
        self, workspace_id: str | None = None
    ) -> dict[Classification, list[TriageFeedback]]: ...
