"""Feedback loop: records interactions and mines them for suggestions."""

import logging
from collections import defaultdict

from pydantic import ValidationError

from ..models import Classification, FeedbackAction, TriageFeedback
from ..storage.manager import TriageStore

logger = logging.getLogger(__name__)


class FeedbackRecorder:
    """Append-only feedback log with advisory pattern detection.

    Suggestions never touch stored decisions; they are input for a human or
    for recalibration on the next run.
    """

    def __init__(
        self,
        store: TriageStore,
        window_runs: int = 7,
        min_events: int = 3,
        dismiss_rate_threshold: float = 0.5,
    ):
        """Initialize the recorder.

        Args:
            store: Storage holding feedback and run archives
            window_runs: Number of most recent runs the analysis looks at
            min_events: Events needed before a pattern is reported
            dismiss_rate_threshold: Dismissal share that triggers a suggestion
        """
        self.store = store
        self.window_runs = window_runs
        self.min_events = min_events
        self.dismiss_rate_threshold = dismiss_rate_threshold

    def record_feedback(self, feedback: TriageFeedback) -> None:
        """Append a feedback event. Failures are logged, never raised."""
        try:
            self.store.append_feedback(feedback)
            logger.info(
                "Feedback recorded from %s: %s on %s",
                feedback.user_id,
                feedback.action.value,
                feedback.item_id or feedback.triage_id,
            )
        except Exception:
            logger.exception("Failed to record feedback from %s", feedback.user_id)

    def handle_user_interaction(
        self,
        user_id: str,
        action: str,
        item_id: str | None = None,
        triage_id: str = "current",
    ) -> bool:
        """Validate and record an interaction coming from the chat surface.

        Returns:
            True if the interaction was accepted, False if it was rejected
        """
        try:
            feedback = TriageFeedback(
                triage_id=triage_id, user_id=user_id, action=action, item_id=item_id
            )
        except ValidationError as e:
            logger.warning("Rejected interaction %r from %s: %s", action, user_id, e)
            return False
        self.record_feedback(feedback)
        return True

    def _window(
        self, workspace_id: str | None = None
    ) -> tuple[list[tuple[TriageFeedback, Classification]], int]:
        """Feedback in the trailing run window joined with item classifications."""
        archives = self.store.list_run_archives(workspace_id, limit=self.window_runs)
        run_ids = {archive.run.run_id for archive in archives}
        classifications: dict[str, Classification] = {}
        # Oldest first so the most recent decision for an item wins
        for archive in reversed(archives):
            for triaged in archive.triaged_items:
                classifications[triaged.item_id] = triaged.classification

        joined = []
        for event in self.store.load_feedback():
            if event.triage_id not in run_ids or event.item_id is None:
                continue
            classification = classifications.get(event.item_id)
            if classification is not None:
                joined.append((event, classification))
        return joined, len(archives)

    def feedback_by_classification(
        self, workspace_id: str | None = None
    ) -> dict[Classification, list[TriageFeedback]]:
        """Group windowed feedback by the classification it was given on."""
        grouped: dict[Classification, list[TriageFeedback]] = defaultdict(list)
        for event, classification in self._window(workspace_id)[0]:
            grouped[classification].append(event)
        return dict(grouped)

    def generate_optimization_suggestions(
        self, workspace_id: str | None = None
    ) -> list[str]:
        """Surface dismissal and engagement patterns as plain-text suggestions."""
        joined, run_count = self._window(workspace_id)
        if not joined:
            return []

        per_user: dict[tuple[str, Classification], list[TriageFeedback]] = defaultdict(list)
        per_class: dict[Classification, list[TriageFeedback]] = defaultdict(list)
        for event, classification in joined:
            per_user[(event.user_id, classification)].append(event)
            per_class[classification].append(event)

        suggestions = []
        for (user, classification), events in sorted(
            per_user.items(), key=lambda kv: (kv[0][0], kv[0][1].value)
        ):
            dismissed = sum(1 for e in events if e.action is FeedbackAction.DISMISSED)
            if len(events) < self.min_events or not dismissed:
                continue
            rate = dismissed / len(events)
            if rate >= self.dismiss_rate_threshold:
                suggestions.append(
                    f"User {user} dismisses {classification.value} items at a rate of "
                    f"{rate:.0%} ({dismissed}/{len(events)}) over the last "
                    f"{run_count} run(s); consider lowering {classification.value} "
                    f"priority or muting it for them."
                )

        for classification, events in sorted(per_class.items(), key=lambda kv: kv[0].value):
            engaged = sum(1 for e in events if e.action is not FeedbackAction.DISMISSED)
            dismissed = len(events) - engaged
            if engaged >= self.min_events and dismissed == 0:
                suggestions.append(
                    f"{classification.value} items drew {engaged} click/reply "
                    f"interaction(s) with no dismissals over the last {run_count} "
                    f"run(s); consider raising their priority."
                )
        return suggestions
