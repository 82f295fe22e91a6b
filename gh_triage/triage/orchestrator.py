"""Triage stage: deterministic classification and prioritization policy.

Everything here is pure and performs no I/O, so identical inputs always
produce identical classifications and priorities.
"""

import logging
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from ..models import (
    CIStatus,
    Classification,
    FeedbackAction,
    GitHubItem,
    MergeStatus,
    PriorityLevel,
    ProjectContext,
    ReviewStatus,
    TriagedItem,
    TriageFeedback,
)
from .taxonomy import (
    BASE_PRIORITY,
    DEFECT_KEYWORDS,
    PRIORITY_FLOOR,
    SECURITY_KEYWORDS,
    classify_labels,
    classify_title_prefix,
    mentions,
    normalize_label,
    significant_tokens,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationSignal:
    """The rule that produced a classification and the evidence it saw."""

    classification: Classification
    rule: str
    evidence: str


class TriageOrchestrator:
    """Combines raw items and project context into triage decisions."""

    def __init__(
        self,
        stale_after_days: int = 14,
        dismissal_threshold: int = 3,
        engagement_threshold: int = 3,
    ):
        """Initialize the policy.

        Args:
            stale_after_days: Days without an update before an item is stale
            dismissal_threshold: Dismissals by one user that de-escalate a
                classification during recalibration
            engagement_threshold: Clicks and replies that escalate a
                classification during recalibration
        """
        if stale_after_days <= 0:
            raise ValueError("stale_after_days must be positive")
        self.stale_after = timedelta(days=stale_after_days)
        self.dismissal_threshold = dismissal_threshold
        self.engagement_threshold = engagement_threshold

    def analyze_and_triage(
        self,
        raw_items: Sequence[GitHubItem],
        context: ProjectContext,
        now: datetime | None = None,
        on_skip: Callable[[GitHubItem, Exception], None] | None = None,
    ) -> list[TriagedItem]:
        """Triage every item, isolating failures to the item that caused them.

        Args:
            raw_items: Normalized items from research
            context: Project snapshot for this run
            now: Reference time for staleness; defaults to the current time
            on_skip: Called with any item that could not be triaged

        Returns:
            One TriagedItem per successfully triaged input, in input order
        """
        now = now or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        triaged = []
        for item in raw_items:
            try:
                triaged.append(self.triage_item(item, context, now))
            except Exception as e:
                logger.exception("Excluding item %s from triage", item.reference)
                if on_skip is not None:
                    on_skip(item, e)
        return triaged

    def triage_item(
        self, item: GitHubItem, context: ProjectContext, now: datetime
    ) -> TriagedItem:
        """Build the decision record for a single item."""
        signal = self.classify(item, context)
        stale = self.is_stale(item, context, now)
        blocked, blocked_reason = self.detect_blocked(item)
        priority, priority_notes = self.prioritize(
            item, signal.classification, context, stale
        )

        reasoning = [
            f"Classified {signal.classification.value} "
            f"({signal.rule}: {signal.evidence}).",
            f"Priority {priority.value}: {'; '.join(priority_notes)}.",
            f"Age: last updated {max((now - item.updated_at).days, 0)} day(s) ago"
            + (", stale." if stale else "."),
        ]
        if blocked:
            reasoning.append(f"Blocked: {blocked_reason}.")
        if context.missing_fields:
            reasoning.append(
                "context-incomplete: missing "
                f"{', '.join(context.missing_fields)}; defaults applied."
            )

        return TriagedItem(
            original_item=item,
            classification=signal.classification,
            priority=priority,
            suggested_assignee=self.suggest_assignee(item, context, priority),
            reasoning=" ".join(reasoning),
            requires_pm_attention=self.requires_pm_attention(
                signal.classification, priority
            ),
            is_stale=stale,
            is_blocked=blocked,
            triaged_at=now,
        )

    def classify(self, item: GitHubItem, context: ProjectContext) -> ClassificationSignal:
        """Apply the classification rules in fixed precedence.

        1. explicit label taxonomy
        2. content: security keywords, critical path defects, title prefixes
        3. pull request state leaning towards bug or feature
        4. UNCATEGORIZED
        """
        label_match = classify_labels(item.labels)
        if label_match:
            classification, label = label_match
            return ClassificationSignal(classification, "label", f"'{label}'")

        text = f"{item.title}\n{item.description}"
        security = SECURITY_KEYWORDS.search(text)
        if security:
            return ClassificationSignal(
                Classification.SECURITY, "content", f"mentions '{security.group(0)}'"
            )

        defect = DEFECT_KEYWORDS.search(text)
        for path in context.critical_paths:
            if defect and mentions(path, text):
                return ClassificationSignal(
                    Classification.BUG_CRITICAL,
                    "content",
                    f"defect '{defect.group(0)}' on critical path '{path}'",
                )

        prefix_match = classify_title_prefix(item.title)
        if prefix_match:
            classification, prefix = prefix_match
            return ClassificationSignal(
                classification, "content", f"title prefix '{prefix}:'"
            )

        if item.is_pull_request:
            state = (
                f"ci {item.ci_status.value.lower()}, "
                f"review {item.review_status.value.lower()}, "
                f"merge {item.merge_status.value.lower()}"
            )
            title_defect = DEFECT_KEYWORDS.search(item.title)
            if title_defect or item.ci_status is CIStatus.FAILURE:
                evidence = (
                    f"'{title_defect.group(0)}' in title" if title_defect else "failing CI"
                )
                return ClassificationSignal(
                    Classification.BUG_MINOR, "pr-state", f"{evidence}; {state}"
                )
            return ClassificationSignal(Classification.FEATURE, "pr-state", state)

        return ClassificationSignal(
            Classification.UNCATEGORIZED, "fallback", "no label, content or PR signal"
        )

    def prioritize(
        self,
        item: GitHubItem,
        classification: Classification,
        context: ProjectContext,
        stale: bool,
    ) -> tuple[PriorityLevel, list[str]]:
        """Base priority from classification, adjusted one level each way.

        Returns:
            The clamped priority and the notes explaining each adjustment
        """
        base = BASE_PRIORITY[classification]
        notes = [f"base {base.value} for {classification.value}"]
        steps = 0

        touched = self.touched_focus(item, context)
        if touched:
            steps += 1
            notes.append(f"escalated for {touched}")

        if stale and not self.involves_on_call(item, context):
            steps -= 1
            notes.append("de-escalated: stale and not owned by on-call")

        priority = base.shifted(steps)
        floor = PRIORITY_FLOOR.get(classification)
        if floor is not None and priority.rank > floor.rank:
            priority = floor
            notes.append(f"held at {floor.value} floor")
        return priority, notes

    def touched_focus(self, item: GitHubItem, context: ProjectContext) -> str | None:
        """Describe the critical path or sprint goal the item touches, if any."""
        text = " ".join(
            [item.title, item.description, *sorted(item.labels)]
        )
        for path in context.critical_paths:
            if mentions(path, text):
                return f"critical path '{path}'"

        labels = {normalize_label(label) for label in item.labels}
        text_tokens = significant_tokens(text)
        for goal in context.current_sprint_goals:
            goal_tokens = significant_tokens(goal)
            if mentions(goal, text) or normalize_label(goal) in labels:
                return f"sprint goal '{goal}'"
            if goal_tokens and goal_tokens <= text_tokens:
                return f"sprint goal '{goal}'"
        return None

    def involves_on_call(self, item: GitHubItem, context: ProjectContext) -> bool:
        on_call = context.on_call_engineer
        return bool(on_call) and (item.author == on_call or on_call in item.assignees)

    def is_stale(
        self, item: GitHubItem, context: ProjectContext, now: datetime
    ) -> bool:
        """Untouched past the threshold and not carrying a watched label."""
        watched = {
            normalize_label(label) for label in context.user_preferences.watched_labels
        }
        if watched & {normalize_label(label) for label in item.labels}:
            return False
        return now - item.updated_at > self.stale_after

    def detect_blocked(self, item: GitHubItem) -> tuple[bool, str]:
        """Blocked pull requests: conflicts, unanswered change requests, red CI."""
        if not item.is_pull_request:
            return False, ""
        if item.merge_status is MergeStatus.CONFLICT:
            return True, "merge conflict"
        # Only a push answers a change request; reviews also bump updated_at
        last_push = item.last_pushed_at or item.updated_at
        if item.review_status is ReviewStatus.CHANGES_REQUESTED and (
            item.last_reviewed_at is None or last_push <= item.last_reviewed_at
        ):
            return True, "changes requested with no update since the review"
        if item.ci_status is CIStatus.FAILURE:
            return True, "CI failing"
        return False, ""

    @staticmethod
    def requires_pm_attention(
        classification: Classification, priority: PriorityLevel
    ) -> bool:
        """Set for CRITICAL priority or SECURITY; preferences never clear it."""
        return (
            priority is PriorityLevel.CRITICAL
            or classification is Classification.SECURITY
        )

    def suggest_assignee(
        self, item: GitHubItem, context: ProjectContext, priority: PriorityLevel
    ) -> str | None:
        """Suggest an owner for unassigned items.

        The teammate whose focus areas overlap most with the item's labels and
        title wins (ties break alphabetically); unmatched CRITICAL items go to
        the on-call engineer.
        """
        if item.assignees:
            return None

        topics = {normalize_label(label) for label in item.labels} | significant_tokens(
            item.title
        )
        best_user, best_overlap = None, 0
        for user, areas in context.team_focus_areas:
            overlap = len(topics & areas)
            if overlap > best_overlap:
                best_user, best_overlap = user, overlap
        if best_user:
            return best_user
        if priority is PriorityLevel.CRITICAL and context.on_call_engineer:
            return context.on_call_engineer
        return None

    def recalibrate_priority(
        self,
        item: TriagedItem,
        feedback: TriageFeedback | Sequence[TriageFeedback],
    ) -> TriagedItem:
        """Revise a decision using feedback gathered for its classification.

        The original record is untouched; a new record referencing it is
        returned. Items whose feedback does not cross a threshold, or whose
        priority is already clamped, are returned unchanged.
        """
        events = [feedback] if isinstance(feedback, TriageFeedback) else list(feedback)
        if not events:
            return item

        dismissals = Counter(
            event.user_id for event in events if event.action is FeedbackAction.DISMISSED
        )
        engagement = sum(
            1
            for event in events
            if event.action
            in (FeedbackAction.CLICKED_LINK, FeedbackAction.REPLIED_THREAD)
        )
        latest = max(event.timestamp for event in events)
        label = item.classification.value

        if dismissals:
            user, count = sorted(dismissals.items(), key=lambda kv: (-kv[1], kv[0]))[0]
        else:
            user, count = None, 0

        if (
            count >= self.dismissal_threshold
            and count > engagement
            and item.classification not in PRIORITY_FLOOR
        ):
            new_priority = item.priority.shifted(-1)
            cause = (
                f"user {user} dismissed {count} {label} item(s), "
                f"latest on {latest:%Y-%m-%d}"
            )
        elif engagement >= self.engagement_threshold and not dismissals:
            new_priority = item.priority.shifted(1)
            cause = (
                f"{engagement} click/reply interaction(s) on {label} items, "
                f"latest on {latest:%Y-%m-%d}"
            )
        else:
            return item

        if new_priority is item.priority:
            return item

        logger.info(
            "Recalibrated %s from %s to %s",
            item.original_item.reference,
            item.priority.value,
            new_priority.value,
        )
        return item.model_copy(
            update={
                "priority": new_priority,
                "requires_pm_attention": self.requires_pm_attention(
                    item.classification, new_priority
                ),
                "reasoning": (
                    f"{item.reasoning} Recalibrated {item.priority.value} -> "
                    f"{new_priority.value}: {cause}."
                ),
                "revision_of": item.item_id,
                "triaged_at": max(latest, item.triaged_at),
            }
        )
