"""Brief stage: groups triage decisions into a deliverable digest."""

import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from ..interfaces import SummaryWriter
from ..models import (
    MAX_SUMMARY_BULLETS,
    MIN_SUMMARY_BULLETS,
    BriefStats,
    DailyTriageBrief,
    MergeStatus,
    PriorityLevel,
    ProjectContext,
    TriagedItem,
)

logger = logging.getLogger(__name__)


def truncate(text: str, limit: int) -> str:
    """Collapse whitespace and cut ``text`` to ``limit`` characters."""
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def _order(items: list[TriagedItem]) -> list[TriagedItem]:
    return sorted(
        items,
        key=lambda t: (
            t.priority.rank,
            -t.original_item.updated_at.timestamp(),
            t.original_item.reference,
        ),
    )


class BriefSynthesizer:
    """Turns triaged items into a DailyTriageBrief."""

    def __init__(
        self,
        max_bullet_length: int = 140,
        summary_writer: SummaryWriter | None = None,
    ):
        self.max_bullet_length = max_bullet_length
        self.summary_writer = summary_writer

    def generate_daily_brief(
        self,
        triaged_items: Sequence[TriagedItem],
        context: ProjectContext,
        run_id: str,
        window_start: datetime,
        now: datetime | None = None,
        incomplete: bool = False,
        notes: Sequence[str] = (),
    ) -> DailyTriageBrief:
        """Group items, compute counters and write 3-5 summary bullets.

        Args:
            triaged_items: Decisions from the triage stage
            context: Project snapshot; preferences control delivery volume
            run_id: Run that produced the items
            window_start: Start of the lookback window
            now: Brief timestamp; defaults to the current time
            incomplete: Whether research returned partial data
            notes: Operator notes rendered with the brief
        """
        now = now or datetime.now(UTC)
        critical, blockers, progress = self.group_items(
            triaged_items, context, window_start
        )
        stats = self.compute_stats(triaged_items, window_start)

        brief_notes = list(notes)
        if incomplete:
            brief_notes.insert(
                0,
                "Partial data: GitHub activity could not be fetched completely; "
                "some items may be missing.",
            )

        brief = DailyTriageBrief(
            id=f"brief-{run_id}",
            workspace_id=context.workspace_id,
            run_id=run_id,
            date=now.date(),
            summary=[],
            critical_alerts=critical,
            blockers=blockers,
            progress_updates=progress,
            stats=stats,
            window_start=window_start,
            incomplete=incomplete,
            notes=brief_notes,
        )
        summary = self.build_summary(brief)
        if self.summary_writer is not None:
            summary = self._rewrite_summary(summary, brief)
        return brief.model_copy(update={"summary": summary})

    def group_items(
        self,
        triaged_items: Sequence[TriagedItem],
        context: ProjectContext,
        window_start: datetime,
    ) -> tuple[list[TriagedItem], list[TriagedItem], list[TriagedItem]]:
        """Split items into critical alerts, blockers and progress updates.

        An item lands in at most one section, checked in that order.
        """
        mute_low = context.user_preferences.mute_low_priority
        critical, blockers, progress = [], [], []
        for triaged in triaged_items:
            item = triaged.original_item
            if triaged.requires_pm_attention and item.is_open:
                critical.append(triaged)
            elif triaged.is_blocked and item.is_open:
                blockers.append(triaged)
            elif item.updated_at >= window_start and not triaged.is_stale:
                if mute_low and triaged.priority is PriorityLevel.LOW:
                    continue
                progress.append(triaged)
        return _order(critical), _order(blockers), _order(progress)

    @staticmethod
    def compute_stats(
        triaged_items: Sequence[TriagedItem], window_start: datetime
    ) -> BriefStats:
        """Pure aggregate over the items and the window boundary."""
        items = [t.original_item for t in triaged_items]
        return BriefStats(
            total_open=sum(1 for item in items if item.is_open),
            new_today=sum(1 for item in items if item.created_at >= window_start),
            closed_today=sum(
                1
                for item in items
                if item.closed_at is not None and item.closed_at >= window_start
            ),
        )

    def build_summary(self, brief: DailyTriageBrief) -> list[str]:
        """Derive bullets from the sections, critical alerts first.

        When the sections yield fewer than three bullets, counters fill the gap.
        """
        bullets = []
        if brief.critical_alerts:
            bullets.append(
                f"{len(brief.critical_alerts)} critical alert(s) need PM attention."
            )
            for triaged in brief.critical_alerts[:2]:
                item = triaged.original_item
                bullets.append(
                    f"{triaged.priority.value} {triaged.classification.value}: "
                    f"{item.reference} {item.title}"
                )
        if brief.blockers:
            top = brief.blockers[0].original_item
            bullets.append(
                f"{len(brief.blockers)} item(s) blocked, starting with "
                f"{top.reference} {top.title}"
            )
        if brief.progress_updates:
            merged = sum(
                1
                for t in brief.progress_updates
                if t.original_item.merge_status is MergeStatus.MERGED
            )
            bullets.append(
                f"{len(brief.progress_updates)} item(s) moved forward"
                + (f", {merged} pull request(s) merged." if merged else ".")
            )

        counters = [
            f"{brief.stats.total_open} open item(s) tracked.",
            f"{brief.stats.new_today} new item(s) since the last brief.",
            f"{brief.stats.closed_today} item(s) closed since the last brief.",
        ]
        for counter in counters:
            if len(bullets) >= MIN_SUMMARY_BULLETS:
                break
            bullets.append(counter)

        return [truncate(b, self.max_bullet_length) for b in bullets[:MAX_SUMMARY_BULLETS]]

    def _rewrite_summary(
        self, deterministic: list[str], brief: DailyTriageBrief
    ) -> list[str]:
        try:
            rewritten = self.summary_writer.rewrite(deterministic, brief)
        except Exception as e:
            logger.warning("Summary writer failed, keeping deterministic bullets: %s", e)
            return deterministic

        bullets = [
            truncate(b, self.max_bullet_length) for b in rewritten if b and b.strip()
        ][:MAX_SUMMARY_BULLETS]
        for fallback in deterministic:
            if len(bullets) >= MIN_SUMMARY_BULLETS:
                break
            if fallback not in bullets:
                bullets.append(fallback)
        return bullets
