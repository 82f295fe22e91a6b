"""Pipeline composition root and the end-to-end run."""

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

from ..ai.summary_writer import AISummaryWriter
from ..brief.synthesizer import BriefSynthesizer
from ..config import TriageSettings
from ..context.provider import WorkspaceContextProvider
from ..errors import DeliveryError, FetchError, RunCancelledError
from ..feedback.recorder import FeedbackRecorder
from ..github_client.client import GitHubClient
from ..interfaces import (
    ContextProvider,
    DeliveryChannel,
    FeedbackSink,
    ResearchCollector,
)
from ..models import (
    Classification,
    DailyTriageBrief,
    GitHubItem,
    PriorityLevel,
    RunMode,
    RunRecord,
    RunState,
    TriagedItem,
    TriageFeedback,
    TriggerSource,
)
from ..research.collector import GitHubResearchCollector
from ..slack.client import SlackDeliveryChannel
from ..slack.config import SlackConfig
from ..storage.manager import TriageStore
from ..triage.orchestrator import TriageOrchestrator
from .run import PipelineRun, RunContext

logger = logging.getLogger(__name__)


class TriagePipeline:
    """Runs Research and Context in parallel, then Triage, Brief and Delivery.

    Every run is archived, whether it completes or fails, so computed
    decisions survive a delivery failure.
    """

    def __init__(
        self,
        research: ResearchCollector,
        context_provider: ContextProvider,
        orchestrator: TriageOrchestrator,
        synthesizer: BriefSynthesizer,
        delivery: DeliveryChannel,
        feedback: FeedbackSink,
        store: TriageStore,
        lookback_hours: int = 24,
        default_channel: str = "#eng-triage",
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.research = research
        self.context_provider = context_provider
        self.orchestrator = orchestrator
        self.synthesizer = synthesizer
        self.delivery = delivery
        self.feedback = feedback
        self.store = store
        self.lookback = timedelta(hours=lookback_hours)
        self.default_channel = default_channel
        self._clock = clock

    async def run(
        self,
        workspace_id: str,
        mode: RunMode = RunMode.BRIEF,
        trigger: TriggerSource = TriggerSource.SCHEDULED,
        ctx: RunContext | None = None,
        repo_ids: Sequence[str] | None = None,
        channel_id: str | None = None,
        since: datetime | None = None,
    ) -> RunRecord:
        """Execute one run and return its final record.

        Stage failures end in the Failed state instead of raising; the record
        carries the error text. ``since`` overrides the lookback window start.
        """
        ctx = ctx or RunContext(workspace_id=workspace_id)
        run = PipelineRun(ctx, mode=mode, trigger=trigger)
        channel = channel_id or self.default_channel
        now = self._clock()
        since = since or now - self.lookback
        triaged: list[TriagedItem] = []
        brief: DailyTriageBrief | None = None

        try:
            run.transition(RunState.FETCHING)
            fetched, context, feedback = await asyncio.gather(
                asyncio.to_thread(
                    self.research.fetch_recent_activity, since, list(repo_ids or [])
                ),
                asyncio.to_thread(self.context_provider.get_project_context, workspace_id),
                asyncio.to_thread(self.feedback.feedback_by_classification, workspace_id),
            )
            run.record.item_count = len(fetched.items)
            run.record.incomplete = fetched.incomplete
            if fetched.incomplete:
                ctx.logger.warning("Research returned partial data: %s", fetched.reason)
                run.record.notes.append(f"incomplete: {fetched.reason}")
            if context.missing_fields:
                run.record.notes.append(
                    f"context-incomplete: {', '.join(context.missing_fields)}"
                )

            ctx.check_cancelled(RunState.ANALYZING)
            run.transition(RunState.ANALYZING)

            def skip(item: GitHubItem, error: Exception) -> None:
                run.record.skipped_item_ids.append(item.id)
                run.record.notes.append(f"skipped {item.reference}: {error}")

            triaged = self.orchestrator.analyze_and_triage(
                fetched.items, context, now=now, on_skip=skip
            )
            triaged = self._recalibrate(triaged, feedback, ctx)
            run.record.triaged_count = len(triaged)

            ctx.check_cancelled(RunState.SYNTHESIZING)
            run.transition(RunState.SYNTHESIZING)
            brief = await asyncio.to_thread(
                self.synthesizer.generate_daily_brief,
                triaged,
                context,
                run_id=ctx.run_id,
                window_start=since,
                now=now,
                incomplete=fetched.incomplete,
            )
            run.record.brief_id = brief.id

            ctx.check_cancelled(RunState.DELIVERING)
            run.transition(RunState.DELIVERING)
            if mode is RunMode.ALERTS:
                await self._send_alerts(brief, channel, ctx)
            else:
                run.record.thread_id = await asyncio.to_thread(
                    self.delivery.post_daily_brief, brief, channel
                )
            run.transition(RunState.COMPLETED)
        except RunCancelledError as e:
            ctx.logger.warning("%s", e)
            run.fail(e)
        except FetchError as e:
            ctx.logger.error("Research failed: %s", e)
            run.fail(e)
        except DeliveryError as e:
            ctx.logger.error("Delivery failed, keeping computed brief: %s", e)
            run.fail(e)
        except Exception as e:
            ctx.logger.exception("Run failed in %s", run.state.value)
            run.fail(e)
        finally:
            try:
                self.store.save_run_archive(run.record, triaged, brief)
            except OSError:
                ctx.logger.exception("Could not archive run")

        ctx.logger.info(
            "Run finished %s: %d item(s), %d triaged",
            run.state.value,
            run.record.item_count,
            run.record.triaged_count,
        )
        return run.record

    def _recalibrate(
        self,
        triaged: list[TriagedItem],
        feedback: dict[Classification, list[TriageFeedback]],
        ctx: RunContext,
    ) -> list[TriagedItem]:
        if not feedback:
            return triaged
        revised = []
        for item in triaged:
            events = feedback.get(item.classification)
            new_item = (
                self.orchestrator.recalibrate_priority(item, events) if events else item
            )
            if new_item is not item:
                ctx.logger.info(
                    "Applied feedback to %s: %s -> %s",
                    item.original_item.reference,
                    item.priority.value,
                    new_item.priority.value,
                )
            revised.append(new_item)
        return revised

    async def _send_alerts(
        self, brief: DailyTriageBrief, channel: str, ctx: RunContext
    ) -> None:
        alerts = [
            t for t in brief.critical_alerts if t.priority is PriorityLevel.CRITICAL
        ]
        for triaged in alerts:
            await asyncio.to_thread(
                self.delivery.post_alert, triaged, channel, brief.workspace_id
            )
        ctx.logger.info("Alert sweep checked %d critical item(s)", len(alerts))


def build_pipeline(
    settings: TriageSettings,
    slack_config: SlackConfig,
    store: TriageStore | None = None,
) -> tuple[TriagePipeline, WorkspaceContextProvider]:
    """Wire the production stage implementations together.

    Args:
        settings: Pipeline settings
        slack_config: Slack delivery settings
        store: Storage to use; defaults to one under ``settings.data_dir``

    Returns:
        Tuple of (pipeline, context provider)
    """
    settings.validate()
    store = store or TriageStore(settings.data_dir)
    provider = WorkspaceContextProvider(store)
    research = GitHubResearchCollector(
        GitHubClient(settings.github_token),
        configured_repos=settings.repositories,
        org=settings.github_org,
        excluded_repos=settings.excluded_repositories,
        max_attempts=settings.fetch_max_attempts,
        timeout_seconds=settings.fetch_timeout_seconds,
    )
    writer = None
    if settings.summary_model:
        logger.info("Summary bullets will be rewritten by %s", settings.summary_model)
        writer = AISummaryWriter(settings.summary_model)
    pipeline = TriagePipeline(
        research=research,
        context_provider=provider,
        orchestrator=TriageOrchestrator(stale_after_days=settings.stale_after_days),
        synthesizer=BriefSynthesizer(summary_writer=writer),
        delivery=SlackDeliveryChannel(
            store, slack_config, max_attempts=settings.delivery_max_attempts
        ),
        feedback=FeedbackRecorder(store, window_runs=settings.feedback_window_runs),
        store=store,
        lookback_hours=settings.lookback_hours,
        default_channel=slack_config.channel,
    )
    return pipeline, provider
