"""Tests for the end-to-end pipeline run."""

from datetime import timedelta
from unittest.mock import Mock, patch

import pytest
from pydantic_ai.models.test import TestModel as StubModel

from gh_triage.ai import AISummaryWriter
from gh_triage.brief.synthesizer import BriefSynthesizer
from gh_triage.config import TriageSettings
from gh_triage.context.provider import WorkspaceContextProvider
from gh_triage.errors import DeliveryError, FetchError
from gh_triage.feedback import FeedbackRecorder
from gh_triage.models import (
    Classification,
    FeedbackAction,
    FetchResult,
    PriorityLevel,
    RunMode,
    RunRecord,
    RunState,
    TriageFeedback,
)
from gh_triage.pipeline.run import RunContext
from gh_triage.pipeline.runner import TriagePipeline, build_pipeline
from gh_triage.slack.config import SlackConfig
from gh_triage.triage.orchestrator import TriageOrchestrator

COMPLETED_PATH = [
    RunState.IDLE,
    RunState.FETCHING,
    RunState.ANALYZING,
    RunState.SYNTHESIZING,
    RunState.DELIVERING,
    RunState.COMPLETED,
]


@pytest.fixture
def research() -> Mock:
    research = Mock()
    research.fetch_recent_activity.return_value = FetchResult(items=[])
    return research


@pytest.fixture
def delivery() -> Mock:
    delivery = Mock()
    delivery.post_daily_brief.return_value = "C1:1.0"
    return delivery


@pytest.fixture
def pipeline(store, research, delivery, now) -> TriagePipeline:
    return TriagePipeline(
        research=research,
        context_provider=WorkspaceContextProvider(store),
        orchestrator=TriageOrchestrator(),
        synthesizer=BriefSynthesizer(),
        delivery=delivery,
        feedback=FeedbackRecorder(store),
        store=store,
        clock=lambda: now,
    )


class TestTriagePipelineRun:
    """Test state progression and failure handling."""

    @pytest.mark.asyncio
    async def test_completed_run(
        self, pipeline, research, delivery, store, make_item, now
    ) -> None:
        """A healthy run visits every stage and archives the brief."""
        research.fetch_recent_activity.return_value = FetchResult(
            items=[make_item(), make_item(labels=frozenset({"bug"}))]
        )
        record = await pipeline.run("platform", ctx=RunContext("platform", "r1"))

        assert record.states_visited == COMPLETED_PATH
        assert record.thread_id == "C1:1.0"
        assert record.brief_id == "brief-r1"
        assert record.item_count == 2
        assert record.triaged_count == 2
        delivery.post_daily_brief.assert_called_once()
        assert delivery.post_daily_brief.call_args.args[1] == "#eng-triage"
        research.fetch_recent_activity.assert_called_once_with(
            now - timedelta(hours=24), []
        )

        archive = store.load_run_archive("platform", "r1")
        assert archive.run.state is RunState.COMPLETED
        assert len(archive.triaged_items) == 2
        assert archive.brief.id == "brief-r1"

    @pytest.mark.asyncio
    async def test_empty_activity_still_delivers(self, pipeline, delivery) -> None:
        """A quiet day produces a brief made of counters."""
        record = await pipeline.run("platform")
        assert record.state is RunState.COMPLETED
        brief = delivery.post_daily_brief.call_args.args[0]
        assert len(brief.summary) == 3

    @pytest.mark.asyncio
    async def test_scoped_run(self, pipeline, research, delivery, now) -> None:
        """Explicit repositories, channel and window reach the stages."""
        since = now - timedelta(days=3)
        await pipeline.run(
            "platform", repo_ids=["acme/web"], channel_id="C9", since=since
        )
        research.fetch_recent_activity.assert_called_once_with(since, ["acme/web"])
        assert delivery.post_daily_brief.call_args.args[1] == "C9"

    @pytest.mark.asyncio
    async def test_fetch_failure(self, pipeline, research, delivery, store) -> None:
        """Research failing before any item ends the run in Failed."""
        research.fetch_recent_activity.side_effect = FetchError("No items fetched")

        record = await pipeline.run("platform", ctx=RunContext("platform", "r1"))

        assert record.states_visited == [
            RunState.IDLE,
            RunState.FETCHING,
            RunState.FAILED,
        ]
        assert record.error == "No items fetched"
        delivery.post_daily_brief.assert_not_called()
        assert store.load_run_archive("platform", "r1").run.state is RunState.FAILED

    @pytest.mark.asyncio
    async def test_delivery_failure_keeps_brief(
        self, pipeline, research, delivery, store, make_item
    ) -> None:
        """Computed decisions and the brief survive a delivery failure."""
        research.fetch_recent_activity.return_value = FetchResult(items=[make_item()])
        delivery.post_daily_brief.side_effect = DeliveryError("Slack call failed")

        record = await pipeline.run("platform", ctx=RunContext("platform", "r1"))

        assert record.state is RunState.FAILED
        assert record.states_visited[-2] is RunState.DELIVERING
        assert record.error == "Slack call failed"
        assert record.brief_id == "brief-r1"
        archive = store.load_run_archive("platform", "r1")
        assert archive.brief is not None
        assert len(archive.triaged_items) == 1

    @pytest.mark.asyncio
    async def test_partial_data(self, pipeline, research, delivery, make_item) -> None:
        """Incomplete research completes with a visible marker."""
        research.fetch_recent_activity.return_value = FetchResult(
            items=[make_item()], incomplete=True, reason="acme/api: retry budget"
        )

        record = await pipeline.run("platform")

        assert record.state is RunState.COMPLETED
        assert record.incomplete
        assert "incomplete: acme/api: retry budget" in record.notes
        brief = delivery.post_daily_brief.call_args.args[0]
        assert brief.incomplete
        assert brief.notes[0].startswith("Partial data:")

    @pytest.mark.asyncio
    async def test_missing_context_is_noted(self, pipeline) -> None:
        record = await pipeline.run("ghost")
        assert record.state is RunState.COMPLETED
        assert any(note.startswith("context-incomplete:") for note in record.notes)

    @pytest.mark.asyncio
    async def test_cancelled_run(self, pipeline, delivery) -> None:
        """Cancellation is honored at the next stage boundary."""
        ctx = RunContext("platform")
        ctx.cancel()

        record = await pipeline.run("platform", ctx=ctx)

        assert record.state is RunState.FAILED
        assert record.error == "Run cancelled before entering Analyzing"
        delivery.post_daily_brief.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_run(self, pipeline, research) -> None:
        research.fetch_recent_activity.side_effect = RuntimeError("boom")
        record = await pipeline.run("platform")
        assert record.state is RunState.FAILED
        assert record.error == "boom"

    @pytest.mark.asyncio
    async def test_skipped_item_is_recorded(self, pipeline, research, make_item):
        """A per-item triage failure skips only that item."""
        good, bad = make_item(), make_item()
        research.fetch_recent_activity.return_value = FetchResult(items=[good, bad])
        original = pipeline.orchestrator.triage_item

        def flaky(item, context, now):
            if item.id == bad.id:
                raise ValueError("unparseable")
            return original(item, context, now)

        with patch.object(pipeline.orchestrator, "triage_item", side_effect=flaky):
            record = await pipeline.run("platform")

        assert record.state is RunState.COMPLETED
        assert record.skipped_item_ids == [bad.id]
        assert record.triaged_count == 1


class TestAlertsMode:
    """Test the alert sweep."""

    @pytest.mark.asyncio
    async def test_only_critical_items_are_alerted(
        self, pipeline, research, delivery, make_item
    ) -> None:
        outage = make_item(title="Auth outage", labels=frozenset({"p0"}))
        feature = make_item(labels=frozenset({"feature"}))
        research.fetch_recent_activity.return_value = FetchResult(
            items=[outage, feature]
        )

        record = await pipeline.run("platform", mode=RunMode.ALERTS)

        assert record.state is RunState.COMPLETED
        delivery.post_daily_brief.assert_not_called()
        delivery.post_alert.assert_called_once()
        alerted, channel, workspace = delivery.post_alert.call_args.args
        assert alerted.original_item.id == outage.id
        assert alerted.priority is PriorityLevel.CRITICAL
        assert (channel, workspace) == ("#eng-triage", "platform")


class TestFeedbackRecalibration:
    """Test feedback from earlier runs changing new decisions."""

    @pytest.mark.asyncio
    async def test_engagement_raises_priority(
        self, pipeline, research, store, make_item, make_triaged, now
    ) -> None:
        docs = make_item(labels=frozenset({"docs"}))
        store.save_run_archive(
            RunRecord(
                run_id="run-0", workspace_id="platform", started_at=now - timedelta(days=1)
            ),
            [make_triaged(item=docs, classification=Classification.DOCUMENTATION)],
        )
        for user in ("bob", "carol", "dave"):
            store.append_feedback(
                TriageFeedback(
                    triage_id="run-0",
                    user_id=user,
                    action=FeedbackAction.CLICKED_LINK,
                    item_id=docs.id,
                )
            )
        research.fetch_recent_activity.return_value = FetchResult(items=[docs])

        await pipeline.run("platform", ctx=RunContext("platform", "r1"))

        triaged = store.load_run_archive("platform", "r1").triaged_items[0]
        assert triaged.priority is PriorityLevel.MEDIUM
        assert triaged.revision_of == docs.id
        assert "Recalibrated LOW -> MEDIUM" in triaged.reasoning


class TestSummaryWriterInRun:
    """Test the AI summary writer inside a running event loop."""

    @pytest.mark.asyncio
    async def test_rewritten_bullets_are_delivered(
        self, store, research, delivery, now
    ) -> None:
        bullets = ["Quiet day.", "Nothing blocked.", "No new security reports."]
        writer = AISummaryWriter(StubModel(custom_output_args={"bullets": bullets}))
        pipeline = TriagePipeline(
            research=research,
            context_provider=WorkspaceContextProvider(store),
            orchestrator=TriageOrchestrator(),
            synthesizer=BriefSynthesizer(summary_writer=writer),
            delivery=delivery,
            feedback=FeedbackRecorder(store),
            store=store,
            clock=lambda: now,
        )

        record = await pipeline.run("platform")

        assert record.state is RunState.COMPLETED
        assert delivery.post_daily_brief.call_args.args[0].summary == bullets

class TestBuildPipeline:
    """Test production wiring."""

    def test_wires_stages(self, store) -> None:
        env = {
            "GITHUB_TOKEN": "ghp_test",
            "TRIAGE_REPOS": "acme/api, acme/web",
            "TRIAGE_LOOKBACK_HOURS": "48",
        }
        with patch.dict("os.environ", env, clear=True):
            settings = TriageSettings()
            slack_config = SlackConfig()

        with patch("gh_triage.pipeline.runner.GitHubClient") as client_cls:
            pipeline, provider = build_pipeline(settings, slack_config, store=store)

        client_cls.assert_called_once_with("ghp_test")
        assert pipeline.research.configured_repos == ["acme/api", "acme/web"]
        assert pipeline.lookback == timedelta(hours=48)
        assert pipeline.default_channel == "#eng-triage"
        assert pipeline.synthesizer.summary_writer is None
        assert provider.store is store

    def test_invalid_settings(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            settings = TriageSettings()
        with pytest.raises(ValueError, match="GITHUB_TOKEN is required"):
            build_pipeline(settings, SlackConfig())
