"""Tests for the AI summary writer."""

from datetime import timedelta
from unittest.mock import Mock

from pydantic_ai.models.test import TestModel as StubModel

from gh_triage.ai import AISummaryWriter, BriefSummaryResponse
from gh_triage.ai.agents import brief_summary_agent
from gh_triage.ai.prompts import format_brief_prompt
from gh_triage.brief.synthesizer import BriefSynthesizer
from gh_triage.models import Classification, PriorityLevel


def _brief(context, now, triaged=()):
    return BriefSynthesizer().generate_daily_brief(
        list(triaged),
        context,
        run_id="r1",
        window_start=now - timedelta(hours=24),
        now=now,
    )


class TestAISummaryWriter:
    """Tests for rewriting with the summary agent."""

    def test_agent_exists(self) -> None:
        assert brief_summary_agent is not None
        assert hasattr(brief_summary_agent, "run_sync")

    def test_rewrite_with_test_model(self, context, now) -> None:
        """The structured output becomes the new bullet list."""
        model = StubModel(
            custom_output_args={"bullets": ["Quiet day.", "Nothing blocked.", "Ship it."]}
        )
        writer = AISummaryWriter(model)
        brief = _brief(context, now)

        assert writer.rewrite(brief.summary, brief) == [
            "Quiet day.",
            "Nothing blocked.",
            "Ship it.",
        ]

    def test_prompt_carries_sections_and_counters(
        self, context, now, make_triaged
    ) -> None:
        critical = make_triaged(
            classification=Classification.SECURITY, priority=PriorityLevel.HIGH
        )
        brief = _brief(context, now, [critical])
        agent = Mock()
        agent.run_sync.return_value.output = BriefSummaryResponse(bullets=["a", "b", "c"])

        AISummaryWriter("test", agent=agent).rewrite(brief.summary, brief)

        prompt = agent.run_sync.call_args.args[0]
        assert "## Critical Alerts" in prompt
        assert f"HIGH SECURITY {critical.original_item.reference}" in prompt
        assert "open=1 new=0 closed=0" in prompt
        assert agent.run_sync.call_args.kwargs["model"] == "test"

    def test_synthesizer_reclamps_writer_output(self, context, now) -> None:
        """Too many bullets from the model are cut back to five."""
        model = StubModel(custom_output_args={"bullets": [f"b{i}" for i in range(7)]})
        brief = BriefSynthesizer(summary_writer=AISummaryWriter(model)).generate_daily_brief(
            [], context, run_id="r1", window_start=now - timedelta(hours=24), now=now
        )
        assert brief.summary == ["b0", "b1", "b2", "b3", "b4"]


def test_format_brief_prompt() -> None:
    prompt = format_brief_prompt(["one"], {"Blockers": ["x"]}, "open=1")
    assert prompt == "## Draft bullets\n- one\n\n## Blockers\n- x\n\n## Counters\nopen=1"
