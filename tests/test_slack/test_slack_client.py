"""Tests for Slack delivery."""

from datetime import timedelta
from unittest.mock import Mock, patch

import pytest
from slack_sdk.errors import SlackApiError

from gh_triage.errors import DeliveryError
from gh_triage.models import (
    BriefStats,
    Classification,
    DailyTriageBrief,
    PriorityLevel,
)
from gh_triage.slack.client import (
    MessageState,
    SlackDeliveryChannel,
    format_alert_blocks,
    format_brief_blocks,
    is_retryable_slack_error,
)
from gh_triage.slack.config import SlackConfig


def _slack_error(code: str) -> SlackApiError:
    return SlackApiError(code, {"ok": False, "error": code})


def _brief(now, critical=(), progress=(), notes=()) -> DailyTriageBrief:
    return DailyTriageBrief(
        id="brief-r1",
        workspace_id="platform",
        run_id="r1",
        date=now.date(),
        summary=["one", "two", "three"],
        critical_alerts=list(critical),
        progress_updates=list(progress),
        stats=BriefStats(total_open=4, new_today=1, closed_today=2),
        window_start=now - timedelta(hours=24),
        notes=list(notes),
    )


@pytest.fixture
def web_client() -> Mock:
    client = Mock()
    client.chat_postMessage.return_value = {"ok": True, "channel": "C1", "ts": "111.1"}
    client.chat_update.return_value = {"ok": True}
    client.conversations_history.return_value = {"ok": True, "messages": []}
    return client


@pytest.fixture
def channel(store, web_client) -> SlackDeliveryChannel:
    delivery = SlackDeliveryChannel(store, max_attempts=3, sleep=Mock())
    delivery._bot_client = web_client
    return delivery


class TestSlackConfig:
    """Test environment-driven configuration."""

    def test_from_environment(self) -> None:
        with patch.dict(
            "os.environ", {"SLACK_BOT_TOKEN": "xoxb-1", "SLACK_CHANNEL": "#ops"}
        ):
            config = SlackConfig()
        assert config.is_configured()
        assert config.channel == "#ops"

    def test_missing_token(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            config = SlackConfig()
            assert not config.is_configured()
            with pytest.raises(ValueError, match="SLACK_BOT_TOKEN"):
                config.validate()


class TestFormatting:
    """Test Block Kit rendering."""

    def test_empty_sections_are_omitted(self, now) -> None:
        """Only the header, summary, stats and run context remain."""
        blocks = format_brief_blocks(_brief(now))

        assert blocks[0]["type"] == "header"
        assert blocks[0]["text"]["text"] == f"Daily Triage Brief - {now.date()}"
        assert blocks[1]["text"]["text"] == "• one\n• two\n• three"
        assert not any(block["type"] == "divider" for block in blocks)
        assert blocks[-1]["elements"][0]["text"] == "Run `r1`"

    def test_sections_and_notes(self, now, make_triaged) -> None:
        critical = make_triaged(
            classification=Classification.SECURITY,
            priority=PriorityLevel.HIGH,
            suggested_assignee="oncall-olga",
        )
        blocks = format_brief_blocks(
            _brief(now, critical=[critical], notes=["Partial data"])
        )
        texts = [b.get("text", {}).get("text", "") for b in blocks if b["type"] == "section"]

        assert any(text.startswith("*Critical Alerts*") for text in texts)
        assert not any(text.startswith("*Progress*") for text in texts)
        assert any("(suggested: oncall-olga)" in text for text in texts)
        assert blocks[2]["elements"][0]["text"] == "⚠️ Partial data"

    def test_long_sections_are_capped(self, now, make_triaged) -> None:
        progress = [make_triaged() for _ in range(12)]
        blocks = format_brief_blocks(_brief(now, progress=progress))
        progress_text = next(
            b["text"]["text"]
            for b in blocks
            if b["type"] == "section" and "text" in b
            and b["text"]["text"].startswith("*Progress*")
        )
        assert progress_text.endswith("... and 2 more")

    def test_alert_blocks(self, make_triaged) -> None:
        blocks = format_alert_blocks(make_triaged())
        assert blocks[0]["text"]["text"].startswith("*Triage Alert*")


class TestIsRetryableSlackError:
    """Test retry classification."""

    def test_rate_limited(self) -> None:
        assert is_retryable_slack_error(_slack_error("ratelimited"))

    def test_permanent_error(self) -> None:
        assert not is_retryable_slack_error(_slack_error("channel_not_found"))

    def test_network_error(self) -> None:
        assert is_retryable_slack_error(ConnectionError("reset"))
        assert not is_retryable_slack_error(ValueError("bad"))


class TestPostDailyBrief:
    """Test brief delivery."""

    def test_posts_and_records_ledger(self, channel, web_client, store, now) -> None:
        brief = _brief(now)
        thread_id = channel.post_daily_brief(brief, "#eng-triage")

        assert thread_id == "C1:111.1"
        web_client.chat_postMessage.assert_called_once()
        ledger = store.get_delivery("platform", now.date())
        assert ledger.brief_id == "brief-r1"
        assert ledger.thread_id == "C1:111.1"
        assert store.load_message("C1:111.1").ts == "111.1"

    def test_redelivery_is_idempotent(self, channel, web_client, now) -> None:
        """Posting the same brief twice sends one message."""
        brief = _brief(now)
        first = channel.post_daily_brief(brief, "#eng-triage")
        second = channel.post_daily_brief(brief, "#eng-triage")

        assert first == second
        assert web_client.chat_postMessage.call_count == 1

    def test_transient_failure_is_retried(self, channel, web_client, now) -> None:
        web_client.chat_postMessage.side_effect = [
            _slack_error("ratelimited"),
            {"ok": True, "channel": "C1", "ts": "222.2"},
        ]
        assert channel.post_daily_brief(_brief(now), "#eng-triage") == "C1:222.2"
        assert channel._sleep.call_count == 1

    def test_exhausted_retries_raise_delivery_error(
        self, channel, web_client, store, now
    ) -> None:
        """An unreachable channel surfaces as DeliveryError and records nothing."""
        web_client.chat_postMessage.side_effect = _slack_error("service_unavailable")

        with pytest.raises(DeliveryError):
            channel.post_daily_brief(_brief(now), "#eng-triage")

        assert web_client.chat_postMessage.call_count == 3
        assert store.get_delivery("platform", now.date()) is None

    def test_timeout_after_post_does_not_duplicate(
        self, channel, web_client, store, now
    ) -> None:
        """A post that reached Slack before timing out is found, not re-sent."""
        posted = []

        def post_then_time_out(**kwargs):
            posted.append(kwargs)
            if len(posted) == 1:
                raise TimeoutError("read timed out")
            return {"ok": True, "channel": "C1", "ts": "999.9"}

        web_client.chat_postMessage.side_effect = post_then_time_out
        web_client.conversations_history.return_value = {
            "ok": True,
            "messages": [
                {"ts": "100.0", "text": "unrelated"},
                {
                    "ts": "111.1",
                    "metadata": {
                        "event_type": "triage_brief",
                        "event_payload": {"brief_id": "brief-r1"},
                    },
                },
            ],
        }

        thread_id = channel.post_daily_brief(_brief(now), "C1")

        assert thread_id == "C1:111.1"
        assert len(posted) == 1
        assert posted[0]["metadata"]["event_payload"] == {"brief_id": "brief-r1"}
        web_client.conversations_history.assert_called_once_with(
            channel="C1", limit=50, include_all_metadata=True
        )
        assert store.get_delivery("platform", now.date()).thread_id == "C1:111.1"

    def test_timeout_before_post_is_retried(self, channel, web_client, now) -> None:
        """Nothing tagged with the brief id in history means the post is re-sent."""
        web_client.chat_postMessage.side_effect = [
            TimeoutError("connect timed out"),
            {"ok": True, "channel": "C1", "ts": "222.2"},
        ]

        assert channel.post_daily_brief(_brief(now), "C1") == "C1:222.2"
        assert web_client.chat_postMessage.call_count == 2
        web_client.conversations_history.assert_called_once()

    def test_rate_limit_skips_history_lookup(self, channel, web_client, now) -> None:
        web_client.chat_postMessage.side_effect = [
            _slack_error("ratelimited"),
            {"ok": True, "channel": "C1", "ts": "222.2"},
        ]
        channel.post_daily_brief(_brief(now), "C1")
        web_client.conversations_history.assert_not_called()

    def test_unreadable_history_falls_back_to_posting(
        self, channel, web_client, now
    ) -> None:
        web_client.chat_postMessage.side_effect = [
            ConnectionError("reset"),
            {"ok": True, "channel": "C1", "ts": "222.2"},
        ]
        web_client.conversations_history.side_effect = _slack_error("missing_scope")

        assert channel.post_daily_brief(_brief(now), "C1") == "C1:222.2"

    def test_permanent_failure_is_not_retried(self, channel, web_client, now) -> None:
        web_client.chat_postMessage.side_effect = _slack_error("channel_not_found")
        with pytest.raises(DeliveryError):
            channel.post_daily_brief(_brief(now), "#missing")
        assert web_client.chat_postMessage.call_count == 1


class TestPostAlert:
    """Test single-item alerts."""

    def test_alert_once_per_day(self, channel, web_client, make_triaged, now) -> None:
        item = make_triaged(priority=PriorityLevel.CRITICAL)
        channel.post_alert(item, "#eng-triage", "platform", day=now.date())
        channel.post_alert(item, "#eng-triage", "platform", day=now.date())
        assert web_client.chat_postMessage.call_count == 1

    def test_item_in_brief_is_not_alerted(
        self, channel, web_client, make_triaged, now
    ) -> None:
        item = make_triaged(priority=PriorityLevel.CRITICAL)
        channel.post_daily_brief(_brief(now, critical=[item]), "#eng-triage")
        web_client.chat_postMessage.reset_mock()

        channel.post_alert(item, "#eng-triage", "platform", day=now.date())

        web_client.chat_postMessage.assert_not_called()

    def test_alert_keeps_brief_ledger(
        self, channel, web_client, make_triaged, store, now
    ) -> None:
        """Alerting after the brief keeps the brief's thread id."""
        channel.post_daily_brief(_brief(now), "#eng-triage")
        web_client.chat_postMessage.return_value = {"channel": "C1", "ts": "333.3"}
        item = make_triaged(priority=PriorityLevel.CRITICAL)

        channel.post_alert(item, "#eng-triage", "platform", day=now.date())

        ledger = store.get_delivery("platform", now.date())
        assert ledger.thread_id == "C1:111.1"
        assert ledger.alerted_item_ids == [item.item_id]


class TestUpdateMessageState:
    """Test message state updates."""

    def test_update_posted_message(self, channel, web_client, store, now) -> None:
        thread_id = channel.post_daily_brief(_brief(now), "#eng-triage")

        channel.update_message_state(thread_id, MessageState.RESOLVED)

        kwargs = web_client.chat_update.call_args.kwargs
        assert kwargs["channel"] == "C1"
        assert kwargs["ts"] == "111.1"
        assert "Status: *resolved*" in kwargs["blocks"][-1]["elements"][0]["text"]
        assert store.load_message(thread_id).state == "resolved"

    def test_unknown_message(self, channel) -> None:
        with pytest.raises(ValueError, match="Unknown message id"):
            channel.update_message_state("C1:999", MessageState.ACKNOWLEDGED)
