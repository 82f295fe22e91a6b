"""Slack client for delivering triage briefs and alerts."""

import logging
import time
from collections.abc import Callable
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.error import URLError

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import DeliveryError
from ..models import DailyTriageBrief, TriagedItem
from ..storage.manager import DeliveryRecord, MessageRecord, TriageStore
from .config import SlackConfig

logger = logging.getLogger(__name__)

# Slack rejects section text longer than 3000 characters
SECTION_TEXT_LIMIT = 3000
ITEMS_PER_SECTION = 10

# Message metadata tagging a posted brief with its id
BRIEF_EVENT_TYPE = "triage_brief"
HISTORY_LOOKBACK = 50

RETRYABLE_SLACK_ERRORS = {
    "ratelimited",
    "service_unavailable",
    "request_timeout",
    "internal_error",
    "fatal_error",
}

PRIORITY_EMOJI = {
    "CRITICAL": "🔴",
    "HIGH": "🟠",
    "MEDIUM": "🟡",
    "LOW": "⚪",
}


class MessageState(str, Enum):
    """States a posted message can be moved to."""

    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    SNOOZED = "snoozed"
    SUPERSEDED = "superseded"


def is_retryable_slack_error(error: BaseException) -> bool:
    """Rate limits, Slack-side failures and network errors are retried."""
    if isinstance(error, SlackApiError):
        status = getattr(error.response, "status_code", None)
        return error.response.get("error") in RETRYABLE_SLACK_ERRORS or (
            status is not None and status >= 500
        )
    return is_ambiguous_failure(error)


def is_ambiguous_failure(error: BaseException) -> bool:
    """Network failures leave it unknown whether Slack accepted the request."""
    return isinstance(error, (URLError, TimeoutError, ConnectionError))


def _section(text: str) -> Dict[str, Any]:
    if len(text) > SECTION_TEXT_LIMIT:
        text = text[: SECTION_TEXT_LIMIT - 3] + "..."
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _item_line(triaged: TriagedItem) -> str:
    item = triaged.original_item
    emoji = PRIORITY_EMOJI.get(triaged.priority.value, "")
    line = (
        f"{emoji} <{item.url}|{item.reference}> {item.title} "
        f"- `{triaged.priority.value}` `{triaged.classification.value}`"
    )
    if triaged.suggested_assignee:
        line += f" (suggested: {triaged.suggested_assignee})"
    return line


def format_brief_blocks(brief: DailyTriageBrief) -> List[Dict[str, Any]]:
    """Format a brief into Slack Block Kit blocks.

    Empty sections are left out entirely.
    """
    blocks: List[Dict[str, Any]] = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"Daily Triage Brief - {brief.date.isoformat()}",
            },
        },
        _section("\n".join(f"• {bullet}" for bullet in brief.summary)),
    ]

    if brief.notes:
        blocks.append(
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"⚠️ {note}"} for note in brief.notes
                ],
            }
        )

    for name, items in brief.sections().items():
        lines = [_item_line(t) for t in items[:ITEMS_PER_SECTION]]
        if len(items) > ITEMS_PER_SECTION:
            lines.append(f"... and {len(items) - ITEMS_PER_SECTION} more")
        blocks.append({"type": "divider"})
        blocks.append(_section(f"*{name}*\n" + "\n".join(lines)))

    blocks.append(
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Open:* {brief.stats.total_open}"},
                {"type": "mrkdwn", "text": f"*New:* {brief.stats.new_today}"},
                {"type": "mrkdwn", "text": f"*Closed:* {brief.stats.closed_today}"},
            ],
        }
    )
    blocks.append(
        {
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"Run `{brief.run_id}`"}],
        }
    )
    return blocks


def format_alert_blocks(triaged: TriagedItem) -> List[Dict[str, Any]]:
    """Format a single-item alert."""
    return [
        _section(f"*Triage Alert*\n{_item_line(triaged)}"),
        {
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": triaged.reasoning[:300]}],
        },
    ]


class SlackDeliveryChannel:
    """Posts briefs and alerts to Slack.

    Delivery is idempotent per (workspace, date): re-posting a brief whose id
    is already in the ledger returns the stored thread id without a new message.
    Briefs carry their id as message metadata; after a network failure the
    channel history is searched for it before posting again.
    """

    def __init__(
        self,
        store: TriageStore,
        config: Optional[SlackConfig] = None,
        max_attempts: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize Slack delivery with configuration."""
        self.store = store
        self.config = config or SlackConfig()
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._bot_client: Optional[WebClient] = None

    @property
    def bot_client(self) -> WebClient:
        """Get or create Slack WebClient instance for the bot token."""
        if self._bot_client is None:
            self.config.validate()
            self._bot_client = WebClient(token=self.config.bot_token)
        return self._bot_client

    def _call(self, method: Callable[..., Any], **kwargs: Any) -> Any:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, max=30),
            retry=retry_if_exception(is_retryable_slack_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return retrying(method, **kwargs)
        except (SlackApiError, URLError, TimeoutError, ConnectionError) as e:
            raise DeliveryError(f"Slack call failed: {e}") from e

    def post_daily_brief(self, brief: DailyTriageBrief, channel_id: str) -> str:
        """Post the brief and return an opaque thread id.

        Raises:
            DeliveryError: If Slack stays unreachable after retries
        """
        ledger = self.store.get_delivery(brief.workspace_id, brief.date)
        if ledger and ledger.brief_id == brief.id and ledger.thread_id:
            logger.info(
                "Brief %s already delivered as %s, skipping", brief.id, ledger.thread_id
            )
            return ledger.thread_id

        blocks = format_brief_blocks(brief)
        text = f"Daily Triage Brief - {brief.date.isoformat()}"
        metadata = {
            "event_type": BRIEF_EVENT_TYPE,
            "event_payload": {"brief_id": brief.id},
        }
        ambiguous = False

        def post() -> Any:
            nonlocal ambiguous
            if ambiguous:
                existing = self._find_posted_brief(channel_id, brief.id)
                if existing is not None:
                    logger.info(
                        "Brief %s reached Slack before the failure, not re-posting",
                        brief.id,
                    )
                    return existing
            try:
                return self.bot_client.chat_postMessage(
                    channel=channel_id, blocks=blocks, text=text, metadata=metadata
                )
            except Exception as e:
                if is_ambiguous_failure(e):
                    ambiguous = True
                raise

        response = self._call(post)
        posted_channel = response.get("channel") or channel_id
        thread_id = f"{posted_channel}:{response['ts']}"

        self.store.save_delivery(
            DeliveryRecord(
                workspace_id=brief.workspace_id,
                date=brief.date,
                brief_id=brief.id,
                thread_id=thread_id,
                channel_id=posted_channel,
                item_ids=sorted(brief.item_ids()),
                alerted_item_ids=ledger.alerted_item_ids if ledger else [],
                delivered_at=datetime.now(UTC),
            )
        )
        self.store.save_message(
            MessageRecord(
                message_id=thread_id,
                channel_id=posted_channel,
                ts=response["ts"],
                text=text,
                blocks=blocks,
            )
        )
        logger.info("Posted brief %s to %s as %s", brief.id, channel_id, thread_id)
        return thread_id

    def _find_posted_brief(
        self, channel_id: str, brief_id: str
    ) -> Optional[Dict[str, Any]]:
        """Look up a recent channel message tagged with ``brief_id``."""
        try:
            history = self.bot_client.conversations_history(
                channel=channel_id, limit=HISTORY_LOOKBACK, include_all_metadata=True
            )
        except SlackApiError as e:
            logger.warning(
                "Could not read history of %s: %s", channel_id, e.response.get("error")
            )
            return None
        for message in history.get("messages", []):
            metadata = message.get("metadata") or {}
            if (
                metadata.get("event_type") == BRIEF_EVENT_TYPE
                and (metadata.get("event_payload") or {}).get("brief_id") == brief_id
            ):
                return {"channel": channel_id, "ts": message["ts"]}
        return None

    def post_alert(
        self,
        item: TriagedItem,
        channel_id: str,
        workspace_id: str = "default",
        day: Optional[date] = None,
    ) -> None:
        """Post an immediate single-item alert.

        Items already covered by the day's brief, or alerted earlier the same
        day, are skipped.
        """
        day = day or datetime.now(UTC).date()
        ledger = self.store.get_delivery(workspace_id, day) or DeliveryRecord(
            workspace_id=workspace_id, date=day
        )
        if item.item_id in ledger.item_ids or item.item_id in ledger.alerted_item_ids:
            logger.info(
                "Skipping alert for %s: already delivered today",
                item.original_item.reference,
            )
            return

        blocks = format_alert_blocks(item)
        text = f"Triage alert: {item.original_item.title}"
        response = self._call(
            self.bot_client.chat_postMessage, channel=channel_id, blocks=blocks, text=text
        )
        posted_channel = response.get("channel") or channel_id
        message_id = f"{posted_channel}:{response['ts']}"

        self.store.save_delivery(
            ledger.model_copy(
                update={"alerted_item_ids": [*ledger.alerted_item_ids, item.item_id]}
            )
        )
        self.store.save_message(
            MessageRecord(
                message_id=message_id,
                channel_id=posted_channel,
                ts=response["ts"],
                text=text,
                blocks=blocks,
            )
        )
        logger.info("Posted alert for %s as %s", item.original_item.reference, message_id)

    def update_message_state(self, message_id: str, state: MessageState | str) -> None:
        """Re-render a posted message with a status line.

        Raises:
            ValueError: If the message id was never posted by this channel
            DeliveryError: If Slack stays unreachable after retries
        """
        record = self.store.load_message(message_id)
        if record is None:
            raise ValueError(f"Unknown message id {message_id}")

        label = state.value if isinstance(state, MessageState) else str(state)
        timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M UTC")
        blocks = [
            *record.blocks,
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"Status: *{label}* ({timestamp})"}
                ],
            },
        ]
        self._call(
            self.bot_client.chat_update,
            channel=record.channel_id,
            ts=record.ts,
            blocks=blocks,
            text=record.text,
        )
        self.store.save_message(
            record.model_copy(update={"state": label, "updated_at": datetime.now(UTC)})
        )
        logger.info("Updated message %s to state %s", message_id, label)
