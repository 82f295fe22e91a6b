"""Slack delivery channel for triage briefs and alerts."""

from .client import MessageState, SlackDeliveryChannel, format_brief_blocks
from .config import SlackConfig

__all__ = ["MessageState", "SlackConfig", "SlackDeliveryChannel", "format_brief_blocks"]
