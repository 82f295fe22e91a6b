"""Feedback loop."""

from .recorder import FeedbackRecorder

__all__ = ["FeedbackRecorder"]
