"""Research stage."""

from .collector import GitHubResearchCollector, is_retryable_error

__all__ = ["GitHubResearchCollector", "is_retryable_error"]
