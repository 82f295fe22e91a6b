"""Configuration for the triage pipeline."""

import os
from pathlib import Path

from .github_client.search import build_exclusion_list


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}")


def _list_env(name: str) -> list[str]:
    value = os.getenv(name, "")
    return [part.strip() for part in value.split(",") if part.strip()]


class TriageSettings:
    """Pipeline settings read from environment variables."""

    def __init__(self) -> None:
        """Initialize settings from environment variables."""
        self.github_token: str | None = os.getenv("GITHUB_TOKEN")
        self.github_org: str | None = os.getenv("GITHUB_ORG")
        self.repositories: list[str] = _list_env("TRIAGE_REPOS")
        self.excluded_repositories: list[str] = build_exclusion_list(
            None, os.getenv("TRIAGE_EXCLUDE_REPOS")
        )
        self.data_dir: Path = Path(os.getenv("TRIAGE_DATA_DIR", "data"))
        self.lookback_hours: int = _int_env("TRIAGE_LOOKBACK_HOURS", 24)
        self.stale_after_days: int = _int_env("TRIAGE_STALE_DAYS", 14)
        self.fetch_timeout_seconds: int = _int_env("TRIAGE_FETCH_TIMEOUT", 300)
        self.fetch_max_attempts: int = _int_env("TRIAGE_FETCH_MAX_ATTEMPTS", 5)
        self.delivery_max_attempts: int = _int_env("TRIAGE_DELIVERY_MAX_ATTEMPTS", 3)
        self.feedback_window_runs: int = _int_env("TRIAGE_FEEDBACK_WINDOW_RUNS", 7)
        self.summary_model: str | None = os.getenv("TRIAGE_SUMMARY_MODEL") or None

    def is_configured(self) -> bool:
        """Check if the GitHub side is configured."""
        return self.github_token is not None

    def validate(self) -> None:
        """Validate configuration and raise error if invalid."""
        problems = []
        if not self.github_token:
            problems.append("GITHUB_TOKEN is required")
        if self.stale_after_days <= 0:
            problems.append("TRIAGE_STALE_DAYS must be positive")
        if self.lookback_hours <= 0:
            problems.append("TRIAGE_LOOKBACK_HOURS must be positive")
        if self.fetch_max_attempts <= 0:
            problems.append("TRIAGE_FETCH_MAX_ATTEMPTS must be positive")

        if problems:
            raise ValueError(f"Invalid triage configuration: {'; '.join(problems)}")
