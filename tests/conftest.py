"""Test configuration and fixtures."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from gh_triage.models import (
    Classification,
    GitHubItem,
    ItemType,
    PriorityLevel,
    ProjectContext,
    TriagedItem,
    UserPreferences,
)
from gh_triage.storage.manager import TriageStore

NOW = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    """Fixed reference time used across tests."""
    return NOW


@pytest.fixture
def temp_data_dir(tmp_path: Path) -> Path:
    """Create temporary data directory."""
    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True)
    return data_dir


@pytest.fixture
def store(temp_data_dir: Path) -> TriageStore:
    """Storage rooted in the temporary data directory."""
    return TriageStore(temp_data_dir)


@pytest.fixture
def make_item() -> Callable[..., GitHubItem]:
    """Factory for GitHubItem with sensible defaults."""
    counter = {"n": 0}

    def factory(**overrides: Any) -> GitHubItem:
        counter["n"] += 1
        number = overrides.pop("number", counter["n"])
        fields: dict[str, Any] = {
            "external_id": str(1000 + number),
            "type": ItemType.ISSUE,
            "title": f"Item {number}",
            "description": "",
            "url": f"https://github.com/acme/api/issues/{number}",
            "author": "alice",
            "created_at": NOW - timedelta(days=2),
            "updated_at": NOW - timedelta(hours=2),
            "repository": "acme/api",
            "number": number,
        }
        fields.update(overrides)
        return GitHubItem(**fields)

    return factory


@pytest.fixture
def make_pr(make_item: Callable[..., GitHubItem]) -> Callable[..., GitHubItem]:
    """Factory for pull request items."""

    def factory(**overrides: Any) -> GitHubItem:
        overrides.setdefault("type", ItemType.PR)
        return make_item(**overrides)

    return factory


@pytest.fixture
def make_triaged(make_item: Callable[..., GitHubItem]) -> Callable[..., TriagedItem]:
    """Factory for TriagedItem wrapping a fresh item."""

    def factory(
        item: GitHubItem | None = None,
        classification: Classification = Classification.FEATURE,
        priority: PriorityLevel = PriorityLevel.MEDIUM,
        **overrides: Any,
    ) -> TriagedItem:
        fields: dict[str, Any] = {
            "original_item": item or make_item(),
            "classification": classification,
            "priority": priority,
            "reasoning": f"Classified {classification.value} (label: 'test').",
            "requires_pm_attention": priority is PriorityLevel.CRITICAL
            or classification is Classification.SECURITY,
            "triaged_at": NOW,
        }
        fields.update(overrides)
        return TriagedItem(**fields)

    return factory


@pytest.fixture
def context() -> ProjectContext:
    """A fully populated project context."""
    return ProjectContext(
        workspace_id="platform",
        current_sprint_goals=("billing migration",),
        critical_paths=("payments", "auth"),
        on_call_engineer="oncall-olga",
        team_focus_areas={
            "bob": frozenset({"frontend", "docs"}),
            "carol": frozenset({"payments", "bug"}),
        },
        user_preferences=UserPreferences(
            mute_low_priority=False, watched_labels=frozenset({"keep-alive"})
        ),
    )
