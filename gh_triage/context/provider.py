"""Context stage: team knowledge and historical decisions per workspace."""

import json
import logging

from pydantic import BaseModel, Field, ValidationError

from ..errors import ContextError
from ..models import HistoricalDecision, ProjectContext, UserPreferences
from ..storage.manager import TriageStore

logger = logging.getLogger(__name__)

# Fields reported as missing when a workspace file leaves them out
CONTEXT_FIELDS = (
    "current_sprint_goals",
    "critical_paths",
    "on_call_engineer",
    "team_focus_areas",
    "user_preferences",
)


class WorkspacePreferences(BaseModel):
    """Preference block of a workspace file."""

    mute_low_priority: bool = False
    watched_labels: list[str] = Field(default_factory=list)


class WorkspaceConfig(BaseModel):
    """Contents of ``workspaces/<workspace_id>.json``.

    Every knowledge field is optional; absent ones fall back to defaults.
    """

    current_sprint_goals: list[str] | None = None
    critical_paths: list[str] | None = None
    on_call_engineer: str | None = None
    team_focus_areas: dict[str, list[str]] | None = None
    user_preferences: WorkspacePreferences | None = None

    # Delivery and scheduling settings
    members: list[str] = Field(default_factory=list)
    channel_id: str | None = None
    repositories: list[str] = Field(default_factory=list)
    cron: str | None = None


class WorkspaceContextProvider:
    """Builds immutable ProjectContext snapshots from workspace files."""

    def __init__(self, store: TriageStore):
        self.store = store

    def load_workspace_config(self, workspace_id: str) -> WorkspaceConfig | None:
        """Read a workspace file.

        Returns:
            The parsed config, or None if the workspace has no file

        Raises:
            ContextError: If the file exists but cannot be parsed
        """
        path = self.store.workspace_file(workspace_id)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return WorkspaceConfig.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            raise ContextError(f"Workspace config {path} is unreadable: {e}") from e

    def list_workspaces(self) -> list[str]:
        """Ids of every configured workspace."""
        return sorted(p.stem for p in self.store.workspaces_dir.glob("*.json"))

    def is_member(self, workspace_id: str, user_id: str) -> bool:
        """Check whether a user belongs to the workspace."""
        config = self.load_workspace_config(workspace_id)
        return config is not None and user_id in config.members

    def get_project_context(self, workspace_id: str) -> ProjectContext:
        """Return a fully populated snapshot; unknown fields are empty, not None."""
        try:
            config = self.load_workspace_config(workspace_id)
        except ContextError as e:
            logger.warning("Using default context for %s: %s", workspace_id, e)
            config = None

        if config is None:
            logger.warning("No workspace config for %s, using defaults", workspace_id)
            return ProjectContext(workspace_id=workspace_id, missing_fields=CONTEXT_FIELDS)

        missing = tuple(
            name
            for name in CONTEXT_FIELDS
            if getattr(config, name) in (None, "")
        )
        preferences = config.user_preferences or WorkspacePreferences()
        return ProjectContext(
            workspace_id=workspace_id,
            current_sprint_goals=tuple(config.current_sprint_goals or ()),
            critical_paths=tuple(config.critical_paths or ()),
            on_call_engineer=config.on_call_engineer or "",
            team_focus_areas={
                user: frozenset(tag.lower() for tag in tags)
                for user, tags in (config.team_focus_areas or {}).items()
            },
            user_preferences=UserPreferences(
                mute_low_priority=preferences.mute_low_priority,
                watched_labels=frozenset(preferences.watched_labels),
            ),
            missing_fields=missing,
        )

    def get_review_history(
        self, limit: int, workspace_id: str | None = None
    ) -> list[HistoricalDecision]:
        """Previous decisions, most recent first, bounded by ``limit``."""
        return self.store.load_recent_decisions(limit, workspace_id)
