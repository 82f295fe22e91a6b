"""Pydantic data contracts shared by every triage stage.

These models are decoupled from the GitHub and Slack APIs: provider adapters map
their native objects onto them, and downstream stages only ever see these shapes.
All contracts are frozen; a later decision produces a new record instead of
editing an old one.
"""

import uuid
from collections.abc import Mapping
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Namespace for deriving stable internal ids from provider ids
ITEM_ID_NAMESPACE = uuid.UUID("6f1c2b8e-4a7d-5e39-9b0c-3d8f2a61c7e4")


class ItemType(str, Enum):
    """Kind of unit of work."""

    ISSUE = "ISSUE"
    PR = "PR"


class MergeStatus(str, Enum):
    """Pull request merge state."""

    MERGED = "MERGED"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    CONFLICT = "CONFLICT"


class ReviewStatus(str, Enum):
    """Aggregate pull request review state."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"


class CIStatus(str, Enum):
    """Combined commit status of the pull request head."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    PENDING = "PENDING"
    UNKNOWN = "UNKNOWN"


class Classification(str, Enum):
    """Category assigned to a triaged item."""

    BUG_CRITICAL = "BUG_CRITICAL"
    BUG_MINOR = "BUG_MINOR"
    FEATURE = "FEATURE"
    TECH_DEBT = "TECH_DEBT"
    DOCUMENTATION = "DOCUMENTATION"
    SECURITY = "SECURITY"
    UNCATEGORIZED = "UNCATEGORIZED"


class PriorityLevel(str, Enum):
    """Urgency ranking, ordered from most to least urgent."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Numeric rank where 0 is the most urgent."""
        return PRIORITY_ORDER.index(self)

    def shifted(self, steps: int) -> "PriorityLevel":
        """Return the priority moved by ``steps`` levels, clamped to the scale.

        Positive steps escalate (towards CRITICAL), negative steps de-escalate.
        """
        index = min(max(self.rank - steps, 0), len(PRIORITY_ORDER) - 1)
        return PRIORITY_ORDER[index]


PRIORITY_ORDER = (
    PriorityLevel.CRITICAL,
    PriorityLevel.HIGH,
    PriorityLevel.MEDIUM,
    PriorityLevel.LOW,
)


class FeedbackAction(str, Enum):
    """Closed set of interactions recorded against a delivered brief."""

    CLICKED_LINK = "CLICKED_LINK"
    REPLIED_THREAD = "REPLIED_THREAD"
    DISMISSED = "DISMISSED"


class RunState(str, Enum):
    """Lifecycle states of one pipeline run."""

    IDLE = "Idle"
    FETCHING = "Fetching"
    ANALYZING = "Analyzing"
    SYNTHESIZING = "Synthesizing"
    DELIVERING = "Delivering"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED)


class RunMode(str, Enum):
    """What a run delivers."""

    BRIEF = "brief"
    ALERTS = "alerts"


class TriggerSource(str, Enum):
    """Origin of a run request."""

    SCHEDULED = "scheduled"
    AD_HOC = "ad_hoc"


def make_item_id(provider: str, external_id: str) -> str:
    """Derive the stable internal id for a provider item."""
    return uuid.uuid5(ITEM_ID_NAMESPACE, f"{provider}:{external_id}").hex


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class GitHubItem(BaseModel):
    """Normalized issue or pull request.

    ``external_id`` plus ``provider`` is globally unique; ``id`` is derived from
    them so it stays stable across runs.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default="", description="Stable internal identifier")
    external_id: str = Field(..., description="Identifier assigned by the provider")
    provider: str = Field("github", description="Source-control provider name")
    type: ItemType
    title: str
    description: str = ""
    url: str
    author: str
    author_is_bot: bool = False
    assignees: frozenset[str] = Field(default_factory=frozenset)
    labels: frozenset[str] = Field(default_factory=frozenset)
    created_at: datetime
    updated_at: datetime
    repository: str | None = Field(None, description="owner/name of the repository")
    number: int | None = Field(None, description="Issue or PR number in its repository")
    state: str = Field("open", description="Provider state: 'open' or 'closed'")
    closed_at: datetime | None = None

    # Pull request only
    is_draft: bool | None = None
    merge_status: MergeStatus | None = None
    review_status: ReviewStatus | None = None
    ci_status: CIStatus | None = None
    last_reviewed_at: datetime | None = None
    last_pushed_at: datetime | None = Field(
        None, description="Commit time of the head commit"
    )

    @field_validator(
        "created_at", "updated_at", "closed_at", "last_reviewed_at", "last_pushed_at"
    )
    @classmethod
    def normalize_timestamps(cls, v: datetime | None) -> datetime | None:
        """Store every timestamp as timezone-aware UTC."""
        return _as_utc(v) if v is not None else None

    @model_validator(mode="before")
    @classmethod
    def fill_derived_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("id") and data.get("external_id") is not None:
            data["id"] = make_item_id(
                data.get("provider") or "github", str(data["external_id"])
            )
        if data.get("type") in (ItemType.PR, ItemType.PR.value):
            data["is_draft"] = bool(data.get("is_draft"))
            data["merge_status"] = data.get("merge_status") or MergeStatus.OPEN
            data["review_status"] = data.get("review_status") or ReviewStatus.PENDING
            data["ci_status"] = data.get("ci_status") or CIStatus.UNKNOWN
        return data

    @model_validator(mode="after")
    def check_pr_fields(self) -> "GitHubItem":
        if self.type is ItemType.ISSUE and any(
            value is not None
            for value in (
                self.is_draft,
                self.merge_status,
                self.review_status,
                self.ci_status,
            )
        ):
            raise ValueError("Pull request fields are only valid on PR items")
        return self

    @property
    def is_pull_request(self) -> bool:
        return self.type is ItemType.PR

    @property
    def is_open(self) -> bool:
        if self.merge_status in (MergeStatus.MERGED, MergeStatus.CLOSED):
            return False
        return self.state == "open"

    @property
    def reference(self) -> str:
        """Short human reference such as ``org/repo#12``."""
        if self.repository and self.number is not None:
            return f"{self.repository}#{self.number}"
        return self.external_id


class UserPreferences(BaseModel):
    """Delivery preferences for the workspace audience."""

    model_config = ConfigDict(frozen=True)

    mute_low_priority: bool = False
    watched_labels: frozenset[str] = Field(default_factory=frozenset)


class ProjectContext(BaseModel):
    """Immutable snapshot of team state for one run.

    Unknown fields are empty collections, never None. ``missing_fields`` names
    the fields that fell back to defaults.
    """

    model_config = ConfigDict(frozen=True)

    workspace_id: str = "default"
    current_sprint_goals: tuple[str, ...] = ()
    critical_paths: tuple[str, ...] = ()
    on_call_engineer: str = ""
    team_focus_areas: tuple[tuple[str, frozenset[str]], ...] = Field(
        (), description="(user, focus tags) pairs sorted by user"
    )
    user_preferences: UserPreferences = Field(default_factory=UserPreferences)
    missing_fields: tuple[str, ...] = ()

    @field_validator("team_focus_areas", mode="before")
    @classmethod
    def pair_focus_areas(cls, v: Any) -> Any:
        """Accept a user -> tags mapping and store it as sorted pairs."""
        if isinstance(v, Mapping):
            return tuple(sorted((user, frozenset(tags)) for user, tags in v.items()))
        return v

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields


class TriagedItem(BaseModel):
    """Decision record wrapping one GitHubItem.

    Classification and priority are both required, so a record only exists once
    both are known.
    """

    model_config = ConfigDict(frozen=True)

    original_item: GitHubItem
    classification: Classification
    priority: PriorityLevel
    suggested_assignee: str | None = None
    reasoning: str
    requires_pm_attention: bool
    is_stale: bool = False
    is_blocked: bool = False
    triaged_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    revision_of: str | None = Field(
        None, description="Item id of the decision this record recalibrates"
    )

    @field_validator("reasoning")
    @classmethod
    def reasoning_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("reasoning must cite at least one signal")
        return v

    @property
    def item_id(self) -> str:
        return self.original_item.id


class BriefStats(BaseModel):
    """Aggregate counters over the triaged items."""

    model_config = ConfigDict(frozen=True)

    total_open: int = 0
    new_today: int = 0
    closed_today: int = 0


MIN_SUMMARY_BULLETS = 3
MAX_SUMMARY_BULLETS = 5


class DailyTriageBrief(BaseModel):
    """The delivered digest of one triage run."""

    model_config = ConfigDict(frozen=True)

    id: str
    workspace_id: str
    run_id: str
    date: date
    summary: list[str]
    critical_alerts: list[TriagedItem] = Field(default_factory=list)
    blockers: list[TriagedItem] = Field(default_factory=list)
    progress_updates: list[TriagedItem] = Field(default_factory=list)
    stats: BriefStats = Field(default_factory=BriefStats)
    window_start: datetime | None = None
    incomplete: bool = False
    notes: list[str] = Field(default_factory=list)

    @field_validator("summary")
    @classmethod
    def summary_within_bounds(cls, v: list[str]) -> list[str]:
        if len(v) > MAX_SUMMARY_BULLETS:
            raise ValueError(
                f"summary allows at most {MAX_SUMMARY_BULLETS} bullets, got {len(v)}"
            )
        return v

    def sections(self) -> dict[str, list[TriagedItem]]:
        """Non-empty item sections in delivery order."""
        sections = {
            "Critical Alerts": self.critical_alerts,
            "Blockers": self.blockers,
            "Progress": self.progress_updates,
        }
        return {name: items for name, items in sections.items() if items}

    def item_ids(self) -> set[str]:
        """Ids of every item the brief covers."""
        return {
            triaged.item_id
            for section in (self.critical_alerts, self.blockers, self.progress_updates)
            for triaged in section
        }


class TriageFeedback(BaseModel):
    """Append-only interaction event against a delivered brief.

    Any action outside ``FeedbackAction`` fails validation.
    """

    model_config = ConfigDict(frozen=True)

    triage_id: str
    user_id: str
    action: FeedbackAction
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    item_id: str | None = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return _as_utc(v)


class FetchResult(BaseModel):
    """Research output with an explicit completeness marker."""

    items: list[GitHubItem] = Field(default_factory=list)
    incomplete: bool = False
    reason: str | None = None


class HistoricalDecision(BaseModel):
    """Compact view of a past triage decision for few-shot grounding."""

    item_id: str
    run_id: str
    title: str
    labels: list[str] = Field(default_factory=list)
    classification: Classification
    priority: PriorityLevel
    reasoning: str
    decided_at: datetime


class RunRecord(BaseModel):
    """Diagnostic record of one pipeline run."""

    run_id: str
    workspace_id: str
    mode: RunMode = RunMode.BRIEF
    trigger: TriggerSource = TriggerSource.SCHEDULED
    state: RunState = RunState.IDLE
    states_visited: list[RunState] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    error: str | None = None
    incomplete: bool = False
    item_count: int = 0
    triaged_count: int = 0
    skipped_item_ids: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)
    brief_id: str | None = None
    thread_id: str | None = None
