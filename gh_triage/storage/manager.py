"""JSON file storage for run archives, feedback and delivery state."""

import json
import logging
import threading
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ..models import (
    DailyTriageBrief,
    HistoricalDecision,
    RunRecord,
    TriagedItem,
    TriageFeedback,
)

logger = logging.getLogger(__name__)


class RunArchive(BaseModel):
    """Everything a run computed, stored together for history lookups."""

    run: RunRecord
    triaged_items: list[TriagedItem] = Field(default_factory=list)
    brief: DailyTriageBrief | None = None


class DeliveryRecord(BaseModel):
    """Ledger entry for the brief delivered to a workspace on one day."""

    workspace_id: str
    date: date
    brief_id: str | None = None
    thread_id: str | None = None
    channel_id: str | None = None
    item_ids: list[str] = Field(default_factory=list)
    alerted_item_ids: list[str] = Field(default_factory=list)
    delivered_at: datetime | None = None


class MessageRecord(BaseModel):
    """A posted message, kept so its state can be updated later."""

    message_id: str
    channel_id: str
    ts: str
    text: str
    blocks: list[dict[str, Any]] = Field(default_factory=list)
    state: str | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


def _safe_name(value: str) -> str:
    return "".join(c if c.isalnum() or c in "-." else "_" for c in value)


class TriageStore:
    """Manages triage history as JSON files under a base directory."""

    def __init__(self, base_path: str | Path = "data"):
        """Initialize storage.

        Args:
            base_path: Base directory; subdirectories are created on demand
        """
        self.base_path = Path(base_path)
        self.runs_dir = self.base_path / "runs"
        self.feedback_file = self.base_path / "feedback" / "feedback.jsonl"
        self.deliveries_dir = self.base_path / "deliveries"
        self.messages_dir = self.base_path / "messages"
        self.workspaces_dir = self.base_path / "workspaces"
        for directory in (
            self.runs_dir,
            self.feedback_file.parent,
            self.deliveries_dir,
            self.messages_dir,
            self.workspaces_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _write_model(self, path: Path, model: BaseModel) -> Path:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(
                model.model_dump(mode="json"),
                f,
                indent=2,
                ensure_ascii=False,
            )
        return path

    def _run_file(self, workspace_id: str, run_id: str) -> Path:
        return self.runs_dir / f"{_safe_name(workspace_id)}_{_safe_name(run_id)}.json"

    def save_run_archive(
        self,
        run: RunRecord,
        triaged_items: list[TriagedItem] | None = None,
        brief: DailyTriageBrief | None = None,
    ) -> Path:
        """Persist a run with whatever it computed.

        Returns:
            Path to the saved archive
        """
        archive = RunArchive(run=run, triaged_items=triaged_items or [], brief=brief)
        path = self._write_model(self._run_file(run.workspace_id, run.run_id), archive)
        logger.debug("Saved run archive %s", path)
        return path

    def load_run_archive(self, workspace_id: str, run_id: str) -> RunArchive | None:
        """Load one run archive, or None if it does not exist."""
        path = self._run_file(workspace_id, run_id)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return RunArchive.model_validate(json.load(f))

    def list_run_archives(
        self, workspace_id: str | None = None, limit: int | None = None
    ) -> list[RunArchive]:
        """Load run archives, most recent first."""
        pattern = f"{_safe_name(workspace_id)}_*.json" if workspace_id else "*.json"
        archives = []
        for path in self.runs_dir.glob(pattern):
            try:
                with open(path, encoding="utf-8") as f:
                    archive = RunArchive.model_validate(json.load(f))
            except (OSError, ValueError, ValidationError) as e:
                logger.warning("Skipping unreadable run archive %s: %s", path, e)
                continue
            if workspace_id and archive.run.workspace_id != workspace_id:
                continue
            archives.append(archive)

        archives.sort(key=lambda a: a.run.started_at, reverse=True)
        return archives[:limit] if limit is not None else archives

    def load_recent_decisions(
        self, limit: int, workspace_id: str | None = None
    ) -> list[HistoricalDecision]:
        """Flatten archived triage decisions, most recent first."""
        if limit <= 0:
            return []
        decisions = []
        for archive in self.list_run_archives(workspace_id):
            for triaged in archive.triaged_items:
                decisions.append(
                    HistoricalDecision(
                        item_id=triaged.item_id,
                        run_id=archive.run.run_id,
                        title=triaged.original_item.title,
                        labels=sorted(triaged.original_item.labels),
                        classification=triaged.classification,
                        priority=triaged.priority,
                        reasoning=triaged.reasoning,
                        decided_at=triaged.triaged_at,
                    )
                )
        decisions.sort(key=lambda d: d.decided_at, reverse=True)
        return decisions[:limit]

    def append_feedback(self, feedback: TriageFeedback) -> None:
        """Append one feedback event; existing lines are never rewritten."""
        line = feedback.model_dump_json()
        with self._lock:
            with open(self.feedback_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def load_feedback(self) -> list[TriageFeedback]:
        """Load every recorded feedback event in recording order."""
        if not self.feedback_file.exists():
            return []
        events = []
        with open(self.feedback_file, encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    events.append(TriageFeedback.model_validate_json(line))
                except ValidationError as e:
                    logger.warning(
                        "Skipping malformed feedback line %d: %s", line_number, e
                    )
        return events

    def workspace_file(self, workspace_id: str) -> Path:
        """Path of a workspace config file."""
        return self.workspaces_dir / f"{_safe_name(workspace_id)}.json"

    def _delivery_file(self, workspace_id: str, day: date) -> Path:
        return self.deliveries_dir / f"{_safe_name(workspace_id)}_{day.isoformat()}.json"

    def get_delivery(self, workspace_id: str, day: date) -> DeliveryRecord | None:
        """Get the delivery ledger entry for a workspace and day."""
        path = self._delivery_file(workspace_id, day)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return DeliveryRecord.model_validate(json.load(f))

    def save_delivery(self, record: DeliveryRecord) -> Path:
        """Save or replace the delivery ledger entry."""
        return self._write_model(
            self._delivery_file(record.workspace_id, record.date), record
        )

    def save_message(self, record: MessageRecord) -> Path:
        """Save a posted message record."""
        return self._write_model(
            self.messages_dir / f"{_safe_name(record.message_id)}.json", record
        )

    def load_message(self, message_id: str) -> MessageRecord | None:
        """Load a posted message record."""
        path = self.messages_dir / f"{_safe_name(message_id)}.json"
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return MessageRecord.model_validate(json.load(f))
