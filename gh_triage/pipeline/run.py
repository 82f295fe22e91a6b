"""Run state machine and the per-run context handed to every stage."""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ..errors import InvalidTransitionError, RunCancelledError
from ..models import RunMode, RunRecord, RunState, TriggerSource

# Failed is reachable from every non-terminal state
TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.FETCHING, RunState.FAILED}),
    RunState.FETCHING: frozenset({RunState.ANALYZING, RunState.FAILED}),
    RunState.ANALYZING: frozenset({RunState.SYNTHESIZING, RunState.FAILED}),
    RunState.SYNTHESIZING: frozenset({RunState.DELIVERING, RunState.FAILED}),
    RunState.DELIVERING: frozenset({RunState.COMPLETED, RunState.FAILED}),
    RunState.COMPLETED: frozenset(),
    RunState.FAILED: frozenset(),
}


def new_run_id(now: datetime | None = None) -> str:
    """Sortable, unique run id such as ``20240501T090000-1a2b3c4d``."""
    now = now or datetime.now(UTC)
    return f"{now:%Y%m%dT%H%M%S}-{uuid.uuid4().hex[:8]}"


class RunLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every message with the workspace and run it belongs to."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs.setdefault("extra", {}).update(self.extra)
        return f"[{self.extra['workspace_id']}/{self.extra['run_id']}] {msg}", kwargs


@dataclass
class RunContext:
    """Explicit per-run state passed into each stage call."""

    workspace_id: str
    run_id: str = field(default_factory=new_run_id)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    logger: logging.LoggerAdapter | None = None

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = RunLoggerAdapter(
                logging.getLogger("gh_triage.pipeline"),
                {"run_id": self.run_id, "workspace_id": self.workspace_id},
            )

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self, next_state: RunState) -> None:
        """Raise RunCancelledError if the run was cancelled before ``next_state``."""
        if self.cancelled:
            raise RunCancelledError(f"Run cancelled before entering {next_state.value}")


class PipelineRun:
    """Tracks one run through its states and keeps its diagnostic record."""

    def __init__(
        self,
        ctx: RunContext,
        mode: RunMode = RunMode.BRIEF,
        trigger: TriggerSource = TriggerSource.SCHEDULED,
    ):
        self.ctx = ctx
        self.record = RunRecord(
            run_id=ctx.run_id,
            workspace_id=ctx.workspace_id,
            mode=mode,
            trigger=trigger,
            states_visited=[RunState.IDLE],
        )

    @property
    def state(self) -> RunState:
        return self.record.state

    def transition(self, target: RunState) -> None:
        """Move to ``target``.

        Raises:
            InvalidTransitionError: If the transition table does not allow it
        """
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Cannot move run {self.ctx.run_id} from {self.state.value} "
                f"to {target.value}"
            )
        self.ctx.logger.info("%s -> %s", self.state.value, target.value)
        self.record.state = target
        self.record.states_visited.append(target)
        if target.is_terminal:
            self.record.finished_at = datetime.now(UTC)

    def fail(self, error: BaseException | str) -> None:
        """Move to Failed, keeping whatever the record already holds."""
        self.record.error = str(error)
        if not self.state.is_terminal:
            self.transition(RunState.FAILED)
