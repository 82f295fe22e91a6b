"""Cron and ad-hoc triggering with one active run per workspace."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from croniter import croniter

from ..context.provider import WorkspaceContextProvider
from ..errors import ContextError, RunInProgressError, WorkspaceAccessError
from ..models import RunMode, RunRecord, TriggerSource
from .run import RunContext
from .runner import TriagePipeline

logger = logging.getLogger(__name__)


def validate_cron(expression: str) -> str:
    """Accept only standard five-field cron expressions.

    Raises:
        ValueError: If the expression is malformed
    """
    expression = " ".join(expression.split())
    if len(expression.split(" ")) != 5 or not croniter.is_valid(expression):
        raise ValueError(
            f"Invalid cron expression '{expression}': expected 5 fields "
            "(minute hour day-of-month month day-of-week)"
        )
    return expression


@dataclass
class Schedule:
    """A workspace's cron cadence and the next time it fires."""

    workspace_id: str
    cron: str
    mode: RunMode
    next_fire: datetime

    def advance(self, after: datetime) -> None:
        self.next_fire = croniter(self.cron, after).get_next(datetime)


@dataclass
class _ActiveRun:
    ctx: RunContext
    task: "asyncio.Task[RunRecord]"


class RunScheduler:
    """Starts pipeline runs and keeps a registry of the ones in flight.

    The registry is checked and updated under a lock before a run leaves
    Idle, so two triggers for the same workspace can never both start one.
    Scheduled triggers that collide with an active run are rejected; ad-hoc
    triggers wait for the active run and return its record.
    """

    def __init__(
        self,
        pipeline: TriagePipeline,
        context_provider: WorkspaceContextProvider,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.pipeline = pipeline
        self.context_provider = context_provider
        self._clock = clock
        self._lock = asyncio.Lock()
        self._active: dict[str, _ActiveRun] = {}
        self._schedules: dict[str, Schedule] = {}
        self._background: set[asyncio.Task] = set()

    @property
    def schedules(self) -> list[Schedule]:
        return sorted(self._schedules.values(), key=lambda s: s.workspace_id)

    def schedule_daily_triage(
        self, workspace_id: str, cron: str, mode: RunMode = RunMode.BRIEF
    ) -> Schedule:
        """Register or replace the cron cadence for a workspace.

        Raises:
            ValueError: If ``cron`` is not a valid five-field expression
        """
        cron = validate_cron(cron)
        schedule = Schedule(workspace_id, cron, mode, next_fire=self._clock())
        schedule.advance(self._clock())
        self._schedules[workspace_id] = schedule
        logger.info(
            "Scheduled %s run for %s at '%s', next %s",
            mode.value,
            workspace_id,
            cron,
            schedule.next_fire.isoformat(),
        )
        return schedule

    def unschedule(self, workspace_id: str) -> bool:
        return self._schedules.pop(workspace_id, None) is not None

    def is_running(self, workspace_id: str) -> bool:
        return workspace_id in self._active

    def cancel(self, workspace_id: str) -> bool:
        """Ask the active run of a workspace to stop before its next stage."""
        active = self._active.get(workspace_id)
        if active is None:
            return False
        logger.info("Cancelling run %s for %s", active.ctx.run_id, workspace_id)
        active.ctx.cancel()
        return True

    async def trigger(
        self,
        workspace_id: str,
        mode: RunMode = RunMode.BRIEF,
        since: datetime | None = None,
    ) -> RunRecord:
        """Start a scheduled run and wait for it.

        Raises:
            RunInProgressError: If the workspace already has a run in flight
        """
        async with self._lock:
            if workspace_id in self._active:
                raise RunInProgressError(workspace_id)
            active = self._start(workspace_id, mode, TriggerSource.SCHEDULED, since)
        return await asyncio.shield(active.task)

    async def trigger_ad_hoc_triage(
        self,
        user_id: str,
        workspace_id: str,
        mode: RunMode = RunMode.BRIEF,
        since: datetime | None = None,
    ) -> RunRecord:
        """Manual override for workspace members.

        If a run is already in flight for the workspace, waits for it and
        returns its record instead of starting another.

        Raises:
            WorkspaceAccessError: If ``user_id`` is not a member of the workspace
        """
        is_member = await asyncio.to_thread(
            self.context_provider.is_member, workspace_id, user_id
        )
        if not is_member:
            raise WorkspaceAccessError(
                f"User {user_id} is not a member of workspace {workspace_id}"
            )

        async with self._lock:
            active = self._active.get(workspace_id)
            if active is not None:
                logger.info(
                    "Ad-hoc trigger by %s joins run %s in progress for %s",
                    user_id,
                    active.ctx.run_id,
                    workspace_id,
                )
            else:
                logger.info("Ad-hoc run for %s requested by %s", workspace_id, user_id)
                active = self._start(workspace_id, mode, TriggerSource.AD_HOC, since)
        return await asyncio.shield(active.task)

    def _start(
        self,
        workspace_id: str,
        mode: RunMode,
        trigger: TriggerSource,
        since: datetime | None,
    ) -> _ActiveRun:
        ctx = RunContext(workspace_id=workspace_id)
        repo_ids, channel_id = self._targets(workspace_id)
        task = asyncio.create_task(
            self.pipeline.run(
                workspace_id,
                mode=mode,
                trigger=trigger,
                ctx=ctx,
                repo_ids=repo_ids,
                channel_id=channel_id,
                since=since,
            ),
            name=f"triage-{workspace_id}-{ctx.run_id}",
        )
        active = _ActiveRun(ctx, task)
        self._active[workspace_id] = active

        def release(_: asyncio.Task) -> None:
            if self._active.get(workspace_id) is active:
                del self._active[workspace_id]

        task.add_done_callback(release)
        return active

    def _targets(self, workspace_id: str) -> tuple[list[str], str | None]:
        try:
            config = self.context_provider.load_workspace_config(workspace_id)
        except ContextError as e:
            logger.warning("Using default targets for %s: %s", workspace_id, e)
            config = None
        if config is None:
            return [], None
        return list(config.repositories), config.channel_id

    async def _fire(self, schedule: Schedule) -> None:
        try:
            record = await self.trigger(schedule.workspace_id, schedule.mode)
        except RunInProgressError as e:
            logger.warning("Skipping scheduled run: %s", e)
            return
        logger.info(
            "Scheduled run %s for %s ended %s",
            record.run_id,
            schedule.workspace_id,
            record.state.value,
        )

    def run_pending(self) -> list[asyncio.Task]:
        """Fire every schedule that is due and advance it to its next slot."""
        now = self._clock()
        fired = []
        for schedule in self.schedules:
            if schedule.next_fire > now:
                continue
            schedule.advance(now)
            task = asyncio.create_task(self._fire(schedule))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            fired.append(task)
        return fired

    def load_workspace_schedules(self, default_cron: str | None = None) -> int:
        """Register schedules from workspace files.

        Workspaces without a cron of their own use ``default_cron``; invalid
        expressions are logged and skipped.
        """
        count = 0
        for workspace_id in self.context_provider.list_workspaces():
            try:
                config = self.context_provider.load_workspace_config(workspace_id)
            except ContextError as e:
                logger.warning("Not scheduling %s: %s", workspace_id, e)
                continue
            cron = (config.cron if config else None) or default_cron
            if not cron:
                continue
            try:
                self.schedule_daily_triage(workspace_id, cron)
            except ValueError as e:
                logger.warning("Not scheduling %s: %s", workspace_id, e)
                continue
            count += 1
        return count

    async def serve(
        self, stop: asyncio.Event | None = None, poll_seconds: float = 30.0
    ) -> None:
        """Fire due schedules until ``stop`` is set, then wait for runs in flight."""
        stop = stop or asyncio.Event()
        logger.info("Scheduler started with %d schedule(s)", len(self._schedules))
        while not stop.is_set():
            self.run_pending()
            try:
                await asyncio.wait_for(stop.wait(), timeout=poll_seconds)
            except asyncio.TimeoutError:
                pass
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        logger.info("Scheduler stopped")
