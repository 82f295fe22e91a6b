"""Main CLI entry point."""

import asyncio
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from ..config import TriageSettings
from ..context.provider import WorkspaceContextProvider
from ..errors import DeliveryError, RunInProgressError, WorkspaceAccessError
from ..feedback.recorder import FeedbackRecorder
from ..models import RunMode, RunRecord, RunState
from ..pipeline.runner import build_pipeline
from ..pipeline.scheduler import RunScheduler
from ..slack.client import MessageState, SlackDeliveryChannel
from ..slack.config import SlackConfig
from ..storage.manager import TriageStore
from ..utils.date_parser import resolve_window_start
from ..utils.logging import configure_logging
from .options import (
    CHANNEL_OPTION,
    DATA_DIR_OPTION,
    LAST_DAYS_OPTION,
    LAST_HOURS_OPTION,
    LIMIT_OPTION,
    LOG_FILE_OPTION,
    MODE_OPTION,
    SINCE_OPTION,
    TOKEN_OPTION,
    USER_OPTION,
    USER_OPTION_OPTIONAL,
    VERBOSE_OPTION,
    WORKSPACE_OPTION,
    WORKSPACE_OPTION_OPTIONAL,
)

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="gh-triage",
    help="Daily GitHub triage briefs delivered to Slack",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()


def _settings(data_dir: str | None, token: str | None = None) -> TriageSettings:
    settings = TriageSettings()
    if data_dir:
        settings.data_dir = Path(data_dir)
    if token:
        settings.github_token = token
    return settings


def _parse_mode(mode: str) -> RunMode:
    try:
        return RunMode(mode.lower())
    except ValueError:
        console.print(f"❌ Error: Unknown mode '{mode}' (expected brief or alerts)")
        raise typer.Exit(1)


def _print_run(record: RunRecord) -> None:
    table = Table(title=f"Triage Run {record.run_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Workspace", record.workspace_id)
    table.add_row("Mode", record.mode.value)
    table.add_row("Trigger", record.trigger.value)
    table.add_row("State", record.state.value)
    table.add_row("Path", " -> ".join(s.value for s in record.states_visited))
    table.add_row("Items", str(record.item_count))
    table.add_row("Triaged", str(record.triaged_count))
    table.add_row("Incomplete", "yes" if record.incomplete else "no")
    if record.thread_id:
        table.add_row("Thread", record.thread_id)
    if record.error:
        table.add_row("Error", record.error)
    for note in record.notes:
        table.add_row("Note", note)
    console.print(table)


@app.command(context_settings={"help_option_names": ["-h", "--help"]})
def run(
    workspace: str = WORKSPACE_OPTION,
    user: str | None = USER_OPTION_OPTIONAL,
    mode: str = MODE_OPTION,
    since: str | None = SINCE_OPTION,
    last_hours: int | None = LAST_HOURS_OPTION,
    last_days: int | None = LAST_DAYS_OPTION,
    token: str | None = TOKEN_OPTION,
    data_dir: str | None = DATA_DIR_OPTION,
    verbose: bool = VERBOSE_OPTION,
    log_file: Path | None = LOG_FILE_OPTION,
) -> None:
    """Run the triage pipeline once for a workspace.

    Examples:
        gh-triage run --workspace platform
        gh-triage run -w platform --user alice --last-days 3
        gh-triage run -w platform --mode alerts
    """
    configure_logging(verbose, log_file)
    run_mode = _parse_mode(mode)
    try:
        window_start = resolve_window_start(since, last_hours, last_days)
    except ValueError as e:
        console.print(f"❌ Error: {e}")
        raise typer.Exit(1)

    try:
        pipeline, provider = build_pipeline(_settings(data_dir, token), SlackConfig())
    except ValueError as e:
        console.print(f"❌ Configuration error: {e}")
        raise typer.Exit(1)

    scheduler = RunScheduler(pipeline, provider)
    console.print(f"🔎 Triaging workspace {workspace} ({run_mode.value})...")
    try:
        if user:
            record = asyncio.run(
                scheduler.trigger_ad_hoc_triage(
                    user, workspace, mode=run_mode, since=window_start
                )
            )
        else:
            record = asyncio.run(
                scheduler.trigger(workspace, mode=run_mode, since=window_start)
            )
    except (WorkspaceAccessError, RunInProgressError) as e:
        console.print(f"❌ Error: {e}")
        raise typer.Exit(1)

    _print_run(record)
    if record.state is not RunState.COMPLETED:
        console.print("❌ Run did not complete; no brief was posted")
        raise typer.Exit(1)
    console.print("✅ Run completed")


@app.command(context_settings={"help_option_names": ["-h", "--help"]})
def serve(
    default_cron: str | None = typer.Option(
        None,
        "--default-cron",
        help="Cron for workspaces without their own, e.g. '0 9 * * 1-5'",
    ),
    poll_seconds: float = typer.Option(
        30.0, "--poll-seconds", help="How often to check for due schedules"
    ),
    token: str | None = TOKEN_OPTION,
    data_dir: str | None = DATA_DIR_OPTION,
    verbose: bool = VERBOSE_OPTION,
    log_file: Path | None = LOG_FILE_OPTION,
) -> None:
    """Run scheduled triage for every configured workspace until interrupted."""
    configure_logging(verbose, log_file)
    try:
        pipeline, provider = build_pipeline(_settings(data_dir, token), SlackConfig())
    except ValueError as e:
        console.print(f"❌ Configuration error: {e}")
        raise typer.Exit(1)

    scheduler = RunScheduler(pipeline, provider)
    count = scheduler.load_workspace_schedules(default_cron)
    if count == 0:
        console.print("❌ No workspace has a valid cron schedule")
        raise typer.Exit(1)

    table = Table(title="Schedules")
    table.add_column("Workspace", style="cyan")
    table.add_column("Cron", style="green")
    table.add_column("Next Run", style="yellow")
    for schedule in scheduler.schedules:
        table.add_row(
            schedule.workspace_id, schedule.cron, schedule.next_fire.isoformat()
        )
    console.print(table)

    try:
        asyncio.run(scheduler.serve(poll_seconds=poll_seconds))
    except KeyboardInterrupt:
        console.print("👋 Scheduler stopped")


@app.command(context_settings={"help_option_names": ["-h", "--help"]})
def feedback(
    action: str = typer.Argument(
        ..., help="CLICKED_LINK, REPLIED_THREAD or DISMISSED"
    ),
    user: str = USER_OPTION,
    run_id: str = typer.Option(..., "--run", help="Run id the feedback refers to"),
    item_id: str | None = typer.Option(
        None, "--item", help="Item id the feedback refers to"
    ),
    data_dir: str | None = DATA_DIR_OPTION,
) -> None:
    """Record a user interaction with a delivered brief."""
    settings = _settings(data_dir)
    recorder = FeedbackRecorder(TriageStore(settings.data_dir))
    if not recorder.handle_user_interaction(
        user, action.upper(), item_id=item_id, triage_id=run_id
    ):
        console.print(f"❌ Rejected interaction '{action}'")
        raise typer.Exit(1)
    console.print(f"✅ Recorded {action.upper()} from {user}")


@app.command(context_settings={"help_option_names": ["-h", "--help"]})
def suggestions(
    workspace: str | None = WORKSPACE_OPTION_OPTIONAL,
    window: int | None = typer.Option(
        None, "--window", help="Number of recent runs to analyze"
    ),
    data_dir: str | None = DATA_DIR_OPTION,
) -> None:
    """Show optimization suggestions mined from recorded feedback."""
    settings = _settings(data_dir)
    recorder = FeedbackRecorder(
        TriageStore(settings.data_dir),
        window_runs=window or settings.feedback_window_runs,
    )
    lines = recorder.generate_optimization_suggestions(workspace)
    if not lines:
        console.print("No feedback patterns found")
        return
    for line in lines:
        console.print(f"💡 {line}")


@app.command(context_settings={"help_option_names": ["-h", "--help"]})
def history(
    workspace: str | None = WORKSPACE_OPTION_OPTIONAL,
    limit: int = LIMIT_OPTION,
    data_dir: str | None = DATA_DIR_OPTION,
) -> None:
    """Show recent triage decisions, most recent first."""
    settings = _settings(data_dir)
    provider = WorkspaceContextProvider(TriageStore(settings.data_dir))
    decisions = provider.get_review_history(limit, workspace)
    if not decisions:
        console.print("No triage history found")
        return

    table = Table(title="Recent Triage Decisions")
    table.add_column("Decided", style="cyan")
    table.add_column("Title")
    table.add_column("Classification", style="magenta")
    table.add_column("Priority", style="yellow")
    table.add_column("Run", style="dim")
    for decision in decisions:
        table.add_row(
            decision.decided_at.strftime("%Y-%m-%d %H:%M"),
            decision.title,
            decision.classification.value,
            decision.priority.value,
            decision.run_id,
        )
    console.print(table)


@app.command(context_settings={"help_option_names": ["-h", "--help"]})
def deliver(
    run_id: str = typer.Argument(..., help="Run whose archived brief to post"),
    workspace: str = WORKSPACE_OPTION,
    channel: str | None = CHANNEL_OPTION,
    data_dir: str | None = DATA_DIR_OPTION,
) -> None:
    """Post the brief of a past run again.

    A brief that already reached Slack is not posted twice.

    Examples:
        gh-triage deliver run-20240501-0900-ab12cd -w platform
    """
    settings = _settings(data_dir)
    store = TriageStore(settings.data_dir)
    archive = store.load_run_archive(workspace, run_id)
    if archive is None:
        console.print(f"❌ Error: No run {run_id} in workspace {workspace}")
        raise typer.Exit(1)
    if archive.brief is None:
        console.print(f"❌ Error: Run {run_id} ended before a brief was computed")
        raise typer.Exit(1)

    slack_config = SlackConfig()
    delivery = SlackDeliveryChannel(
        store, slack_config, max_attempts=settings.delivery_max_attempts
    )
    try:
        thread_id = delivery.post_daily_brief(
            archive.brief, channel or slack_config.channel
        )
    except (DeliveryError, ValueError) as e:
        console.print(f"❌ Error: {e}")
        raise typer.Exit(1)
    console.print(f"✅ Brief {archive.brief.id} delivered as {thread_id}")


@app.command(
    name="mark-message", context_settings={"help_option_names": ["-h", "--help"]}
)
def mark_message(
    message_id: str = typer.Argument(..., help="Thread id returned by a delivery"),
    state: str = typer.Argument(
        ..., help="acknowledged, resolved, snoozed or superseded"
    ),
    data_dir: str | None = DATA_DIR_OPTION,
) -> None:
    """Update the state shown on a previously posted message."""
    try:
        message_state = MessageState(state.lower())
    except ValueError:
        console.print(f"❌ Error: Unknown state '{state}'")
        raise typer.Exit(1)

    settings = _settings(data_dir)
    channel = SlackDeliveryChannel(
        TriageStore(settings.data_dir),
        SlackConfig(),
        max_attempts=settings.delivery_max_attempts,
    )
    try:
        channel.update_message_state(message_id, message_state)
    except ValueError as e:
        console.print(f"❌ Error: {e}")
        raise typer.Exit(1)
    console.print(f"✅ Message {message_id} marked {message_state.value}")


@app.command(context_settings={"help_option_names": ["-h", "--help"]})
def version() -> None:
    """Show version information."""
    from gh_triage import __version__

    console.print(f"GitHub Triage v{__version__}")


if __name__ == "__main__":
    app()
