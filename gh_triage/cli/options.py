"""Shared CLI option definitions so shorthands stay consistent across commands."""

import typer

WORKSPACE_OPTION = typer.Option(
    "default", "--workspace", "-w", help="Workspace id (file under data/workspaces)"
)

WORKSPACE_OPTION_OPTIONAL = typer.Option(
    None, "--workspace", "-w", help="Limit to one workspace"
)

USER_OPTION = typer.Option(..., "--user", "-u", help="User id of the person acting")

USER_OPTION_OPTIONAL = typer.Option(
    None,
    "--user",
    "-u",
    help="Run as an ad-hoc trigger for this workspace member",
)

MODE_OPTION = typer.Option(
    "brief", "--mode", help="What to deliver: brief or alerts"
)

# Window options
SINCE_OPTION = typer.Option(
    None, "--since", help="Window start date (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SSZ)"
)

LAST_HOURS_OPTION = typer.Option(
    None, "--last-hours", help="Window of the last N hours"
)

LAST_DAYS_OPTION = typer.Option(None, "--last-days", help="Window of the last N days")

# Authentication options
TOKEN_OPTION = typer.Option(
    None, "--token", "-t", help="GitHub API token (defaults to GITHUB_TOKEN env var)"
)

# Configuration options
DATA_DIR_OPTION = typer.Option(
    None, "--data-dir", help="Data directory path (defaults to TRIAGE_DATA_DIR or ./data)"
)

LIMIT_OPTION = typer.Option(20, "--limit", help="Maximum number of rows to show")

VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging")

LOG_FILE_OPTION = typer.Option(None, "--log-file", help="Also write logs to this file")

CHANNEL_OPTION = typer.Option(
    None, "--channel", "-c", help="Slack channel (defaults to SLACK_CHANNEL)"
)
