"""Tests for CLI option consistency across all commands."""

from typer.testing import CliRunner

from gh_triage.cli.main import app

COMMANDS = [
    "run",
    "serve",
    "feedback",
    "suggestions",
    "history",
    "deliver",
    "mark-message",
    "version",
]


class TestOptionConsistency:
    """Test that CLI options are consistent across commands."""

    def setup_method(self):
        """Set up test runner."""
        self.runner = CliRunner(env={"NO_COLOR": "1", "TERM": "dumb"})

    def test_help_shorthand_works_on_all_commands(self):
        """Test that -h works for --help on all commands."""
        for cmd in [["-h"], *[[name, "-h"] for name in COMMANDS]]:
            result = self.runner.invoke(app, cmd)
            assert result.exit_code == 0, (
                f"Command {' '.join(cmd)} failed: {result.stdout}"
            )
            assert "Usage:" in result.stdout, (
                f"No help text in {' '.join(cmd)}: {result.stdout}"
            )

    def test_workspace_shorthand_consistency(self):
        """Test that -w works for --workspace on commands that support it."""
        for name in ["run", "suggestions", "history", "deliver"]:
            result = self.runner.invoke(app, [name, "--help"])
            assert result.exit_code == 0, f"Command {name} failed"
            assert "--workspace" in result.stdout, f"No --workspace option in {name}"
            assert "-w" in result.stdout, f"No -w shorthand in {name}"

    def test_user_shorthand_consistency(self):
        """Test that -u works for --user on commands that support it."""
        for name in ["run", "feedback"]:
            result = self.runner.invoke(app, [name, "--help"])
            assert result.exit_code == 0, f"Command {name} failed"
            assert "--user" in result.stdout, f"No --user option in {name}"
            assert "-u" in result.stdout, f"No -u shorthand in {name}"

    def test_data_dir_option_everywhere(self):
        """Test that every command touching storage accepts --data-dir."""
        for name in [
            "run", "serve", "feedback", "suggestions", "history", "deliver", "mark-message"
        ]:
            result = self.runner.invoke(app, [name, "--help"])
            assert "--data-dir" in result.stdout, f"No --data-dir option in {name}"
