"""
Tests for the cost control CLI commands.
"""
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from costcontrol.cli import cost_control

from helpers import PROJECT_ID


@pytest.fixture
def run(session_factory, session):
    """Invoke a cost-control command against the in-memory database."""
    runner = CliRunner()

    def _run(*args, **kwargs):
        db = session_factory()
        with patch("costcontrol.cli.cost_control_commands.get_db", lambda: iter([db])):
            return runner.invoke(cost_control, list(args), **kwargs)
    return _run


class TestSyncCommand:

    def test_sync(self, run, basic_estimate):
        result = run("sync", PROJECT_ID)
        assert result.exit_code == 0
        assert "Sync complete" in result.output
        assert "Created:      4" in result.output

    def test_sync_without_recalculation(self, run, basic_estimate):
        result = run("sync", PROJECT_ID, "--no-recalculate")
        assert result.exit_code == 0
        assert "Warning:" in result.output

    def test_unknown_project(self, run):
        result = run("sync", "missing")
        assert result.exit_code == 1
        assert "not found" in result.output


class TestMaintenanceCommands:

    def test_reset_requires_confirmation(self, run, basic_estimate):
        run("sync", PROJECT_ID)
        result = run("reset", PROJECT_ID, input="n\n")
        assert result.exit_code == 1
        assert "Aborted" in result.output

    def test_reset(self, run, basic_estimate):
        run("sync", PROJECT_ID)
        result = run("reset", PROJECT_ID, "--yes")
        assert result.exit_code == 0
        assert "4 items deleted" in result.output

    def test_recalculate(self, run, basic_estimate):
        run("sync", PROJECT_ID)
        result = run("recalculate", PROJECT_ID)
        assert result.exit_code == 0
        assert "Total budget: $250.00" in result.output

    def test_verify_clean(self, run, basic_estimate):
        run("sync", PROJECT_ID)
        result = run("verify", PROJECT_ID)
        assert result.exit_code == 0
        assert "no violations" in result.output
