"""Tests for the pipeline-core CLI."""

from __future__ import annotations

import json
import os

import pytest
from click.testing import CliRunner

from pipeline_core import __version__
from pipeline_core.cli import main
from pipeline_core.utils.errors import set_debug_mode


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("PIPELINE_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("COLUMNS", "200")
    yield
    set_debug_mode(False)


@pytest.fixture
def cli(tmp_path):
    """Invoke the CLI against a temporary config file and store."""
    runner = CliRunner()
    base_args = [
        "--config",
        str(tmp_path / "config.toml"),
        "--store-dir",
        str(tmp_path / "checkpoints"),
    ]

    def invoke(*args: str):
        return runner.invoke(main, [*base_args, *args])

    return invoke


class TestMain:
    """Tests for the top-level group."""

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_version_skips_subcommand(self, cli):
        result = cli("--version", "checkpoint", "show", "c1")
        assert result.exit_code == 0
        assert __version__ in result.output
        assert "not found" not in result.output

    def test_help_without_command(self, cli):
        result = cli()
        assert result.exit_code == 0
        assert "checkpoint" in result.output
        assert "stage" in result.output


class TestCheckpointCommands:
    """Tests for the checkpoint subcommands."""

    def test_full_review_cycle(self, cli, tmp_path):
        assert cli("checkpoint", "create", "c1", "Extraction QC", "extraction").exit_code == 0
        assert cli("checkpoint", "start", "c1").exit_code == 0
        assert cli("checkpoint", "submit", "c1").exit_code == 0
        result = cli("checkpoint", "approve", "c1", "--reviewer", "reviewer@x")

        assert result.exit_code == 0
        assert "approved" in result.output
        assert (tmp_path / "checkpoints" / "c1.json").exists()

        status = cli("stage", "status", "extraction")
        assert status.exit_code == 0
        assert "Stage complete" in status.output

    def test_create_with_data(self, cli):
        result = cli("checkpoint", "create", "c1", "QC", "extraction", "--data", '{"batch": 3}')
        assert result.exit_code == 0

        shown = cli("checkpoint", "show", "c1")
        assert shown.exit_code == 0
        assert '"batch": 3' in shown.output
        assert "pending" in shown.output

    def test_create_with_bad_data(self, cli):
        result = cli("checkpoint", "create", "c1", "QC", "extraction", "--data", "[1, 2]")
        assert result.exit_code == 2
        assert "JSON object" in result.output

    def test_duplicate_create(self, cli):
        cli("checkpoint", "create", "c1", "QC", "extraction")
        result = cli("checkpoint", "create", "c1", "QC", "extraction")
        assert result.exit_code == 1
        assert "Checkpoint already exists: c1" in result.output

    def test_invalid_transition(self, cli):
        cli("checkpoint", "create", "c1", "QC", "extraction")
        result = cli("checkpoint", "approve", "c1", "-r", "x")

        assert result.exit_code == 1
        assert "Invalid transition" in result.output
        assert "allowed targets are" in result.output

    def test_unknown_checkpoint(self, cli):
        result = cli("checkpoint", "show", "nope")
        assert result.exit_code == 1
        assert "Checkpoint not found: nope" in result.output

    def test_reject_requires_feedback(self, cli):
        cli("checkpoint", "create", "c1", "QC", "extraction")
        cli("checkpoint", "start", "c1")
        result = cli("checkpoint", "reject", "c1", "-r", "bob")
        assert result.exit_code == 2

    def test_reject_restart_reset(self, cli):
        cli("checkpoint", "create", "c1", "QC", "extraction")
        cli("checkpoint", "start", "c1")
        assert cli("checkpoint", "reject", "c1", "-r", "bob", "-f", "Redo it").exit_code == 0
        assert cli("checkpoint", "restart", "c1", "--actor", "carol").exit_code == 0
        assert cli("checkpoint", "reject", "c1", "-r", "bob", "-f", "Again").exit_code == 0
        assert cli("checkpoint", "reset", "c1").exit_code == 0

        shown = cli("checkpoint", "show", "c1")
        assert "pending" in shown.output
        assert "Again" in shown.output

    def test_skip_and_history(self, cli):
        cli("checkpoint", "create", "c1", "QC", "extraction")
        assert cli("checkpoint", "skip", "c1", "--reason", "Not needed").exit_code == 0

        result = cli("checkpoint", "history", "c1")
        assert result.exit_code == 0
        assert "skipped" in result.output
        assert "Not needed" in result.output

    def test_empty_history(self, cli):
        cli("checkpoint", "create", "c1", "QC", "extraction")
        result = cli("checkpoint", "history", "c1")
        assert result.exit_code == 0
        assert "No transitions recorded" in result.output

    def test_unsafe_id(self, cli):
        result = cli("checkpoint", "create", "../x", "QC", "extraction")
        assert result.exit_code == 1
        assert "Invalid checkpoint id" in result.output


class TestStageCommands:
    """Tests for the stage subcommands."""

    def test_incomplete_stage_exits_2(self, cli):
        cli("checkpoint", "create", "c1", "QC", "extraction")
        result = cli("stage", "status", "extraction")
        assert result.exit_code == 2
        assert "Stage not complete" in result.output

    def test_empty_stage_exits_2(self, cli):
        result = cli("stage", "status", "screening")
        assert result.exit_code == 2
        assert "No checkpoints in stage screening" in result.output

    def test_list(self, cli):
        cli("checkpoint", "create", "s1", "Screen", "screening")
        cli("checkpoint", "create", "c1", "QC", "extraction")
        result = cli("stage", "list")
        assert result.exit_code == 0
        assert "screening" in result.output
        assert "extraction" in result.output

    def test_list_empty(self, cli):
        result = cli("stage", "list")
        assert result.exit_code == 0
        assert "No checkpoints found" in result.output


class TestExportImport:
    """Tests for export and import."""

    def test_export_and_import(self, cli, tmp_path):
        cli("checkpoint", "create", "c1", "QC", "extraction")
        cli("checkpoint", "start", "c1")
        export_path = tmp_path / "export.json"

        assert cli("export", str(export_path)).exit_code == 0
        document = json.loads(export_path.read_text())
        assert document["checkpoints"][0]["status"] == "in_progress"
        assert len(document["history"]["c1"]) == 1

        runner = CliRunner()
        other = tmp_path / "other"
        result = runner.invoke(
            main,
            ["--store-dir", str(other), "--config", str(tmp_path / "c.toml"), "import", str(export_path)],
        )
        assert result.exit_code == 0
        assert "Imported 1 checkpoint(s)" in result.output
        assert (other / "c1.json").exists()

    def test_export_to_stdout(self, cli):
        cli("checkpoint", "create", "c1", "QC", "extraction")
        result = cli("export")
        assert result.exit_code == 0
        assert '"version": 1' in result.output

    def test_import_bad_file(self, cli, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{broken")
        result = cli("import", str(bad))
        assert result.exit_code == 1
        assert "Invalid checkpoint state" in result.output


class TestRetryCommands:
    """Tests for classify and backoff."""

    def test_classify_status(self, cli):
        result = cli("classify", "Too Many Requests", "--status", "429")
        assert result.exit_code == 0
        assert "RATE_LIMIT" in result.output
        assert "not retryable" not in result.output

    def test_classify_code(self, cli):
        result = cli("classify", "socket hang up", "--code", "econnreset")
        assert "NETWORK_ERROR" in result.output

    def test_classify_unknown(self, cli):
        result = cli("classify", "something odd")
        assert "UNKNOWN" in result.output
        assert "not retryable" in result.output

    def test_backoff_schedule(self, cli):
        result = cli("backoff", "--attempts", "3", "--jitter", "0")
        assert result.exit_code == 0
        for delay in ("1000", "2000", "4000"):
            assert delay in result.output
        assert "Total attempts on persistent failure: 4" in result.output

    def test_backoff_uses_config(self, cli, tmp_path):
        (tmp_path / "config.toml").write_text("[retry]\nmax_retries = 1\nbase_delay_ms = 250\njitter = 0.0\n")
        result = cli("backoff")
        assert "250" in result.output
        assert "Total attempts on persistent failure: 2" in result.output


class TestConfigCommands:
    """Tests for the config subcommands."""

    def test_init_and_show(self, cli, tmp_path):
        result = cli("config", "init")
        assert result.exit_code == 0
        assert (tmp_path / "config.toml").exists()

        shown = cli("config", "show")
        assert "[retry]" in shown.output
        assert "max_retries = 3" in shown.output

    def test_init_does_not_overwrite(self, cli, tmp_path):
        (tmp_path / "config.toml").write_text("[retry]\nmax_retries = 9\n")
        result = cli("config", "init")
        assert "already exists" in result.output
        assert "max_retries = 9" in (tmp_path / "config.toml").read_text()

    def test_init_force(self, cli, tmp_path):
        (tmp_path / "config.toml").write_text("[retry]\nmax_retries = 9\n")
        assert cli("config", "init", "--force").exit_code == 0
        assert "max_retries = 3" in (tmp_path / "config.toml").read_text()
