"""Tests for ralph.cli module."""

import json
from unittest.mock import patch

import pytest

from ralph.cli import EXIT_FATAL, EXIT_OK, EXIT_REJECTED, EXIT_USAGE, build_parser, main

SHA = "beef0000" * 5

PRD = {
    "version": "3.0",
    "project": "shop",
    "stories": [
        {"id": "US-001", "title": "Login"},
        {"id": "US-002", "title": "Profile", "dependsOn": ["US-001"]},
    ],
}


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Project root as cwd with a prd.json at the default location."""
    monkeypatch.chdir(tmp_path)
    prd = tmp_path / "scripts" / "ralph" / "prd.json"
    prd.parent.mkdir(parents=True)
    prd.write_text(json.dumps(PRD))
    return tmp_path


@pytest.fixture(autouse=True)
def fake_git():
    with patch("ralph.git.get_head_revision", return_value=SHA), \
            patch("ralph.git.has_uncommitted_changes", return_value=False):
        yield


class TestParser:
    def test_global_options(self):
        """Should parse global options ahead of the subcommand."""
        args = build_parser().parse_args(["--state-dir", "/tmp/s", "--verbose", "status"])
        assert args.state_dir == "/tmp/s"
        assert args.verbose is True

    def test_rejects_unknown_phase(self):
        """Should exit on an unknown phase name."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["phase", "deploy"])


class TestCommands:
    """Run commands against a real state directory."""

    def test_start_and_next(self, workspace, capsys):
        """Should start the workflow and print the next ready story."""
        assert main(["start"]) == EXIT_OK
        capsys.readouterr()
        assert main(["next"]) == EXIT_OK
        assert capsys.readouterr().out.strip() == "US-001"

    def test_next_batch_empty_before_start(self, workspace):
        """Should exit 1 when nothing is ready."""
        assert main(["next", "--batch"]) == EXIT_REJECTED

    def test_begin_requires_start(self, workspace, capsys):
        """Should refuse to begin a story before start."""
        assert main(["begin", "US-001"]) == EXIT_REJECTED
        assert "not active" in capsys.readouterr().out

    def test_gate_exit_code(self, workspace, capsys):
        """Should exit 0 for an allowed edit and 1 for a denied one."""
        main(["start"])
        main(["begin", "US-001"])
        assert main(["gate", "e2e/US-001.spec.ts"]) == EXIT_OK
        assert main(["gate", "e2e/US-001.spec.ts", "src/login.tsx"]) == EXIT_REJECTED
        assert "DENY  src/login.tsx" in capsys.readouterr().out

    def test_checkpoint_needs_evidence(self, workspace, capsys):
        """Should reject a verified checkpoint without evidence."""
        main(["start"])
        assert main(["checkpoint", "US-001", "browser_validated", "PASS"]) == EXIT_REJECTED
        assert "no-evidence" in capsys.readouterr().out

    def test_evidence_round_trip(self, workspace, capsys):
        """Should write evidence that verify and checkpoint accept."""
        main(["start"])
        assert main(["evidence", "write", "US-001", "browser_validated", "PASS", "-d", "8 passed"]) == EXIT_OK
        ref = capsys.readouterr().out.splitlines()[0]
        assert main(["evidence", "verify", ref, "--story", "US-001"]) == EXIT_OK
        assert main(["checkpoint", "US-001", "browser_validated", "--evidence", ref]) == EXIT_OK
        assert "US-001/browser_validated = PASS" in capsys.readouterr().out

    def test_self_report_without_value_is_usage_error(self, workspace):
        """Should exit 2 when a self-report checkpoint has no value."""
        main(["start"])
        assert main(["checkpoint", "US-001", "tests_written"]) == EXIT_USAGE

    def test_complete_rejected(self, workspace, capsys):
        """Should exit 1 when completion is refused."""
        main(["start"])
        assert main(["complete", "US-001"]) == EXIT_REJECTED
        assert "no-record" in capsys.readouterr().out

    def test_stop_blocked_then_forced(self, workspace, capsys):
        """Should refuse stop until --force is given."""
        main(["start"])
        assert main(["stop"]) == EXIT_REJECTED
        assert main(["stop", "--force"]) == EXIT_OK
        assert "DEGRADED" in capsys.readouterr().out

    def test_status_json(self, workspace, capsys):
        """Should print status as JSON."""
        main(["start"])
        capsys.readouterr()
        assert main(["status", "--json"]) == EXIT_OK
        status = json.loads(capsys.readouterr().out)
        assert status["ready"] == ["US-001"]

    def test_unknown_story_is_usage_error(self, workspace):
        """Should exit 2 for an unknown story."""
        main(["start"])
        assert main(["unblock", "US-404"]) == EXIT_USAGE

    def test_corrupt_state_is_fatal(self, workspace, capsys):
        """Should exit 3 on a corrupt state record."""
        main(["start"])
        (workspace / "scripts" / "ralph" / "state" / "workflow.json").write_text("{")
        assert main(["status"]) == EXIT_FATAL
        assert "FATAL" in capsys.readouterr().out

    def test_cycle_is_fatal(self, workspace):
        """Should exit 3 on a dependency cycle."""
        (workspace / "scripts" / "ralph" / "prd.json").write_text(json.dumps({"stories": [
            {"id": "A", "title": "a", "dependsOn": ["A"]},
        ]}))
        assert main(["start"]) == EXIT_FATAL

    def test_invalid_prd_is_usage_error(self, workspace):
        """Should exit 2 on a schema-invalid prd.json."""
        (workspace / "scripts" / "ralph" / "prd.json").write_text(json.dumps({"version": "3.0"}))
        assert main(["start"]) == EXIT_USAGE

    def test_migrate_dry_run(self, workspace, capsys):
        """Should report the migration without writing."""
        (workspace / "scripts" / "ralph" / "prd.json").write_text(json.dumps(dict(PRD, version="2.0")))
        assert main(["migrate", "--dry-run"]) == EXIT_OK
        assert "Dry run" in capsys.readouterr().out

    def test_scan(self, workspace, capsys):
        """Should print advisory findings."""
        (workspace / "a.spec.ts").write_text("test.only('x', fn)\n")
        assert main(["scan", str(workspace / "a.spec.ts")]) == EXIT_OK
        assert "[focused-test]" in capsys.readouterr().out
