"""Tests for ralph.lib.path_rules and ralph.workflow.phase_gate."""

import logging
from pathlib import Path

import pytest

from ralph.lib.constants import Phase
from ralph.lib.path_rules import PathClass, load_path_rules
from ralph.workflow.phase_gate import can_edit, normalize_path

STATE_REL = "scripts/ralph/state"


@pytest.fixture
def rules(tmp_path):
    return load_path_rules(tmp_path, STATE_REL)


class TestClassify:
    """Test default path classification."""

    def test_spec_files_are_tests(self, rules):
        """Should classify spec files as tests."""
        assert rules.classify("e2e/US-001.spec.ts") is PathClass.TEST
        assert rules.classify("src/components/__tests__/Nav.tsx") is PathClass.TEST

    def test_sources(self, rules):
        """Should classify application files as source."""
        assert rules.classify("src/app/page.tsx") is PathClass.SOURCE

    def test_state_wins_over_source(self, rules):
        """Should classify verification output as state."""
        assert rules.classify("verification/US-001/report.js") is PathClass.STATE
        assert rules.classify(f"{STATE_REL}/evidence/US-001/browser_validated.json") is PathClass.STATE

    def test_unmatched_is_other(self, rules):
        """Should classify unmatched paths as other."""
        assert rules.classify("README.md") is PathClass.OTHER

    def test_engine_records_are_owned(self, rules):
        """Should classify state records as engine-owned."""
        assert rules.is_engine_owned(f"{STATE_REL}/workflow.json")
        assert rules.is_engine_owned(f"{STATE_REL}/stories/US-001.json")
        assert rules.is_engine_owned(f"{STATE_REL}/checkpoints/US-001/build_complete.json")
        assert not rules.is_engine_owned(f"{STATE_REL}/evidence/US-001/browser_validated.json")


class TestLoadPathRules:
    """Test path_rules.yaml overrides."""

    def test_yaml_overrides_test_patterns(self, tmp_path):
        """Should take test patterns from path_rules.yaml."""
        (tmp_path / "path_rules.yaml").write_text('test:\n  - "specs/*"\n')
        rules = load_path_rules(tmp_path, STATE_REL)
        assert rules.classify("specs/login.ts") is PathClass.TEST
        assert rules.classify("e2e/US-001.spec.ts") is PathClass.SOURCE

    def test_malformed_yaml_uses_defaults(self, tmp_path, caplog):
        """Should fall back to defaults on bad YAML."""
        caplog.set_level(logging.WARNING)
        (tmp_path / "path_rules.yaml").write_text("test: [unclosed\n")
        rules = load_path_rules(tmp_path, STATE_REL)
        assert "Failed to load" in caplog.text
        assert rules.classify("e2e/US-001.spec.ts") is PathClass.TEST

    def test_non_list_value_uses_defaults(self, tmp_path, caplog):
        """Should fall back when a value is not a list."""
        caplog.set_level(logging.WARNING)
        (tmp_path / "path_rules.yaml").write_text('source: "src/*"\n')
        rules = load_path_rules(tmp_path, STATE_REL)
        assert "must be a list of strings" in caplog.text
        assert rules.classify("lib/util.ts") is PathClass.SOURCE


class TestNormalizePath:
    def test_collapses_dot_segments(self):
        """Should collapse dot segments."""
        assert normalize_path("src/../e2e/a.spec.ts") == "e2e/a.spec.ts"

    def test_escape_is_none(self):
        """Should return None for a path escaping the root."""
        assert normalize_path("../outside.ts") is None

    def test_absolute_inside_root(self):
        """Should relativize an absolute path inside the root."""
        assert normalize_path("/proj/src/a.ts", Path("/proj")) == "src/a.ts"

    def test_absolute_outside_root(self):
        """Should return None for an absolute path outside the root."""
        assert normalize_path("/other/src/a.ts", Path("/proj")) is None
        assert normalize_path("/projector/a.ts", Path("/proj")) is None


class TestCanEdit:
    """Test the phase gate decision table."""

    def test_author_tests_denies_sources(self, rules):
        """Should deny source edits while authoring tests."""
        decision = can_edit(Phase.AUTHOR_TESTS, "src/app/page.tsx", rules)
        assert not decision.allowed
        assert decision.rule == "author-tests:source"

    def test_author_tests_allows_tests(self, rules):
        """Should allow test edits while authoring tests."""
        assert can_edit(Phase.AUTHOR_TESTS, "e2e/US-001.spec.ts", rules).allowed

    def test_implement_denies_tests(self, rules):
        """Should deny test edits while implementing."""
        decision = can_edit(Phase.IMPLEMENT, "e2e/US-001.spec.ts", rules)
        assert not decision.allowed
        assert decision.rule == "implement:test"

    def test_implement_allows_sources(self, rules):
        """Should allow source edits while implementing."""
        assert can_edit(Phase.IMPLEMENT, "src/app/page.tsx", rules).allowed

    def test_validate_only_writes_state_space(self, rules):
        """Should allow only state writes during validate."""
        assert not can_edit(Phase.VALIDATE, "src/app/page.tsx", rules).allowed
        assert not can_edit(Phase.VALIDATE, "e2e/US-001.spec.ts", rules).allowed
        assert not can_edit(Phase.VALIDATE, "README.md", rules).allowed
        assert can_edit(Phase.VALIDATE, "verification/US-001/playwright.json", rules).allowed

    def test_cleanup_allows_both(self, rules):
        """Should allow tests and sources during cleanup."""
        assert can_edit(Phase.CLEANUP, "src/app/page.tsx", rules).allowed
        assert can_edit(Phase.CLEANUP, "e2e/US-001.spec.ts", rules).allowed

    @pytest.mark.parametrize("phase", list(Phase))
    def test_engine_records_denied_in_every_phase(self, rules, phase):
        """Should deny engine-owned records in every phase."""
        decision = can_edit(phase, f"{STATE_REL}/stories/US-001.json", rules)
        assert not decision.allowed
        assert decision.rule == "engine-owned"

    @pytest.mark.parametrize("phase", list(Phase))
    def test_outside_project_denied_in_every_phase(self, rules, phase):
        """Should deny paths outside the project in every phase."""
        decision = can_edit(phase, "../other-repo/src/a.ts", rules)
        assert not decision.allowed
        assert decision.rule == "outside-project"

    def test_dot_segments_cannot_dodge_gate(self, rules):
        """Should classify the normalized path."""
        assert not can_edit(Phase.IMPLEMENT, "src/../e2e/US-001.spec.ts", rules).allowed

    def test_accepts_phase_string(self, rules):
        """Should accept a phase name string."""
        assert not can_edit("author-tests", "src/a.ts", rules).allowed

    def test_unknown_phase_string_raises(self, rules):
        """Should raise for an unknown phase string."""
        with pytest.raises(ValueError):
            can_edit("deploy", "src/a.ts", rules)

    def test_deny_is_logged(self, rules, caplog):
        """Should log denied edits."""
        caplog.set_level(logging.WARNING)
        can_edit(Phase.IMPLEMENT, "e2e/US-001.spec.ts", rules)
        assert "[GATE] DENY" in caplog.text
