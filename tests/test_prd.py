"""Tests for ralph.pm.prd and ralph.pm.migrate modules."""

import json

import pytest

from ralph.lib.validate import ValidationError
from ralph.pm.migrate import TARGET_VERSION, migrate_document, migrate_prd
from ralph.pm.prd import load_prd, read_prd_config
from ralph.workflow.scheduler import DependencyCycleError, UnknownDependencyError

V3_PRD = {
    "version": "3.0",
    "project": "shop",
    "config": {"max_attempts_per_story": 3, "enable_whitebox": False},
    "tasks": [
        {"id": "T-1", "stories": [
            {"id": "US-001", "title": "Login", "acceptanceCriteria": ["shows form"]},
            {"id": "US-002", "title": "Logout", "dependsOn": ["US-001"]},
        ]},
        {"id": "T-2", "stories": [
            {"id": "US-003", "title": "Cart", "depends_on": ["US-001", "US-001"]},
        ]},
    ],
}

V2_PRD = {
    "version": "2.1",
    "project": "shop",
    "stories": [
        {"id": "US-001", "title": "Login", "passes": False},
        {"id": "US-002", "title": "Logout", "dependsOn": ["US-001"], "checkpoints": {"tests_written": True}},
    ],
    "config": {"parallel_build": False},
}


def _write(tmp_path, data, name="prd.json"):
    path = tmp_path / name
    path.write_text(json.dumps(data))
    return path


class TestLoadPrd:
    """Test story graph loading."""

    def test_declared_order_and_fields(self, tmp_path):
        """Should load stories in declared order with their fields."""
        doc = load_prd(_write(tmp_path, V3_PRD))
        assert [s.id for s in doc.stories] == ["US-001", "US-002", "US-003"]
        assert doc.stories[0].acceptance_criteria == ["shows form"]
        assert doc.stories[1].depends_on == ["US-001"]
        assert doc.stories[2].depends_on == ["US-001"]

    def test_policy_from_config(self, tmp_path):
        """Should build the policy from config."""
        doc = load_prd(_write(tmp_path, V3_PRD))
        assert doc.version == "3.0"
        assert doc.policy.max_attempts_per_story == 3
        assert doc.policy.enable_whitebox is False

    def test_top_level_stories(self, tmp_path):
        """Should accept top-level stories."""
        doc = load_prd(_write(tmp_path, V2_PRD))
        assert [s.id for s in doc.stories] == ["US-001", "US-002"]

    def test_cycle_is_fatal(self, tmp_path):
        """Should raise on a dependency cycle."""
        data = {"stories": [
            {"id": "A", "title": "a", "dependsOn": ["B"]},
            {"id": "B", "title": "b", "dependsOn": ["A"]},
        ]}
        with pytest.raises(DependencyCycleError):
            load_prd(_write(tmp_path, data))

    def test_unknown_dependency_is_fatal(self, tmp_path):
        """Should raise on an unknown dependency."""
        data = {"stories": [{"id": "A", "title": "a", "dependsOn": ["Z"]}]}
        with pytest.raises(UnknownDependencyError):
            load_prd(_write(tmp_path, data))

    def test_story_without_title_invalid(self, tmp_path):
        """Should refuse a story without a title."""
        with pytest.raises(ValidationError):
            load_prd(_write(tmp_path, {"stories": [{"id": "A"}]}))

    def test_read_config_tolerates_missing_file(self, tmp_path):
        """Should return no config for a missing file."""
        assert read_prd_config(tmp_path / "none.json") == {}


class TestMigrate:
    """Test v2 -> v3 upgrade."""

    def test_document_upgrade(self):
        """Should upgrade a v2 document to v3."""
        migrated, report = migrate_document(V2_PRD)
        assert migrated["version"] == TARGET_VERSION
        assert report.from_version == "2.1"
        assert report.stories_updated == 2
        assert "problem_statement" in migrated["intent"]
        assert migrated["config"]["parallel_build"] is False
        assert migrated["config"]["enable_whitebox"] is True
        assert migrated["config"]["cleanup_per_story"] is True
        story = migrated["stories"][1]
        assert story["checkpoints"]["tests_written"] is True
        assert story["checkpoints"]["whitebox_validated"] is False
        assert story["metrics"]["iterations"] == 0
        assert story["user_stories"] == []

    def test_input_not_modified(self):
        """Should leave the input document untouched."""
        original = json.dumps(V2_PRD, sort_keys=True)
        migrate_document(V2_PRD)
        assert json.dumps(V2_PRD, sort_keys=True) == original

    def test_missing_config_gets_defaults(self):
        """Should add default config when missing."""
        migrated, _ = migrate_document({"version": "2.0", "stories": []})
        assert migrated["config"]["max_attempts_per_story"] == 5

    def test_v3_untouched(self):
        """Should leave a v3 document alone."""
        migrated, report = migrate_document(V3_PRD)
        assert report.migrated is False
        assert migrated == V3_PRD

    def test_writes_backup_then_migrates(self, tmp_path):
        """Should write a backup before migrating."""
        path = _write(tmp_path, V2_PRD)
        report = migrate_prd(path)
        assert report.migrated
        assert json.loads(report.backup_path.read_text()) == V2_PRD
        assert report.backup_path.name.startswith("prd-backup-")
        assert json.loads(path.read_text())["version"] == TARGET_VERSION
        load_prd(path)

    def test_dry_run_writes_nothing(self, tmp_path):
        """Should write nothing on a dry run."""
        path = _write(tmp_path, V2_PRD)
        report = migrate_prd(path, dry_run=True)
        assert report.migrated and report.dry_run
        assert report.backup_path is None
        assert json.loads(path.read_text()) == V2_PRD
        assert list(tmp_path.iterdir()) == [path]

    def test_missing_file(self, tmp_path):
        """Should raise for a missing prd file."""
        with pytest.raises(FileNotFoundError):
            migrate_prd(tmp_path / "prd.json")
