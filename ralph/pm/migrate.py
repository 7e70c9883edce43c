"""
Upgrade prd.json to the v3 schema.

Adds: version "3.0", a placeholder intent section, v3 config defaults,
and per-story user_stories, checkpoint flags and metrics. A timestamped
backup is written before anything changes. v3 documents are left alone.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from ralph.lib.constants import CheckpointKind
from ralph.lib.fs import atomic_write_json

logger = logging.getLogger(__name__)

TARGET_VERSION = "3.0"

V3_CONFIG_DEFAULTS = {
    "max_attempts_per_story": 5,
    "parallel_build": True,
    "parallel_validate": True,
    "dev_server_url": "http://localhost:3000",
    "test_timeout_ms": 30000,
    "enable_whitebox": True,
    "enable_learning_enforcer": True,
    "cleanup_per_story": True,
}

# Options introduced in v3; merged into an existing config without overriding it
V3_NEW_CONFIG_KEYS = ("enable_whitebox", "enable_learning_enforcer", "cleanup_per_story")

PLACEHOLDER_INTENT = {
    "problem_statement": "[To be filled via /intent-engineer skill]",
    "user_personas": [],
    "constraints": {"technical": [], "compliance": [], "business": []},
    "risks": [],
    "success_metrics": {"quantitative": [], "qualitative": [], "business": []},
}

FIELD_ORDER = (
    "version", "project", "created", "branchName", "description", "intent",
    "tech_stack", "testUser", "decisions", "completedTasks", "currentTask",
    "tasks", "stories", "config",
)


@dataclass
class MigrationReport:
    from_version: str
    migrated: bool = False
    dry_run: bool = False
    backup_path: Path | None = None
    stories_updated: int = 0
    changes: list[str] = field(default_factory=list)


def _migrate_story(story: dict) -> None:
    story.setdefault("user_stories", [])

    checkpoints = story.get("checkpoints")
    if not isinstance(checkpoints, dict):
        checkpoints = {}
        story["checkpoints"] = checkpoints
    for kind in CheckpointKind:
        checkpoints.setdefault(kind.value, False)

    if not isinstance(story.get("metrics"), dict):
        story["metrics"] = {
            "iterations": 0,
            "git_checkpoint": None,
            "started_at": None,
            "completed_at": None,
        }


def migrate_document(prd: dict) -> tuple[dict, MigrationReport]:
    """Return the v3 form of prd and a report. Input is not modified."""
    doc = json.loads(json.dumps(prd))
    report = MigrationReport(from_version=str(doc.get("version", "2.0")))
    if report.from_version == TARGET_VERSION:
        return doc, report

    doc["version"] = TARGET_VERSION
    report.changes.append(f"set version to {TARGET_VERSION}")

    if not doc.get("intent"):
        doc["intent"] = json.loads(json.dumps(PLACEHOLDER_INTENT))
        report.changes.append("added intent section (placeholder)")

    if not isinstance(doc.get("config"), dict):
        doc["config"] = dict(V3_CONFIG_DEFAULTS)
        report.changes.append("added config section with v3 defaults")
    else:
        for key in V3_NEW_CONFIG_KEYS:
            doc["config"].setdefault(key, V3_CONFIG_DEFAULTS[key])
        report.changes.append("updated config with v3 options")

    stories = []
    for task in doc.get("tasks", []) or []:
        stories.extend(task.get("stories", []) or [])
    stories.extend(doc.get("stories", []) or [])
    for story in stories:
        _migrate_story(story)
    report.stories_updated = len(stories)
    report.changes.append(f"updated {len(stories)} stories with v3 fields")

    ordered = {key: doc[key] for key in FIELD_ORDER if key in doc}
    ordered.update({k: v for k, v in doc.items() if k not in ordered})

    report.migrated = True
    return ordered, report


def migrate_prd(path: Path, dry_run: bool = False) -> MigrationReport:
    """
    Migrate prd.json in place.

    Raises:
        FileNotFoundError: if path does not exist
        ValueError: if the file is not a JSON object
    """
    if not path.exists():
        raise FileNotFoundError(f"{path} not found")
    try:
        prd = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse {path}: {e}") from None
    if not isinstance(prd, dict):
        raise ValueError(f"{path} must contain a JSON object")

    migrated, report = migrate_document(prd)
    report.dry_run = dry_run
    if not report.migrated:
        logger.info(f"{path} already at v{TARGET_VERSION}, no migration needed")
        return report
    if dry_run:
        logger.info(f"Dry run: would migrate {path} from v{report.from_version}")
        return report

    backup = path.with_name(f"{path.stem}-backup-{int(time.time() * 1000)}{path.suffix}")
    atomic_write_json(backup, prd)
    report.backup_path = backup

    atomic_write_json(path, migrated)
    logger.info(f"Migrated {path} v{report.from_version} -> v{TARGET_VERSION} (backup: {backup})")
    return report
