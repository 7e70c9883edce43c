"""
File-backed engine state.

Layout under the state directory:

    workflow.json                   WorkflowState singleton
    stories/<id>.json               Story record
    checkpoints/<id>/<kind>.json    CheckpointRecord (one per story x kind)
    iterations/<id>.json            IterationRecord
    rollback/<id>.json              GitCheckpoint
    conflicts/<id>-<stamp>.json     conflict artifacts
    orphaned/<id>-<stamp>/          records of stories dropped from prd.json
    evidence/<id>/<kind>.json       default evidence location

Every write is atomic (temp + rename) and every read is schema-checked.
Unreadable or invalid records raise CorruptState; they are never
repaired silently. No state is cached between calls.
"""

import json
import logging
from pathlib import Path

from ralph.lib.clock import utc_now
from ralph.lib.constants import STORY_ID_PATTERN
from ralph.lib.fs import atomic_write_json, remove_file
from ralph.lib.validate import ValidationError, validate, validate_before_write
from ralph.state.models import (
    CheckpointRecord,
    EngineState,
    GitCheckpoint,
    IterationRecord,
    Story,
    WorkflowState,
)

logger = logging.getLogger(__name__)


class CorruptState(Exception):
    """A state record exists but cannot be read or fails its schema."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt state record {path}: {reason}")


class UnknownStoryError(KeyError):
    """No story record with this id exists."""

    def __init__(self, story_id: str):
        self.story_id = story_id
        super().__init__(story_id)

    def __str__(self) -> str:
        return f"Unknown story '{self.story_id}'"


def check_story_id(story_id: str) -> str:
    """Story IDs become file names, so they must be plain tokens."""
    if not isinstance(story_id, str) or not STORY_ID_PATTERN.match(story_id):
        raise ValueError(f"Invalid story id: {story_id!r}")
    return story_id


class StateStore:
    """Durable record of workflow state. Load -> decide -> save, nothing held."""

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)

    # -- paths ---------------------------------------------------------------

    @property
    def workflow_path(self) -> Path:
        return self.state_dir / "workflow.json"

    def story_path(self, story_id: str) -> Path:
        return self.state_dir / "stories" / f"{check_story_id(story_id)}.json"

    def checkpoint_dir(self, story_id: str) -> Path:
        return self.state_dir / "checkpoints" / check_story_id(story_id)

    def checkpoint_path(self, story_id: str, name: str) -> Path:
        return self.checkpoint_dir(story_id) / f"{name}.json"

    def iteration_path(self, story_id: str) -> Path:
        return self.state_dir / "iterations" / f"{check_story_id(story_id)}.json"

    def rollback_path(self, story_id: str) -> Path:
        return self.state_dir / "rollback" / f"{check_story_id(story_id)}.json"

    def evidence_path(self, story_id: str, kind: str) -> Path:
        return self.state_dir / "evidence" / check_story_id(story_id) / f"{kind}.json"

    @property
    def conflicts_dir(self) -> Path:
        return self.state_dir / "conflicts"

    @property
    def orphaned_dir(self) -> Path:
        return self.state_dir / "orphaned"

    # -- low level -----------------------------------------------------------

    def _read(self, path: Path, schema_name: str) -> dict | None:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text())
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptState(path, f"unreadable: {e}") from None
        try:
            validate(data, schema_name)
        except ValidationError as e:
            raise CorruptState(path, str(e)) from None
        return data

    def _write(self, path: Path, data: dict, schema_name: str) -> None:
        validate_before_write(data, schema_name, path)
        atomic_write_json(path, data)

    # -- workflow ------------------------------------------------------------

    def load_workflow(self) -> WorkflowState:
        data = self._read(self.workflow_path, "workflow")
        if data is None:
            return WorkflowState()
        return WorkflowState.from_dict(data)

    def save_workflow(self, workflow: WorkflowState) -> None:
        self._write(self.workflow_path, workflow.to_dict(), "workflow")
        logger.debug(f"[STATE] workflow saved: active={workflow.active} phase={workflow.phase}")

    # -- stories -------------------------------------------------------------

    def list_story_ids(self) -> list[str]:
        stories_dir = self.state_dir / "stories"
        if not stories_dir.exists():
            return []
        return sorted(p.stem for p in stories_dir.glob("*.json"))

    def load_story(self, story_id: str) -> Story | None:
        data = self._read(self.story_path(story_id), "story_state")
        return Story.from_dict(data) if data is not None else None

    def require_story(self, story_id: str) -> Story:
        story = self.load_story(story_id)
        if story is None:
            raise UnknownStoryError(story_id)
        return story

    def save_story(self, story: Story) -> None:
        self._write(self.story_path(story.id), story.to_dict(), "story_state")

    def load_stories(self) -> list[Story]:
        """All stories in declared order."""
        return self.load().ordered_stories()

    def archive_story(self, story_id: str) -> Path:
        """Move every record of a story under orphaned/<id>-<stamp>/.

        Files are moved, not parsed, so a corrupt record can still be set
        aside. Returns the archive directory.
        """
        stamp = utc_now().strftime("%Y%m%dT%H%M%S%fZ")
        archive = self.orphaned_dir / f"{check_story_id(story_id)}-{stamp}"
        sources = {
            "story.json": self.story_path(story_id),
            "checkpoints": self.checkpoint_dir(story_id),
            "iteration.json": self.iteration_path(story_id),
            "rollback.json": self.rollback_path(story_id),
        }
        archive.mkdir(parents=True, exist_ok=True)
        for name, source in sources.items():
            if source.exists():
                source.rename(archive / name)
        return archive

    # -- checkpoints ---------------------------------------------------------

    def load_checkpoint(self, story_id: str, name: str) -> CheckpointRecord | None:
        data = self._read(self.checkpoint_path(story_id, name), "checkpoint")
        return CheckpointRecord.from_dict(data) if data is not None else None

    def load_checkpoints(self, story_id: str) -> dict[str, CheckpointRecord]:
        cp_dir = self.checkpoint_dir(story_id)
        if not cp_dir.exists():
            return {}
        records = {}
        for path in sorted(cp_dir.glob("*.json")):
            record = self.load_checkpoint(story_id, path.stem)
            if record is not None:
                records[record.name] = record
        return records

    def save_checkpoint(self, record: CheckpointRecord) -> None:
        self._write(self.checkpoint_path(record.story_id, record.name), record.to_dict(), "checkpoint")

    def clear_checkpoints(self, story_id: str) -> int:
        """Remove every checkpoint record for a story. Returns count removed."""
        cp_dir = self.checkpoint_dir(story_id)
        if not cp_dir.exists():
            return 0
        removed = sum(1 for path in cp_dir.glob("*.json") if remove_file(path))
        return removed

    # -- iterations ----------------------------------------------------------

    def load_iteration(self, story_id: str) -> IterationRecord:
        data = self._read(self.iteration_path(story_id), "iteration")
        if data is None:
            return IterationRecord(story_id=story_id)
        return IterationRecord.from_dict(data)

    def save_iteration(self, record: IterationRecord) -> None:
        self._write(self.iteration_path(record.story_id), record.to_dict(), "iteration")

    def clear_iteration(self, story_id: str) -> None:
        remove_file(self.iteration_path(story_id))

    # -- rollback points -----------------------------------------------------

    def load_rollback_point(self, story_id: str) -> GitCheckpoint | None:
        data = self._read(self.rollback_path(story_id), "rollback_point")
        return GitCheckpoint.from_dict(data) if data is not None else None

    def save_rollback_point(self, point: GitCheckpoint) -> None:
        self._write(self.rollback_path(point.story_id), point.to_dict(), "rollback_point")

    def delete_rollback_point(self, story_id: str) -> None:
        remove_file(self.rollback_path(story_id))

    def load_rollback_points(self) -> dict[str, GitCheckpoint]:
        rb_dir = self.state_dir / "rollback"
        if not rb_dir.exists():
            return {}
        points = {}
        for path in sorted(rb_dir.glob("*.json")):
            point = self.load_rollback_point(path.stem)
            if point is not None:
                points[point.story_id] = point
        return points

    # -- conflicts -----------------------------------------------------------

    def write_conflict(self, story_id: str, artifact: dict) -> Path:
        stamp = utc_now().strftime("%Y%m%dT%H%M%S%fZ")
        path = self.conflicts_dir / f"{check_story_id(story_id)}-{stamp}.json"
        self._write(path, artifact, "conflict")
        return path

    def list_conflicts(self, story_id: str | None = None) -> list[Path]:
        if not self.conflicts_dir.exists():
            return []
        pattern = f"{story_id}-*.json" if story_id else "*.json"
        return sorted(self.conflicts_dir.glob(pattern))

    # -- whole state ---------------------------------------------------------

    def load(self) -> EngineState:
        """Read every record into a typed EngineState.

        Raises:
            CorruptState: if any record is unreadable or invalid
        """
        state = EngineState(workflow=self.load_workflow())
        for story_id in self.list_story_ids():
            story = self.load_story(story_id)
            if story is None:
                continue
            if story.id != story_id:
                raise CorruptState(self.story_path(story_id), f"record id '{story.id}' does not match file name")
            state.stories[story_id] = story
            checkpoints = self.load_checkpoints(story_id)
            if checkpoints:
                state.checkpoints[story_id] = checkpoints
            if self.iteration_path(story_id).exists():
                state.iterations[story_id] = self.load_iteration(story_id)
        state.rollback_points = self.load_rollback_points()
        return state

    def save(self, state: EngineState) -> None:
        """Write every record in state. Each record is replaced atomically."""
        self.save_workflow(state.workflow)
        for story in state.stories.values():
            self.save_story(story)
        for records in state.checkpoints.values():
            for record in records.values():
                self.save_checkpoint(record)
        for record in state.iterations.values():
            self.save_iteration(record)
        for point in state.rollback_points.values():
            self.save_rollback_point(point)
