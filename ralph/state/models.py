"""
Data models for engine state.

Each model maps to one JSON record in the state directory (see store.py).
Records are schema-validated before they are turned into these objects.
"""

from dataclasses import asdict, dataclass, field
from typing import Optional

from ralph.lib.constants import PASS, Phase


@dataclass
class Story:
    """A unit of work from the story graph plus its engine-owned progress.

    `passes` only flips through the completion auditor and is only reset by
    rollback. `checkpoints` is a cached view; the ledger records are the
    source of truth.
    """
    id: str
    title: str
    depends_on: list[str] = field(default_factory=list)
    acceptance_criteria: list[str] = field(default_factory=list)
    passes: bool = False
    checkpoints: dict[str, bool] = field(default_factory=dict)
    iteration_count: int = 0
    last_checkpoint_ref: Optional[str] = None   # revision handle of the rollback point
    validated_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    blocked_reason: Optional[str] = None        # set when rollback failed; needs a human

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Story":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            depends_on=list(data.get("depends_on", [])),
            acceptance_criteria=list(data.get("acceptance_criteria", [])),
            passes=bool(data.get("passes", False)),
            checkpoints=dict(data.get("checkpoints", {})),
            iteration_count=int(data.get("iteration_count", 0)),
            last_checkpoint_ref=data.get("last_checkpoint_ref"),
            validated_at=data.get("validated_at"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            blocked_reason=data.get("blocked_reason"),
        )


@dataclass
class CheckpointRecord:
    """Outcome of one phase for one story. Replaced whole, never patched."""
    story_id: str
    name: str
    value: str                                  # PASS or FAIL:<reason>
    timestamp: str
    integrity_hash: Optional[str] = None        # evidence digest, verified kinds only
    evidence_ref: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.value == PASS

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CheckpointRecord":
        return cls(
            story_id=data["story_id"],
            name=data["name"],
            value=data["value"],
            timestamp=data["timestamp"],
            integrity_hash=data.get("integrity_hash"),
            evidence_ref=data.get("evidence_ref"),
        )


@dataclass
class FailureEntry:
    attempt: int
    timestamp: str
    reason: str
    validator_snapshot: dict = field(default_factory=dict)


@dataclass
class IterationRecord:
    story_id: str
    count: int = 0
    failures: list[FailureEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "IterationRecord":
        return cls(
            story_id=data["story_id"],
            count=int(data.get("count", 0)),
            failures=[FailureEntry(**f) for f in data.get("failures", [])],
        )


@dataclass
class GitCheckpoint:
    """Safe rollback point captured when work on a story begins."""
    story_id: str
    revision_handle: str
    timestamp: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "GitCheckpoint":
        return cls(
            story_id=data["story_id"],
            revision_handle=data["revision_handle"],
            timestamp=data["timestamp"],
        )


@dataclass
class WorkflowState:
    """Process-wide workflow singleton."""
    active: bool = False
    phase: str = Phase.IDLE.value
    current_story_id: Optional[str] = None
    story_order: list[str] = field(default_factory=list)
    prd_path: Optional[str] = None
    started_at: Optional[str] = None
    stopped_at: Optional[str] = None
    degraded_exit: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowState":
        return cls(
            active=bool(data.get("active", False)),
            phase=data.get("phase", Phase.IDLE.value),
            current_story_id=data.get("current_story_id"),
            story_order=list(data.get("story_order", [])),
            prd_path=data.get("prd_path"),
            started_at=data.get("started_at"),
            stopped_at=data.get("stopped_at"),
            degraded_exit=bool(data.get("degraded_exit", False)),
        )


@dataclass
class EngineState:
    """Full typed view of everything in the state directory."""
    workflow: WorkflowState
    stories: dict[str, Story] = field(default_factory=dict)
    checkpoints: dict[str, dict[str, CheckpointRecord]] = field(default_factory=dict)
    iterations: dict[str, IterationRecord] = field(default_factory=dict)
    rollback_points: dict[str, GitCheckpoint] = field(default_factory=dict)

    def ordered_stories(self) -> list[Story]:
        """Stories in declared order; unlisted ones follow, sorted by id."""
        ordered = [self.stories[sid] for sid in self.workflow.story_order if sid in self.stories]
        listed = set(self.workflow.story_order)
        ordered.extend(self.stories[sid] for sid in sorted(self.stories) if sid not in listed)
        return ordered
