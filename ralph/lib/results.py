"""
Result types returned by engine components.

Expected outcomes (a denied edit, a rejected evidence artifact, a blocked
exit) come back as values the orchestrator inspects via `.ok`; only
unrecoverable conditions are raised.
"""

from dataclasses import dataclass, field
from enum import Enum


class RejectionKind(Enum):
    # Evidence verification
    MISSING = "missing"
    MALFORMED = "malformed"
    TAMPERED = "tampered"
    STALE = "stale"
    # Ledger / completion
    NO_EVIDENCE = "no-evidence"
    NO_RECORD = "no-record"
    NOT_PASS = "not-pass"
    DEPENDENCY_PENDING = "dependency-pending"
    ALREADY_PASSED = "already-passed"
    # Rollback
    NO_CHECKPOINT = "no-checkpoint"
    REVERT_FAILED = "revert-failed"
    DEPENDENTS_PASS = "dependents-pass"


@dataclass
class GateDecision:
    """ALLOW or DENY(reason) for a single attempted mutation."""
    allowed: bool
    path: str
    phase: str
    rule: str = ""
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.allowed


@dataclass
class VerifyResult:
    """Outcome of checking one evidence artifact."""
    evidence_ref: str
    value: str | None = None
    digest: str | None = None
    kind: RejectionKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.kind is None


@dataclass
class LedgerResult:
    """Accepted(actual value) or Rejected(kind) for a checkpoint write."""
    story_id: str
    checkpoint: str
    value: str | None = None
    kind: RejectionKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.kind is None


@dataclass
class FailureResult:
    story_id: str
    count: int
    escalate: bool
    kind: RejectionKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.kind is None


@dataclass
class RollbackResult:
    story_id: str
    kind: RejectionKind | None = None
    detail: str = ""
    conflict_path: str | None = None
    revision: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind is None


@dataclass
class CompletionResult:
    story_id: str
    kind: RejectionKind | None = None
    checkpoint: str | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.kind is None


@dataclass
class ExitResult:
    pending_ids: list[str] = field(default_factory=list)
    degraded: bool = False

    @property
    def ok(self) -> bool:
        return not self.pending_ids or self.degraded
