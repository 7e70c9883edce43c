"""
Workflow engine facade.

Wires the state store, phase gate, evidence verifier, checkpoint ledger,
scheduler, iteration guard, rollback orchestrator and completion auditor
for the external orchestrator and the CLI. Every call is a fresh
load -> decide -> save cycle; nothing is held between calls, so the
engine can be restarted mid-pipeline.
"""

import logging
from pathlib import Path

from ralph.lib.clock import Clock, to_iso, utc_now
from ralph.lib.config import (
    EngineConfig,
    ProjectPolicy,
    effective_max_iterations,
    load_engine_config,
    load_project_policy,
)
from ralph.lib.constants import CheckpointKind, Phase
from ralph.lib.path_rules import load_path_rules
from ralph.lib.results import (
    CompletionResult,
    ExitResult,
    FailureResult,
    GateDecision,
    LedgerResult,
    RejectionKind,
    RollbackResult,
)
from ralph.pm.prd import PrdDocument, load_prd, read_prd_config
from ralph.state.locking import story_lock, workflow_lock
from ralph.state.models import Story
from ralph.state.store import StateStore
from ralph.workflow import phase_gate, scheduler
from ralph.workflow.auditor import CompletionAuditor
from ralph.workflow.evidence import EvidenceVerifier
from ralph.workflow.iteration import IterationGuard
from ralph.workflow.ledger import CheckpointLedger
from ralph.workflow.phases import transition, transition_locked
from ralph.workflow.rollback import RollbackOrchestrator

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """An engine action was refused."""


class WorkflowInactive(WorkflowError):
    def __init__(self):
        super().__init__("Workflow is not active; run 'ralph start' first")


class StoryNotReady(WorkflowError):
    def __init__(self, story_id: str, reason: str):
        self.story_id = story_id
        self.reason = reason
        super().__init__(f"Story '{story_id}' cannot start: {reason}")


def relative_to_root(path: Path, root: Path) -> str | None:
    """path relative to root as POSIX text, or None if it lies outside."""
    try:
        return Path(path).resolve().relative_to(Path(root).resolve()).as_posix()
    except ValueError:
        return None


class WorkflowEngine:
    def __init__(self, config: EngineConfig, policy: ProjectPolicy | None = None, clock: Clock = utc_now):
        self.config = config
        self.clock = clock
        self.store = StateStore(config.state_dir)
        self.state_rel = relative_to_root(config.state_dir, config.project_root)
        self.rules = load_path_rules(config.state_dir, self.state_rel)
        self._wire(policy or ProjectPolicy())

    def _wire(self, policy: ProjectPolicy) -> None:
        cfg = self.config
        self.policy = policy
        self.max_iterations = effective_max_iterations(cfg, policy)
        self.verifier = EvidenceVerifier(cfg.project_root, cfg.freshness_window_seconds, clock=self.clock)
        self.ledger = CheckpointLedger(self.store, self.verifier, cfg.lock_timeout, clock=self.clock)
        self.guard = IterationGuard(self.store, self.max_iterations, cfg.lock_timeout, clock=self.clock)
        self.rollbacks = RollbackOrchestrator(
            self.store,
            self.ledger,
            self.guard,
            cfg.project_root,
            preserve=[self.state_rel] if self.state_rel and self.state_rel != "." else [],
            lock_timeout=cfg.lock_timeout,
            clock=self.clock,
        )
        self.auditor = CompletionAuditor(
            self.store,
            self.verifier,
            self.guard,
            policy.required_checkpoints(),
            cfg.lock_timeout,
            clock=self.clock,
        )

    @classmethod
    def open(cls, state_dir: Path, project_root: Path | None = None, clock: Clock = utc_now) -> "WorkflowEngine":
        """Build an engine from ralph.env plus the policy of the last started prd."""
        config = load_engine_config(state_dir, project_root)
        engine = cls(config, clock=clock)
        prd_path = engine.store.load_workflow().prd_path
        if prd_path and Path(prd_path).exists():
            engine._wire(load_project_policy(read_prd_config(Path(prd_path))))
        return engine

    # -- lifecycle -------------------------------------------------------------

    def start(self, prd_path: Path) -> PrdDocument:
        """Load the story graph and activate the workflow.

        Raises ValidationError for a bad prd.json and StoryGraphError for a
        cycle or unknown dependency; the workflow stays inactive in both cases.
        """
        doc = load_prd(prd_path)
        self._wire(doc.policy)

        with workflow_lock(self.store.state_dir, self.config.lock_timeout):
            for story in doc.stories:
                with story_lock(self.store.state_dir, story.id, self.config.lock_timeout):
                    existing = self.store.load_story(story.id)
                    if existing is None:
                        self.store.save_story(story)
                        continue
                    existing.title = story.title
                    existing.depends_on = story.depends_on
                    existing.acceptance_criteria = story.acceptance_criteria
                    self.store.save_story(existing)

            listed = {s.id for s in doc.stories}
            for story_id in self.store.list_story_ids():
                if story_id in listed:
                    continue
                with story_lock(self.store.state_dir, story_id, self.config.lock_timeout):
                    archive = self.store.archive_story(story_id)
                logger.warning(f"[STATE] {story_id} is no longer in {prd_path}; records moved to {archive}")

            workflow = self.store.load_workflow()
            if not workflow.active:
                workflow.active = True
                workflow.phase = Phase.IDLE.value
                workflow.current_story_id = None
                workflow.started_at = to_iso(self.clock())
                workflow.stopped_at = None
                workflow.degraded_exit = False
            elif workflow.current_story_id and workflow.current_story_id not in listed:
                logger.warning(f"[STATE] current story {workflow.current_story_id} was dropped; phase reset to idle")
                workflow.phase = Phase.IDLE.value
                workflow.current_story_id = None
            workflow.story_order = [s.id for s in doc.stories]
            workflow.prd_path = str(prd_path)
            self.store.save_workflow(workflow)

        logger.info(f"[STATE] workflow active with {len(doc.stories)} stories, max {self.max_iterations} attempts")
        return doc

    def stop(self, override: bool = False) -> ExitResult:
        """Tear the workflow down if every story passes (or override is given)."""
        with workflow_lock(self.store.state_dir, self.config.lock_timeout):
            result = self.auditor.can_exit_workflow(self.store.load_stories(), override=override)
            if not result.ok:
                return result
            workflow = self.store.load_workflow()
            workflow.active = False
            workflow.phase = Phase.IDLE.value
            workflow.current_story_id = None
            workflow.stopped_at = to_iso(self.clock())
            workflow.degraded_exit = result.degraded
            self.store.save_workflow(workflow)
        logger.info(f"[STATE] workflow stopped{' (degraded)' if result.degraded else ''}")
        return result

    def _require_active(self):
        workflow = self.store.load_workflow()
        if not workflow.active:
            raise WorkflowInactive()
        return workflow

    # -- scheduling ------------------------------------------------------------

    def stories(self) -> list[Story]:
        return self.store.load_stories()

    def next_ready(self) -> Story | None:
        return scheduler.next_ready(self.stories())

    def ready_batch(self) -> list[Story]:
        return scheduler.ready_batch(self.stories())

    def begin_story(self, story_id: str) -> Story:
        """Start work on a story: capture its rollback point and enter author-tests.

        Raises:
            WorkflowInactive, StoryNotReady, InvalidPhaseTransition
        """
        self._require_active()
        stories = self.stories()
        story = self.store.require_story(story_id)

        if story.passes:
            raise StoryNotReady(story_id, "story already passes")
        if story.blocked_reason:
            raise StoryNotReady(story_id, f"story is blocked: {story.blocked_reason}")
        pending = scheduler.pending_dependencies(story, stories)
        if pending:
            raise StoryNotReady(story_id, f"waiting on {', '.join(pending)}")
        if self.guard.is_exhausted(story_id):
            raise StoryNotReady(story_id, "iteration budget exhausted; roll back first")

        with workflow_lock(self.store.state_dir, self.config.lock_timeout):
            workflow = self.store.load_workflow()
            if workflow.phase != Phase.IDLE.value:
                owner = workflow.current_story_id or "another story"
                if owner == story_id:
                    logger.info(f"[STATE] {story_id} already in progress ({workflow.phase})")
                    return story
                raise StoryNotReady(story_id, f"{owner} is in phase {workflow.phase}")
            transition_locked(self.store, Phase.AUTHOR_TESTS, reason=f"begin {story_id}")
            workflow = self.store.load_workflow()
            workflow.current_story_id = story_id
            self.store.save_workflow(workflow)

        self.rollbacks.capture(story_id)
        with story_lock(self.store.state_dir, story_id, self.config.lock_timeout):
            story = self.store.require_story(story_id)
            if story.started_at is None:
                story.started_at = to_iso(self.clock())
                self.store.save_story(story)

        logger.info(f"[STATE] began story {story_id}")
        return story

    def set_phase(self, phase: Phase, reason: str = "") -> None:
        self._require_active()
        transition(self.store, phase, reason=reason, lock_timeout=self.config.lock_timeout)

    # -- per-step calls ----------------------------------------------------------

    def can_edit(self, path: str | Path) -> GateDecision:
        phase = self.store.load_workflow().phase
        return phase_gate.can_edit(phase, path, self.rules, self.config.project_root)

    def record_checkpoint(
        self,
        story_id: str,
        kind: str | CheckpointKind,
        claimed_value=None,
        evidence_ref: str | None = None,
    ) -> LedgerResult:
        return self.ledger.record(story_id, kind, claimed_value, evidence_ref)

    def record_failure(self, story_id: str, reason: str, validator_snapshot: dict | None = None) -> FailureResult:
        """Count a failed validation. While budget remains, validate returns to implement."""
        result = self.guard.record_failure(story_id, reason, validator_snapshot)
        if result.ok and not result.escalate:
            workflow = self.store.load_workflow()
            if workflow.current_story_id == story_id and workflow.phase == Phase.VALIDATE.value:
                self.set_phase(Phase.IMPLEMENT, reason=f"retry {result.count}")
        return result

    def rollback(self, story_id: str) -> RollbackResult:
        result = self.rollbacks.rollback(story_id)
        if result.kind is RejectionKind.DEPENDENTS_PASS:
            return result
        self._release_current(story_id, reason="rollback")
        return result

    def audit(self, story_id: str) -> CompletionResult:
        return self.auditor.audit(story_id)

    def mark_complete(self, story_id: str) -> CompletionResult:
        result = self.auditor.mark_complete(story_id)
        if result.ok:
            self._release_current(story_id, reason="story complete")
        return result

    def _release_current(self, story_id: str, reason: str) -> None:
        with workflow_lock(self.store.state_dir, self.config.lock_timeout):
            workflow = self.store.load_workflow()
            if workflow.current_story_id != story_id:
                return
            if workflow.phase != Phase.IDLE.value:
                transition_locked(self.store, Phase.IDLE, reason=reason)
            else:
                workflow.current_story_id = None
                self.store.save_workflow(workflow)

    def unblock(self, story_id: str) -> Story:
        """Clear a failed-rollback block after manual intervention."""
        with story_lock(self.store.state_dir, story_id, self.config.lock_timeout):
            story = self.store.require_story(story_id)
            story.blocked_reason = None
            self.store.save_story(story)
        logger.info(f"[STATE] {story_id}: unblocked")
        return story

    def can_exit(self, override: bool = False) -> ExitResult:
        return self.auditor.can_exit_workflow(self.stories(), override=override)

    def status(self) -> dict:
        state = self.store.load()
        stories = state.ordered_stories()
        return {
            "active": state.workflow.active,
            "phase": state.workflow.phase,
            "current_story_id": state.workflow.current_story_id,
            "max_iterations": self.max_iterations,
            "required_checkpoints": [k.value for k in self.policy.required_checkpoints()],
            "parallel_build": self.policy.parallel_build,
            "parallel_validate": self.policy.parallel_validate,
            "stories": [
                {
                    "id": s.id,
                    "title": s.title,
                    "passes": s.passes,
                    "iterations": s.iteration_count,
                    "blocked": s.blocked_reason,
                    "checkpoints": s.checkpoints,
                    "depends_on": s.depends_on,
                }
                for s in stories
            ],
            "ready": [s.id for s in scheduler.ready_batch(stories)],
        }
