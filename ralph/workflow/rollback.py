"""
Rollback orchestrator.

When a story exhausts its iteration budget: revert the working tree to the
revision captured when the story began, clear its checkpoint records and
iteration counter, and leave a conflict artifact for human escalation.

Conflict artifact schema (ralph/schemas/conflict.schema.json):

    {
      "story_id": str, "title": str, "acceptance_criteria": [str],
      "failure_history": [{attempt, timestamp, reason, validator_snapshot}],
      "last_checkpoints": {kind: {value, timestamp, evidence_ref, integrity_hash}},
      "revision_handle": str, "created_at": str, "max_iterations": int
    }

A failed rollback marks the story blocked; there is no further automatic
recovery for it. A story that passing stories still depend on is never
rolled back; the request is refused and nothing is touched.
"""

import logging
from pathlib import Path

from ralph import git
from ralph.lib.clock import Clock, to_iso, utc_now
from ralph.lib.results import RejectionKind, RollbackResult
from ralph.state.locking import story_lock
from ralph.state.models import GitCheckpoint
from ralph.state.store import StateStore
from ralph.workflow.iteration import IterationGuard
from ralph.workflow.ledger import CheckpointLedger

logger = logging.getLogger(__name__)


class RollbackOrchestrator:
    def __init__(
        self,
        store: StateStore,
        ledger: CheckpointLedger,
        guard: IterationGuard,
        project_root: Path,
        preserve: list[str] | None = None,
        lock_timeout: float = 30,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.ledger = ledger
        self.guard = guard
        self.project_root = Path(project_root)
        self.preserve = list(preserve or [])   # repo-relative paths a revert must not touch
        self.lock_timeout = lock_timeout
        self.clock = clock

    def capture(self, story_id: str) -> GitCheckpoint | None:
        """Record the rollback point for a story, once.

        Returns the existing point if one was already captured, or None if
        the project has no git revision to return to.
        """
        with story_lock(self.store.state_dir, story_id, self.lock_timeout):
            story = self.store.require_story(story_id)
            existing = self.store.load_rollback_point(story_id)
            if existing is not None:
                return existing

            revision = git.get_head_revision(self.project_root)
            if revision is None:
                logger.warning(f"[ROLLBACK] {story_id}: no git revision at {self.project_root}; no rollback point")
                return None
            if git.has_uncommitted_changes(self.project_root, exclude=self.preserve):
                logger.warning(
                    f"[ROLLBACK] {story_id}: uncommitted changes present; rollback returns to HEAD {revision[:8]}"
                )

            point = GitCheckpoint(story_id=story_id, revision_handle=revision, timestamp=to_iso(self.clock()))
            self.store.save_rollback_point(point)
            story.last_checkpoint_ref = revision
            self.store.save_story(story)

        logger.info(f"[ROLLBACK] {story_id}: rollback point {revision[:8]}")
        return point

    def rollback(self, story_id: str) -> RollbackResult:
        """Revert a story to its rollback point. Returns Rolled or Failed(reason)."""
        with story_lock(self.store.state_dir, story_id, self.lock_timeout):
            story = self.store.require_story(story_id)
            dependents = self.passing_dependents(story_id)
            if dependents:
                # Not a failed revert: nothing was touched, so the story is not blocked.
                detail = f"passing stories depend on it: {', '.join(dependents)}"
                logger.warning(f"[ROLLBACK] {story_id}: refused, {detail}")
                return RollbackResult(story_id=story_id, kind=RejectionKind.DEPENDENTS_PASS, detail=detail)

            point = self.store.load_rollback_point(story_id)
            if point is None:
                return self._fail(story_id, RejectionKind.NO_CHECKPOINT, "no rollback point recorded for story")

            reverted = git.revert_to_revision(self.project_root, point.revision_handle, exclude=self.preserve)
            if not reverted.success:
                detail = reverted.stderr.strip() or f"git exited {reverted.returncode}"
                return self._fail(story_id, RejectionKind.REVERT_FAILED, detail, revision=point.revision_handle)

            checkpoints = self.store.load_checkpoints(story_id)
            history = self.store.load_iteration(story_id)
            artifact = {
                "story_id": story.id,
                "title": story.title,
                "acceptance_criteria": list(story.acceptance_criteria),
                "failure_history": [
                    {
                        "attempt": f.attempt,
                        "timestamp": f.timestamp,
                        "reason": f.reason,
                        "validator_snapshot": f.validator_snapshot,
                    }
                    for f in history.failures
                ],
                "last_checkpoints": {
                    name: {
                        "value": cp.value,
                        "timestamp": cp.timestamp,
                        "evidence_ref": cp.evidence_ref,
                        "integrity_hash": cp.integrity_hash,
                    }
                    for name, cp in checkpoints.items()
                },
                "revision_handle": point.revision_handle,
                "created_at": to_iso(self.clock()),
                "max_iterations": self.guard.max_iterations,
            }
            conflict_path = self.store.write_conflict(story_id, artifact)

            self.ledger.clear(story_id, already_locked=True)
            self.guard.clear(story_id, already_locked=True)

            story = self.store.require_story(story_id)
            story.passes = False
            story.validated_at = None
            story.completed_at = None
            story.started_at = None
            story.last_checkpoint_ref = None
            self.store.save_story(story)
            # The point is consumed; the next begin captures a fresh one.
            self.store.delete_rollback_point(story_id)

        logger.warning(
            f"[ROLLBACK] {story_id}: reverted to {point.revision_handle[:8]}, "
            f"{len(history.failures)} failure(s) escalated to {conflict_path}"
        )
        return RollbackResult(story_id=story_id, conflict_path=str(conflict_path), revision=point.revision_handle)

    def passing_dependents(self, story_id: str) -> list[str]:
        """IDs of passing stories that list story_id in depends_on."""
        return [s.id for s in self.store.load_stories() if s.passes and story_id in s.depends_on]

    def _fail(self, story_id: str, kind: RejectionKind, detail: str, revision: str | None = None) -> RollbackResult:
        story = self.store.require_story(story_id)
        story.blocked_reason = f"rollback failed ({kind.value}): {detail}"
        self.store.save_story(story)
        logger.error(f"[ROLLBACK] {story_id}: {story.blocked_reason}; manual intervention required")
        return RollbackResult(story_id=story_id, kind=kind, detail=detail, revision=revision)
