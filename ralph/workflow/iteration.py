"""
Iteration guard.

Counts failed validation attempts per story. Once the count reaches the
bound, record_failure reports escalate=True and the caller must roll the
story back before doing more work on it. The guard never rolls back
itself, so the escalation point stays visible to the orchestrator.
"""

import logging

from ralph.lib.clock import Clock, to_iso, utc_now
from ralph.lib.results import FailureResult, RejectionKind
from ralph.state.locking import story_lock
from ralph.state.models import FailureEntry, IterationRecord
from ralph.state.store import StateStore

logger = logging.getLogger(__name__)


class IterationGuard:
    def __init__(self, store: StateStore, max_iterations: int, lock_timeout: float = 30, clock: Clock = utc_now):
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self.store = store
        self.max_iterations = max_iterations
        self.lock_timeout = lock_timeout
        self.clock = clock

    def record_failure(self, story_id: str, reason: str, validator_snapshot: dict | None = None) -> FailureResult:
        """Append one failure and report whether the story must escalate.

        When validator_snapshot is None, the story's current checkpoint
        values are captured instead.
        """
        with story_lock(self.store.state_dir, story_id, self.lock_timeout):
            story = self.store.require_story(story_id)
            record = self.store.load_iteration(story_id)
            if story.passes:
                logger.warning(f"[GUARD] {story_id}: failure not counted, story already passes")
                return FailureResult(
                    story_id=story_id, count=record.count, escalate=False,
                    kind=RejectionKind.ALREADY_PASSED,
                    detail=f"story '{story_id}' already passes",
                )

            if validator_snapshot is None:
                validator_snapshot = {
                    name: cp.value for name, cp in self.store.load_checkpoints(story_id).items()
                }

            record.count += 1
            record.failures.append(FailureEntry(
                attempt=record.count,
                timestamp=to_iso(self.clock()),
                reason=reason,
                validator_snapshot=dict(validator_snapshot),
            ))
            self.store.save_iteration(record)

            story.iteration_count = record.count
            self.store.save_story(story)

        escalate = record.count >= self.max_iterations
        if escalate:
            logger.warning(
                f"[GUARD] {story_id}: attempt {record.count}/{self.max_iterations} failed ({reason}); "
                "iteration budget exhausted, rollback required"
            )
        else:
            logger.info(f"[GUARD] {story_id}: attempt {record.count}/{self.max_iterations} failed ({reason})")
        return FailureResult(story_id=story_id, count=record.count, escalate=escalate)

    def get(self, story_id: str) -> IterationRecord:
        return self.store.load_iteration(story_id)

    def is_exhausted(self, story_id: str) -> bool:
        """True once the story must be rolled back before any retry."""
        return self.store.load_iteration(story_id).count >= self.max_iterations

    def clear(self, story_id: str, already_locked: bool = False) -> None:
        """Reset the counter (after success or rollback)."""
        if not already_locked:
            with story_lock(self.store.state_dir, story_id, self.lock_timeout):
                self._clear(story_id)
        else:
            self._clear(story_id)

    def _clear(self, story_id: str) -> None:
        story = self.store.require_story(story_id)
        self.store.clear_iteration(story_id)
        story.iteration_count = 0
        self.store.save_story(story)
        logger.info(f"[GUARD] {story_id}: iteration counter reset")
