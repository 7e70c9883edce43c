"""
Checkpoint ledger.

Self-report kinds (tests_written, build_complete, cleanup_complete) are
written as claimed. Verified kinds require an evidence reference; the
value written is the one recomputed from the evidence, and the caller's
claim is ignored. A rejected artifact blocks the write entirely.
"""

import logging

from ralph.lib.clock import Clock, to_iso, utc_now
from ralph.lib.constants import CheckpointKind, normalize_value, parse_checkpoint_kind
from ralph.lib.results import LedgerResult, RejectionKind
from ralph.state.locking import story_lock
from ralph.state.models import CheckpointRecord
from ralph.state.store import StateStore
from ralph.workflow.evidence import EvidenceVerifier

logger = logging.getLogger(__name__)


class CheckpointLedger:
    def __init__(self, store: StateStore, verifier: EvidenceVerifier, lock_timeout: float = 30, clock: Clock = utc_now):
        self.store = store
        self.verifier = verifier
        self.lock_timeout = lock_timeout
        self.clock = clock

    def record(
        self,
        story_id: str,
        name: str | CheckpointKind,
        claimed_value=None,
        evidence_ref: str | None = None,
    ) -> LedgerResult:
        """Record one checkpoint outcome for a story.

        Returns Accepted(actual value) or Rejected(kind). Raises ValueError
        for an unknown checkpoint name or a malformed self-reported value,
        UnknownStoryError for an unknown story.
        """
        kind = name if isinstance(name, CheckpointKind) else parse_checkpoint_kind(name)

        with story_lock(self.store.state_dir, story_id, self.lock_timeout):
            story = self.store.require_story(story_id)
            if story.passes:
                # passes is one-way; its checkpoints are frozen until a rollback.
                logger.warning(f"[LEDGER] {story_id}/{kind.value}: rejected, story already passes")
                return LedgerResult(
                    story_id=story_id, checkpoint=kind.value, kind=RejectionKind.ALREADY_PASSED,
                    detail=f"story '{story_id}' already passes; its checkpoints are frozen",
                )

            if kind.verified:
                if not evidence_ref:
                    logger.warning(f"[LEDGER] {story_id}/{kind.value}: rejected, no evidence reference")
                    return LedgerResult(
                        story_id=story_id, checkpoint=kind.value, kind=RejectionKind.NO_EVIDENCE,
                        detail=f"{kind.value} is a verified checkpoint and needs an evidence artifact",
                    )
                verdict = self.verifier.verify(evidence_ref, story_id=story_id, kind=kind.value)
                if not verdict.ok:
                    return LedgerResult(
                        story_id=story_id, checkpoint=kind.value, kind=verdict.kind, detail=verdict.detail,
                    )
                if claimed_value is not None:
                    try:
                        claimed = normalize_value(claimed_value)
                    except ValueError:
                        claimed = str(claimed_value)
                    if claimed != verdict.value:
                        logger.info(
                            f"[LEDGER] {story_id}/{kind.value}: claimed {claimed}, evidence says {verdict.value}"
                        )
                record = CheckpointRecord(
                    story_id=story_id,
                    name=kind.value,
                    value=verdict.value,
                    timestamp=to_iso(self.clock()),
                    integrity_hash=verdict.digest,
                    evidence_ref=evidence_ref,
                )
            else:
                record = CheckpointRecord(
                    story_id=story_id,
                    name=kind.value,
                    value=normalize_value(claimed_value),
                    timestamp=to_iso(self.clock()),
                    evidence_ref=evidence_ref,
                )

            self.store.save_checkpoint(record)
            story.checkpoints[kind.value] = record.passed
            self.store.save_story(story)

        logger.info(f"[LEDGER] {story_id}/{kind.value} = {record.value}")
        return LedgerResult(story_id=story_id, checkpoint=kind.value, value=record.value)

    def get(self, story_id: str, name: str | CheckpointKind) -> CheckpointRecord | None:
        kind = name if isinstance(name, CheckpointKind) else parse_checkpoint_kind(name)
        return self.store.load_checkpoint(story_id, kind.value)

    def records(self, story_id: str) -> dict[str, CheckpointRecord]:
        return self.store.load_checkpoints(story_id)

    def clear(self, story_id: str, already_locked: bool = False) -> int:
        """Remove all checkpoint records for a story and empty its cached view.

        Pass already_locked=True when the caller already holds the story lock.
        """
        if not already_locked:
            with story_lock(self.store.state_dir, story_id, self.lock_timeout):
                return self._clear(story_id)
        return self._clear(story_id)

    def _clear(self, story_id: str) -> int:
        story = self.store.require_story(story_id)
        removed = self.store.clear_checkpoints(story_id)
        story.checkpoints = {}
        self.store.save_story(story)
        logger.info(f"[LEDGER] {story_id}: cleared {removed} checkpoint record(s)")
        return removed
