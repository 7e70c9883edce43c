"""
ralph begin / phase / gate / checkpoint / fail / rollback / complete / audit / unblock

Per-story calls made by the orchestrator while a story moves through the
pipeline. Rejections print a reason and return 1.
"""

from ralph.lib.constants import parse_phase
from ralph.lib.results import RejectionKind
from ralph.workflow.engine import WorkflowEngine


def cmd_begin(args, engine: WorkflowEngine) -> int:
    story = engine.begin_story(args.story_id)
    print(f"Started {story.id}: {story.title}")
    return 0


def cmd_phase(args, engine: WorkflowEngine) -> int:
    phase = parse_phase(args.phase)
    if phase is None:
        print(f"ERROR: Unknown phase '{args.phase}'")
        return 2
    engine.set_phase(phase, reason=args.reason or "")
    print(f"Phase: {phase.value}")
    return 0


def cmd_gate(args, engine: WorkflowEngine) -> int:
    """Check every path; exit 1 if any edit is denied."""
    denied = 0
    for path in args.paths:
        decision = engine.can_edit(path)
        if decision.allowed:
            print(f"ALLOW {decision.path}")
        else:
            denied += 1
            print(f"DENY  {decision.path}: {decision.reason}")
    return 1 if denied else 0


def cmd_checkpoint(args, engine: WorkflowEngine) -> int:
    result = engine.record_checkpoint(args.story_id, args.kind, args.value, evidence_ref=args.evidence)
    if not result.ok:
        print(f"REJECTED {args.story_id}/{result.checkpoint} ({result.kind.value}): {result.detail}")
        return 1
    print(f"{args.story_id}/{result.checkpoint} = {result.value}")
    return 0


def cmd_fail(args, engine: WorkflowEngine) -> int:
    """Record a failed validation. Exit 1 once the story must be rolled back."""
    result = engine.record_failure(args.story_id, args.reason)
    if not result.ok:
        print(f"REJECTED {args.story_id} ({result.kind.value}): {result.detail}")
        return 1
    print(f"{args.story_id}: attempt {result.count}/{engine.max_iterations} failed")
    if result.escalate:
        print(f"ESCALATE: run 'ralph rollback {args.story_id}'")
        return 1
    return 0


def cmd_rollback(args, engine: WorkflowEngine) -> int:
    result = engine.rollback(args.story_id)
    if result.kind is RejectionKind.DEPENDENTS_PASS:
        print(f"ROLLBACK REFUSED: {result.detail}")
        return 1
    if not result.ok:
        print(f"ROLLBACK FAILED ({result.kind.value}): {result.detail}")
        print(f"{args.story_id} is blocked; fix manually then run 'ralph unblock {args.story_id}'")
        return 1
    print(f"{args.story_id}: reverted to {result.revision[:8]}")
    print(f"Conflict artifact: {result.conflict_path}")
    return 0


def _print_completion(result) -> int:
    if result.ok:
        return 0
    where = f"/{result.checkpoint}" if result.checkpoint else ""
    print(f"NOT COMPLETE {result.story_id}{where} ({result.kind.value}): {result.detail}")
    return 1


def cmd_audit(args, engine: WorkflowEngine) -> int:
    result = engine.audit(args.story_id)
    if result.ok:
        print(f"{args.story_id}: all required checkpoints verify")
    return _print_completion(result)


def cmd_complete(args, engine: WorkflowEngine) -> int:
    result = engine.mark_complete(args.story_id)
    if result.ok:
        print(f"{args.story_id}: complete")
    return _print_completion(result)


def cmd_unblock(args, engine: WorkflowEngine) -> int:
    story = engine.unblock(args.story_id)
    print(f"{story.id}: unblocked")
    return 0
