"""
ralph evidence write / verify - produce and check evidence artifacts.

`write` is what a validator calls after running; `verify` runs the same
checks the ledger and auditor apply, without recording anything.
"""

from pathlib import Path

from ralph.lib.constants import parse_checkpoint_kind
from ralph.workflow.engine import WorkflowEngine
from ralph.workflow.evidence import write_evidence


def cmd_evidence_write(args, engine: WorkflowEngine) -> int:
    kind = parse_checkpoint_kind(args.kind)
    out = Path(args.out) if args.out else engine.store.evidence_path(args.story_id, kind.value)
    record = write_evidence(
        out,
        args.result,
        detail=args.detail or [],
        story_id=args.story_id,
        kind=kind.value,
        producer=args.producer,
    )
    print(f"{out}")
    print(f"  result: {record['result']}  digest: {record['integrity_digest'][:12]}")
    return 0


def cmd_evidence_verify(args, engine: WorkflowEngine) -> int:
    result = engine.verifier.verify(args.ref, story_id=args.story, kind=args.kind)
    if not result.ok:
        print(f"REJECTED ({result.kind.value}): {result.detail}")
        return 1
    print(f"VERIFIED {result.value} (digest {result.digest[:12]})")
    return 0
