"""
ralph start / stop / status / next - workflow lifecycle and scheduling.
"""

import json
from pathlib import Path

from ralph.workflow.engine import WorkflowEngine


def cmd_start(args, engine: WorkflowEngine) -> int:
    """Load prd.json and activate the workflow."""
    doc = engine.start(Path(args.prd))
    print(f"Workflow active: {len(doc.stories)} stories from {args.prd} (v{doc.version})")
    print(f"Required checkpoints: {', '.join(k.value for k in doc.policy.required_checkpoints())}")
    print(f"Max attempts per story: {engine.max_iterations}")
    return 0


def cmd_stop(args, engine: WorkflowEngine) -> int:
    result = engine.stop(override=args.force)
    if not result.ok:
        print(f"BLOCKED: {len(result.pending_ids)} stories have not passed:")
        for story_id in result.pending_ids:
            print(f"  {story_id}")
        print("Use --force for a degraded exit.")
        return 1
    if result.degraded:
        print(f"Workflow stopped (DEGRADED, {len(result.pending_ids)} pending: {', '.join(result.pending_ids)})")
    else:
        print("Workflow stopped: all stories pass")
    return 0


def cmd_status(args, engine: WorkflowEngine) -> int:
    status = engine.status()
    if args.json:
        print(json.dumps(status, indent=2))
        return 0

    print(f"Workflow:  {'active' if status['active'] else 'inactive'}")
    print(f"Phase:     {status['phase']}")
    print(f"Current:   {status['current_story_id'] or '-'}")
    print(f"Attempts:  max {status['max_iterations']} per story")
    print()

    stories = status["stories"]
    done = sum(1 for s in stories if s["passes"])
    print(f"Stories:   {done}/{len(stories)} pass")
    for s in stories:
        if s["passes"]:
            marker = "[x]"
        elif s["blocked"]:
            marker = "[!]"
        else:
            marker = "[ ]"
        deps = f" (after {', '.join(s['depends_on'])})" if s["depends_on"] else ""
        print(f"  {marker} {s['id']}: {s['title']}{deps}")
        if s["iterations"]:
            print(f"      attempts: {s['iterations']}/{status['max_iterations']}")
        if s["blocked"]:
            print(f"      blocked: {s['blocked']}")

    if status["ready"]:
        print()
        print(f"Ready:     {', '.join(status['ready'])}")
    return 0


def cmd_next(args, engine: WorkflowEngine) -> int:
    """Print the next ready story id (or every ready id with --batch)."""
    if args.batch:
        batch = engine.ready_batch()
        for story in batch:
            print(story.id)
        return 0 if batch else 1

    story = engine.next_ready()
    if story is None:
        return 1
    print(story.id)
    return 0
