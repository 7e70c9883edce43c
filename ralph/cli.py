#!/usr/bin/env python3
"""Ralph workflow engine CLI entrypoint.

Exit codes: 0 ok, 1 rejected or blocked, 2 configuration or usage error,
3 fatal (corrupt state, unusable story graph).
"""

import sys
import argparse
import logging
from pathlib import Path

from ralph.lib.constants import DEFAULT_PRD_PATH, DEFAULT_STATE_DIR, CheckpointKind, Phase
from ralph.lib.validate import ValidationError
from ralph.state.locking import LockTimeout
from ralph.state.store import CorruptState, UnknownStoryError
from ralph.workflow.engine import WorkflowEngine, WorkflowError
from ralph.workflow.phases import InvalidPhaseTransition
from ralph.workflow.scheduler import StoryGraphError
from ralph.commands import lifecycle as cmd_lifecycle_module
from ralph.commands import story as cmd_story_module
from ralph.commands import evidence as cmd_evidence_module
from ralph.commands import prd as cmd_prd_module
from ralph.commands import scan as cmd_scan_module

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_USAGE = 2
EXIT_FATAL = 3


def get_engine(args) -> WorkflowEngine:
    """Open the engine over --state-dir (ralph.env and prd policy applied)."""
    return WorkflowEngine.open(Path(args.state_dir))


def with_engine(handler):
    """Adapt a commands/* handler taking (args, engine) to argparse's func(args)."""
    def run(args):
        return handler(args, get_engine(args))
    return run


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='ralph', description='Ralph story workflow engine')
    parser.add_argument('--state-dir', default=DEFAULT_STATE_DIR, help=f'State directory (default: {DEFAULT_STATE_DIR})')
    parser.add_argument('--prd', default=DEFAULT_PRD_PATH, help=f'Story graph file (default: {DEFAULT_PRD_PATH})')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # ralph start
    p_start = subparsers.add_parser('start', help='Load prd.json and activate the workflow')
    p_start.set_defaults(func=with_engine(cmd_lifecycle_module.cmd_start))

    # ralph stop
    p_stop = subparsers.add_parser('stop', help='Exit the workflow once every story passes')
    p_stop.add_argument('--force', action='store_true', help='Degraded exit with stories pending')
    p_stop.set_defaults(func=with_engine(cmd_lifecycle_module.cmd_stop))

    # ralph status
    p_status = subparsers.add_parser('status', help='Show workflow and story status')
    p_status.add_argument('--json', action='store_true', help='Machine-readable output')
    p_status.set_defaults(func=with_engine(cmd_lifecycle_module.cmd_status))

    # ralph next
    p_next = subparsers.add_parser('next', help='Print the next ready story (exit 1 if none)')
    p_next.add_argument('--batch', action='store_true', help='Print every ready story')
    p_next.set_defaults(func=with_engine(cmd_lifecycle_module.cmd_next))

    # ralph begin
    p_begin = subparsers.add_parser('begin', help='Start work on a story')
    p_begin.add_argument('story_id', help='Story ID (e.g., US-001)')
    p_begin.set_defaults(func=with_engine(cmd_story_module.cmd_begin))

    # ralph phase
    p_phase = subparsers.add_parser('phase', help='Move the workflow to another phase')
    p_phase.add_argument('phase', choices=[p.value for p in Phase])
    p_phase.add_argument('--reason', '-r', help='Reason for the transition')
    p_phase.set_defaults(func=with_engine(cmd_story_module.cmd_phase))

    # ralph gate
    p_gate = subparsers.add_parser('gate', help='May the current phase edit these paths?')
    p_gate.add_argument('paths', nargs='+', help='Paths to check')
    p_gate.set_defaults(func=with_engine(cmd_story_module.cmd_gate))

    # ralph checkpoint
    p_checkpoint = subparsers.add_parser('checkpoint', help='Record a checkpoint outcome')
    p_checkpoint.add_argument('story_id', help='Story ID')
    p_checkpoint.add_argument('kind', choices=[k.value for k in CheckpointKind])
    p_checkpoint.add_argument('value', nargs='?', help='PASS or FAIL:<reason> (claimed; verified kinds use the evidence)')
    p_checkpoint.add_argument('--evidence', '-e', help='Evidence artifact (required for verified kinds)')
    p_checkpoint.set_defaults(func=with_engine(cmd_story_module.cmd_checkpoint))

    # ralph fail
    p_fail = subparsers.add_parser('fail', help='Record a failed validation (exit 1 when rollback is required)')
    p_fail.add_argument('story_id', help='Story ID')
    p_fail.add_argument('reason', help='Why validation failed')
    p_fail.set_defaults(func=with_engine(cmd_story_module.cmd_fail))

    # ralph rollback
    p_rollback = subparsers.add_parser('rollback', help='Revert a story to its rollback point')
    p_rollback.add_argument('story_id', help='Story ID')
    p_rollback.set_defaults(func=with_engine(cmd_story_module.cmd_rollback))

    # ralph complete
    p_complete = subparsers.add_parser('complete', help='Mark a story complete after re-verification')
    p_complete.add_argument('story_id', help='Story ID')
    p_complete.set_defaults(func=with_engine(cmd_story_module.cmd_complete))

    # ralph audit
    p_audit = subparsers.add_parser('audit', help='Check whether a story could be completed')
    p_audit.add_argument('story_id', help='Story ID')
    p_audit.set_defaults(func=with_engine(cmd_story_module.cmd_audit))

    # ralph unblock
    p_unblock = subparsers.add_parser('unblock', help='Clear a failed-rollback block')
    p_unblock.add_argument('story_id', help='Story ID')
    p_unblock.set_defaults(func=with_engine(cmd_story_module.cmd_unblock))

    # ralph evidence
    p_evidence = subparsers.add_parser('evidence', help='Write or verify evidence artifacts')
    evidence_sub = p_evidence.add_subparsers(dest='evidence_cmd', required=True)

    # ralph evidence write
    p_ev_write = evidence_sub.add_parser('write', help='Write a signed evidence artifact')
    p_ev_write.add_argument('story_id', help='Story ID')
    p_ev_write.add_argument('kind', choices=[k.value for k in CheckpointKind if k.verified])
    p_ev_write.add_argument('result', choices=['PASS', 'FAIL'])
    p_ev_write.add_argument('--detail', '-d', action='append', help='Detail line (repeatable)')
    p_ev_write.add_argument('--producer', help='Validator that produced the result')
    p_ev_write.add_argument('--out', '-o', help='Output path (default: <state-dir>/evidence/<id>/<kind>.json)')
    p_ev_write.set_defaults(func=with_engine(cmd_evidence_module.cmd_evidence_write))

    # ralph evidence verify
    p_ev_verify = evidence_sub.add_parser('verify', help='Check an evidence artifact')
    p_ev_verify.add_argument('ref', help='Evidence path')
    p_ev_verify.add_argument('--story', help='Expected story ID')
    p_ev_verify.add_argument('--kind', help='Expected checkpoint kind')
    p_ev_verify.set_defaults(func=with_engine(cmd_evidence_module.cmd_evidence_verify))

    # ralph migrate
    p_migrate = subparsers.add_parser('migrate', help='Upgrade prd.json to v3')
    p_migrate.add_argument('--dry-run', action='store_true', help='Report changes without writing')
    p_migrate.set_defaults(func=cmd_prd_module.cmd_migrate)

    # ralph scan
    p_scan = subparsers.add_parser('scan', help='Advisory scan for leftover test/debug markers')
    p_scan.add_argument('paths', nargs='+', help='Files or directories')
    p_scan.add_argument('--json', action='store_true', help='Machine-readable output')
    p_scan.set_defaults(func=cmd_scan_module.cmd_scan)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        return args.func(args)
    except (CorruptState, StoryGraphError) as e:
        print(f"FATAL: {e}")
        return EXIT_FATAL
    except (WorkflowError, InvalidPhaseTransition, LockTimeout) as e:
        print(f"ERROR: {e}")
        return EXIT_REJECTED
    except (ValidationError, UnknownStoryError, FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        return EXIT_USAGE


if __name__ == '__main__':
    sys.exit(main())
