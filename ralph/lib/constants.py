"""Shared constants for the workflow engine."""

import re
from enum import Enum

# Story IDs as they appear in prd.json (US-001, STORY-0001, auth_login...)
STORY_ID_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.-]*$')

DEFAULT_STATE_DIR = "scripts/ralph/state"
DEFAULT_PRD_PATH = "scripts/ralph/prd.json"

DEFAULT_MAX_ITERATIONS = 5
DEFAULT_FRESHNESS_WINDOW_SECONDS = 30 * 60
DEFAULT_LOCK_TIMEOUT = 30

PASS = "PASS"
FAIL = "FAIL"
FAIL_PREFIX = "FAIL:"


class Phase(Enum):
    """Workflow phases, in pipeline order."""

    IDLE = "idle"
    AUTHOR_TESTS = "author-tests"
    IMPLEMENT = "implement"
    VALIDATE = "validate"
    CLEANUP = "cleanup"
    FINALIZE = "finalize"


class CheckpointClass(Enum):
    SELF_REPORT = "self-report"
    VERIFIED = "verified"


class CheckpointKind(Enum):
    """Required checkpoint kinds for every story."""

    TESTS_WRITTEN = "tests_written"
    BUILD_COMPLETE = "build_complete"
    PLAYWRIGHT_VALIDATED = "playwright_validated"
    BROWSER_VALIDATED = "browser_validated"
    WHITEBOX_VALIDATED = "whitebox_validated"
    CLEANUP_COMPLETE = "cleanup_complete"

    @property
    def checkpoint_class(self) -> CheckpointClass:
        return CHECKPOINT_CLASSES[self]

    @property
    def verified(self) -> bool:
        return CHECKPOINT_CLASSES[self] is CheckpointClass.VERIFIED


CHECKPOINT_CLASSES = {
    CheckpointKind.TESTS_WRITTEN: CheckpointClass.SELF_REPORT,
    CheckpointKind.BUILD_COMPLETE: CheckpointClass.SELF_REPORT,
    CheckpointKind.PLAYWRIGHT_VALIDATED: CheckpointClass.VERIFIED,
    CheckpointKind.BROWSER_VALIDATED: CheckpointClass.VERIFIED,
    CheckpointKind.WHITEBOX_VALIDATED: CheckpointClass.VERIFIED,
    CheckpointKind.CLEANUP_COMPLETE: CheckpointClass.SELF_REPORT,
}


def parse_phase(value: str | None) -> Phase | None:
    """Parse a phase string into Phase. Returns None if unknown."""
    if value is None:
        return None
    for phase in Phase:
        if phase.value == value:
            return phase
    return None


def parse_checkpoint_kind(name: str) -> CheckpointKind:
    """Parse a checkpoint name, raising ValueError for unknown kinds."""
    for kind in CheckpointKind:
        if kind.value == name:
            return kind
    valid = ", ".join(k.value for k in CheckpointKind)
    raise ValueError(f"Unknown checkpoint kind '{name}' (expected one of: {valid})")


def required_checkpoints(enable_whitebox: bool = True, cleanup_per_story: bool = True) -> list[CheckpointKind]:
    """Checkpoint kinds a story must pass before it can be marked complete."""
    kinds = []
    for kind in CheckpointKind:
        if kind is CheckpointKind.WHITEBOX_VALIDATED and not enable_whitebox:
            continue
        if kind is CheckpointKind.CLEANUP_COMPLETE and not cleanup_per_story:
            continue
        kinds.append(kind)
    return kinds


def normalize_value(value) -> str:
    """Normalize a claimed checkpoint value to PASS or FAIL:<reason>.

    Accepts booleans, "PASS", "FAIL" and "FAIL:<reason>".
    """
    if value is True:
        return PASS
    if value is False:
        return f"{FAIL_PREFIX}reported failure"
    if not isinstance(value, str):
        raise ValueError(f"Invalid checkpoint value: {value!r}")
    text = value.strip()
    if text.upper() == PASS:
        return PASS
    if text.upper() == FAIL:
        return f"{FAIL_PREFIX}reported failure"
    if text.upper().startswith(FAIL_PREFIX):
        reason = text[len(FAIL_PREFIX):].strip()
        return f"{FAIL_PREFIX}{reason or 'reported failure'}"
    raise ValueError(f"Invalid checkpoint value: {value!r} (expected PASS or FAIL:<reason>)")
