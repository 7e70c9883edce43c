"""Phase gate: may the active phase mutate this path?

A pure function of (phase, path) and the static classification table in
lib/path_rules.py. DENY is fatal for that one edit attempt only.

| phase        | denies mutation to                               |
|--------------|--------------------------------------------------|
| author-tests | implementation sources                           |
| implement    | test artifacts                                   |
| validate     | anything outside the state/evidence/report space |
| cleanup, finalize, idle | only the global rules                 |

Global rules (every phase): paths outside the project root, and the
engine's own state records.
"""

import logging
import posixpath
from pathlib import Path, PurePosixPath

from ralph.lib.constants import Phase, parse_phase
from ralph.lib.path_rules import PathClass, PathRules
from ralph.lib.results import GateDecision

logger = logging.getLogger(__name__)

PHASE_DENIES: dict[Phase, tuple[frozenset, str]] = {
    Phase.AUTHOR_TESTS: (
        frozenset({PathClass.SOURCE}),
        "author-tests phase may not modify implementation sources",
    ),
    Phase.IMPLEMENT: (
        frozenset({PathClass.TEST}),
        "implement phase may not modify test artifacts",
    ),
    Phase.VALIDATE: (
        frozenset({PathClass.SOURCE, PathClass.TEST, PathClass.OTHER}),
        "validate phase may only write state, evidence or report files",
    ),
}


def normalize_path(path: str | Path, project_root: Path | None = None) -> str | None:
    """Repo-relative POSIX path, or None if it escapes the project root.

    Purely lexical; nothing is resolved on disk.
    """
    text = str(path).replace("\\", "/")
    if PurePosixPath(text).is_absolute():
        if project_root is None:
            return None
        root = posixpath.normpath(str(project_root).replace("\\", "/"))
        text = posixpath.normpath(text)
        if text != root and not text.startswith(root.rstrip("/") + "/"):
            return None
        text = posixpath.relpath(text, root)

    rel = posixpath.normpath(text)
    if rel == ".." or rel.startswith("../"):
        return None
    return rel


def can_edit(phase: Phase | str, path: str | Path, rules: PathRules, project_root: Path | None = None) -> GateDecision:
    """Decide ALLOW/DENY for mutating path during phase."""
    if isinstance(phase, str):
        parsed = parse_phase(phase)
        if parsed is None:
            raise ValueError(f"Unknown phase '{phase}'")
        phase = parsed

    rel = normalize_path(path, project_root)
    if rel is None or rel == ".":
        decision = GateDecision(
            allowed=False, path=str(path), phase=phase.value,
            rule="outside-project", reason=f"{path} is outside the project root",
        )
        logger.warning(f"[GATE] DENY {path} ({phase.value}): {decision.reason}")
        return decision

    if rules.is_engine_owned(rel):
        decision = GateDecision(
            allowed=False, path=rel, phase=phase.value,
            rule="engine-owned", reason=f"{rel} is an engine state record; update it through the engine",
        )
        logger.warning(f"[GATE] DENY {rel} ({phase.value}): {decision.reason}")
        return decision

    path_class = rules.classify(rel)
    denied = PHASE_DENIES.get(phase)
    if denied and path_class in denied[0]:
        decision = GateDecision(
            allowed=False, path=rel, phase=phase.value,
            rule=f"{phase.value}:{path_class.value}", reason=f"{denied[1]} ({rel} is {path_class.value})",
        )
        logger.warning(f"[GATE] DENY {rel} ({phase.value}): {decision.reason}")
        return decision

    logger.debug(f"[GATE] ALLOW {rel} ({phase.value}, {path_class.value})")
    return GateDecision(allowed=True, path=rel, phase=phase.value, rule=path_class.value)
