"""
Path classification table for the phase gate.

Loads path_rules.yaml from the state directory to decide which files are
test artifacts, implementation sources, or part of the state/evidence/
report namespace. If no file exists, the defaults below apply.

Patterns are fnmatch globs matched against repo-relative POSIX paths;
`*` also matches `/`, so `src/*` covers everything under src/.

Example path_rules.yaml:

    test:
      - "e2e/*"
      - "*.spec.ts"
    source:
      - "src/*"
    state:
      - "verification/*"
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

RULES_FILENAME = "path_rules.yaml"


class PathClass(Enum):
    STATE = "state"      # engine state, evidence, reports
    TEST = "test"        # test artifacts
    SOURCE = "source"    # implementation sources
    OTHER = "other"


# Ordered by precedence: state wins over test, test over source.
DEFAULT_STATE_PATTERNS = [
    "verification/*",
    "test-results/*",
    "playwright-report/*",
    "scripts/ralph/*",
]

DEFAULT_TEST_PATTERNS = [
    "e2e/*",
    "tests/*",
    "test/*",
    "*/__tests__/*",
    "__tests__/*",
    "*.spec.*",
    "*.test.*",
    "playwright.config.*",
    "jest.config.*",
    "vitest.config.*",
]

DEFAULT_SOURCE_PATTERNS = [
    "src/*",
    "app/*",
    "lib/*",
    "components/*",
    "pages/*",
    "server/*",
    "api/*",
    "*.ts",
    "*.tsx",
    "*.js",
    "*.jsx",
    "*.py",
    "*.css",
]

# Engine-owned records: no actor may edit these directly in any phase.
ENGINE_RECORD_DIRS = ["stories", "checkpoints", "iterations", "rollback", "orphaned", "locks"]
ENGINE_RECORD_FILES = ["workflow.json", "ralph.env", RULES_FILENAME]


@dataclass
class PathRules:
    """Static classification table, relative to the project root."""
    state: list[str] = field(default_factory=lambda: list(DEFAULT_STATE_PATTERNS))
    test: list[str] = field(default_factory=lambda: list(DEFAULT_TEST_PATTERNS))
    source: list[str] = field(default_factory=lambda: list(DEFAULT_SOURCE_PATTERNS))
    engine_owned: list[str] = field(default_factory=list)

    def classify(self, rel_path: str) -> PathClass:
        if _matches(rel_path, self.state):
            return PathClass.STATE
        if _matches(rel_path, self.test):
            return PathClass.TEST
        if _matches(rel_path, self.source):
            return PathClass.SOURCE
        return PathClass.OTHER

    def is_engine_owned(self, rel_path: str) -> bool:
        return _matches(rel_path, self.engine_owned)


def _matches(rel_path: str, patterns: list[str]) -> bool:
    return any(fnmatchcase(rel_path, p) for p in patterns)


def engine_owned_patterns(state_rel: str) -> list[str]:
    """Globs for the engine's own records inside the state directory."""
    base = state_rel.strip("/")
    prefix = f"{base}/" if base and base != "." else ""
    patterns = [f"{prefix}{d}/*" for d in ENGINE_RECORD_DIRS]
    patterns.extend(f"{prefix}{f}" for f in ENGINE_RECORD_FILES)
    return patterns


def _string_list(data: dict, key: str, default: list[str]) -> list[str]:
    value = data.get(key)
    if value is None:
        return list(default)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        logger.warning(f"path_rules: '{key}' must be a list of strings, using defaults")
        return list(default)
    return value


def load_path_rules(state_dir: Path, state_rel: str | None = None) -> PathRules:
    """
    Load path_rules.yaml from the state directory, or defaults.

    state_rel is the state directory relative to the project root; it is
    always part of the state namespace and its engine records are always
    protected.
    """
    rules_path = state_dir / RULES_FILENAME
    data: dict = {}
    if rules_path.exists():
        try:
            loaded = yaml.safe_load(rules_path.read_text())
            if loaded is None:
                loaded = {}
            if not isinstance(loaded, dict):
                raise ValueError("top level must be a mapping")
            data = loaded
        except (yaml.YAMLError, ValueError, OSError) as e:
            logger.warning(f"Failed to load {rules_path}, using default path rules: {e}")
            data = {}

    rules = PathRules(
        state=_string_list(data, "state", DEFAULT_STATE_PATTERNS),
        test=_string_list(data, "test", DEFAULT_TEST_PATTERNS),
        source=_string_list(data, "source", DEFAULT_SOURCE_PATTERNS),
    )

    if state_rel:
        base = state_rel.strip("/")
        if base and base != ".":
            state_glob = f"{base}/*"
            if state_glob not in rules.state:
                rules.state.insert(0, state_glob)
        rules.engine_owned = engine_owned_patterns(state_rel)

    return rules
