"""
Advisory content scan.

Flags leftovers a reviewer usually wants to know about before a story is
handed off: focused or skipped tests, debugger statements, console.log
calls and TODO/FIXME markers. Findings are informational only; they never
feed checkpoints or completion.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

SCANNED_SUFFIXES = frozenset({".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".py"})

IGNORED_DIRS = frozenset({
    ".git",
    "node_modules",
    "__pycache__",
    ".venv",
    "dist",
    "build",
    "test-results",
    "playwright-report",
})

# (rule, pattern)
RULES: list[tuple[str, re.Pattern]] = [
    ("focused-test", re.compile(r"\b(?:test|it|describe)\.only\s*\(|\bf(?:it|describe)\s*\(")),
    ("skipped-test", re.compile(r"\b(?:test|it|describe)\.(?:skip|fixme)\s*\(|\bx(?:it|describe)\s*\(|@pytest\.mark\.skip\b")),
    ("debugger", re.compile(r"^\s*debugger\s*;?\s*$|\bbreakpoint\(\)|\bpdb\.set_trace\(\)")),
    ("console-log", re.compile(r"\bconsole\.log\s*\(")),
    ("todo", re.compile(r"\b(?:TODO|FIXME)\b")),
]


@dataclass(frozen=True)
class Finding:
    path: str
    line: int
    rule: str
    text: str

    def to_dict(self) -> dict:
        return {"path": self.path, "line": self.line, "rule": self.rule, "text": self.text}


def scan_text(text: str, path: str = "<string>") -> list[Finding]:
    findings = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        for rule, pattern in RULES:
            if pattern.search(line):
                findings.append(Finding(path=path, line=lineno, rule=rule, text=line.strip()))
    return findings


def _iter_files(paths: Iterable[Path]) -> Iterable[Path]:
    for path in paths:
        if path.is_dir():
            for child in sorted(path.rglob("*")):
                if any(part in IGNORED_DIRS for part in child.relative_to(path).parts):
                    continue
                if child.is_file() and child.suffix in SCANNED_SUFFIXES:
                    yield child
        elif path.is_file():
            yield path
        else:
            logger.warning(f"[SCAN] {path} does not exist, skipping")


def scan_paths(paths: Iterable[str | Path]) -> list[Finding]:
    """Scan files (directories are walked) and return findings in path/line order."""
    findings: list[Finding] = []
    for file_path in _iter_files(Path(p) for p in paths):
        try:
            text = file_path.read_text(errors="replace")
        except OSError as e:
            logger.warning(f"[SCAN] cannot read {file_path}: {e}")
            continue
        findings.extend(scan_text(text, str(file_path)))

    findings.sort(key=lambda f: (f.path, f.line, f.rule))
    logger.debug(f"[SCAN] {len(findings)} advisory finding(s)")
    return findings
