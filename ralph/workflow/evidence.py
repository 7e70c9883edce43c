"""
Evidence verification.

The single chokepoint for every "verified" checkpoint. The caller's
claimed outcome is never used: the value comes from the artifact itself,
and only after the artifact proves it is intact and recent.

Checks, in order, each a possible rejection:
  1. artifact exists                               -> missing
  2. artifact parses into the evidence shape       -> malformed
  3. recomputed digest equals the embedded digest  -> tampered
  4. age within the freshness window               -> stale
"""

import json
import logging
from datetime import timedelta
from pathlib import Path

from ralph.lib.clock import Clock, parse_timestamp, to_iso, utc_now
from ralph.lib.constants import FAIL_PREFIX, PASS
from ralph.lib.fs import atomic_write_json
from ralph.lib.hashing import DIGEST_FIELD, content_digest, with_digest
from ralph.lib.results import RejectionKind, VerifyResult
from ralph.lib.validate import ValidationError, validate

logger = logging.getLogger(__name__)


def evidence_value(evidence: dict) -> str:
    """Checkpoint value an artifact justifies."""
    if evidence["result"] == PASS:
        return PASS
    detail = [d for d in evidence.get("detail", []) if d.strip()]
    reason = detail[0].strip() if detail else "evidence reported FAIL"
    return f"{FAIL_PREFIX}{reason}"


class EvidenceVerifier:
    """Validates external evidence (integrity + freshness) before it backs a checkpoint."""

    def __init__(self, project_root: Path, freshness_window_seconds: int, clock: Clock = utc_now):
        self.project_root = Path(project_root)
        self.freshness_window = timedelta(seconds=freshness_window_seconds)
        self.clock = clock

    def resolve(self, evidence_ref: str) -> Path:
        path = Path(evidence_ref)
        if not path.is_absolute():
            path = self.project_root / path
        return path

    def _reject(self, evidence_ref: str, kind: RejectionKind, detail: str) -> VerifyResult:
        logger.warning(f"[EVIDENCE] {evidence_ref}: rejected ({kind.value}): {detail}")
        return VerifyResult(evidence_ref=evidence_ref, kind=kind, detail=detail)

    def verify(self, evidence_ref: str, story_id: str | None = None, kind: str | None = None) -> VerifyResult:
        """Verify one evidence artifact.

        When story_id/kind are given, an artifact that names a different
        story or kind is rejected as malformed.
        """
        path = self.resolve(evidence_ref)

        # 1. existence
        if not path.is_file():
            return self._reject(evidence_ref, RejectionKind.MISSING, f"no evidence artifact at {path}")

        # 2. shape
        try:
            evidence = json.loads(path.read_text())
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            return self._reject(evidence_ref, RejectionKind.MALFORMED, f"not valid JSON: {e}")
        try:
            validate(evidence, "evidence")
        except ValidationError as e:
            return self._reject(evidence_ref, RejectionKind.MALFORMED, str(e))

        # 3. integrity
        expected = content_digest(evidence)
        if expected != evidence[DIGEST_FIELD]:
            return self._reject(
                evidence_ref, RejectionKind.TAMPERED,
                f"digest mismatch (embedded {evidence[DIGEST_FIELD][:12]}, computed {expected[:12]})",
            )

        try:
            produced_at = parse_timestamp(evidence["timestamp"])
        except ValueError as e:
            return self._reject(evidence_ref, RejectionKind.MALFORMED, f"bad timestamp: {e}")

        if story_id is not None and evidence.get("story_id", story_id) != story_id:
            return self._reject(
                evidence_ref, RejectionKind.MALFORMED,
                f"evidence is for story '{evidence['story_id']}', not '{story_id}'",
            )
        if kind is not None and evidence.get("kind", kind) != kind:
            return self._reject(
                evidence_ref, RejectionKind.MALFORMED,
                f"evidence is for checkpoint '{evidence['kind']}', not '{kind}'",
            )

        # 4. freshness
        age = self.clock() - produced_at
        if age > self.freshness_window:
            return self._reject(
                evidence_ref, RejectionKind.STALE,
                f"evidence is {int(age.total_seconds())}s old (window {int(self.freshness_window.total_seconds())}s)",
            )
        if -age > self.freshness_window:
            return self._reject(evidence_ref, RejectionKind.MALFORMED, "evidence timestamp is in the future")

        value = evidence_value(evidence)
        logger.debug(f"[EVIDENCE] {evidence_ref}: verified {value}")
        return VerifyResult(evidence_ref=evidence_ref, value=value, digest=evidence[DIGEST_FIELD])


def build_evidence(
    result: str,
    detail: list[str] | None = None,
    story_id: str | None = None,
    kind: str | None = None,
    producer: str | None = None,
    timestamp: str | None = None,
) -> dict:
    """Assemble a signed evidence artifact as a validator would produce it."""
    result = result.upper()
    if result not in (PASS, "FAIL"):
        raise ValueError(f"Evidence result must be PASS or FAIL, got '{result}'")
    record = {
        "result": result,
        "timestamp": timestamp or to_iso(utc_now()),
        "detail": list(detail or []),
    }
    if story_id is not None:
        record["story_id"] = story_id
    if kind is not None:
        record["kind"] = kind
    if producer is not None:
        record["producer"] = producer
    signed = with_digest(record)
    validate(signed, "evidence")
    return signed


def write_evidence(path: Path, result: str, **fields) -> dict:
    """Build and atomically write an evidence artifact. Returns the record."""
    record = build_evidence(result, **fields)
    atomic_write_json(path, record)
    logger.info(f"[EVIDENCE] wrote {record['result']} evidence to {path}")
    return record
