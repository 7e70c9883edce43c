"""Tests for ralph.workflow.evidence module."""

import json

import pytest

from ralph.lib.hashing import DIGEST_FIELD
from ralph.lib.results import RejectionKind
from ralph.workflow.evidence import EvidenceVerifier, build_evidence, evidence_value

WINDOW = 1800


@pytest.fixture
def verifier(project_root, clock):
    return EvidenceVerifier(project_root, WINDOW, clock=clock)


class TestBuildEvidence:
    """Test artifact construction."""

    def test_signed_and_schema_valid(self):
        """Should write a signed, schema-valid artifact."""
        record = build_evidence("pass", detail=["12 passed"], story_id="US-001", kind="browser_validated")
        assert record["result"] == "PASS"
        assert len(record[DIGEST_FIELD]) == 64

    def test_rejects_unknown_result(self):
        """Should refuse a result other than PASS or FAIL."""
        with pytest.raises(ValueError):
            build_evidence("FLAKY")

    def test_fail_value_uses_first_detail(self):
        """Should use the first detail line as the FAIL reason."""
        record = build_evidence("FAIL", detail=["", "login button missing", "other"])
        assert evidence_value(record) == "FAIL:login button missing"

    def test_fail_value_without_detail(self):
        """Should give a FAIL without detail a default reason."""
        assert evidence_value(build_evidence("FAIL")) == "FAIL:evidence reported FAIL"


class TestVerify:
    """Test integrity and freshness checks."""

    def test_fresh_pass(self, verifier, make_evidence):
        """Should accept fresh PASS evidence."""
        ref = make_evidence("US-001", "playwright_validated")
        result = verifier.verify(ref, story_id="US-001", kind="playwright_validated")
        assert result.ok
        assert result.value == "PASS"
        assert result.digest

    def test_fresh_fail_is_ok_with_fail_value(self, verifier, make_evidence):
        """Should accept fresh FAIL evidence and report its value."""
        ref = make_evidence("US-001", "browser_validated", result="FAIL", detail=["timeout on /login"])
        result = verifier.verify(ref)
        assert result.ok
        assert result.value == "FAIL:timeout on /login"

    def test_missing(self, verifier):
        """Should report a missing artifact."""
        result = verifier.verify("verification/none.json")
        assert result.kind is RejectionKind.MISSING

    def test_not_json(self, verifier, project_root):
        """Should report unparseable JSON as malformed."""
        (project_root / "bad.json").write_text("PASS")
        assert verifier.verify("bad.json").kind is RejectionKind.MALFORMED

    def test_schema_mismatch(self, verifier, project_root):
        """Should report a schema violation as malformed."""
        (project_root / "bad.json").write_text(json.dumps({"result": "PASS"}))
        assert verifier.verify("bad.json").kind is RejectionKind.MALFORMED

    def test_tampered_result(self, verifier, make_evidence, project_root):
        """Should detect an edited result."""
        ref = make_evidence("US-001", "playwright_validated", result="FAIL", detail=["3 failed"])
        path = project_root / ref
        data = json.loads(path.read_text())
        data["result"] = "PASS"
        path.write_text(json.dumps(data))

        result = verifier.verify(ref)
        assert result.kind is RejectionKind.TAMPERED
        assert result.value is None

    def test_tampered_timestamp(self, verifier, make_evidence, project_root):
        """Should detect an edited timestamp."""
        ref = make_evidence("US-001", "playwright_validated", age=WINDOW * 2)
        path = project_root / ref
        data = json.loads(path.read_text())
        data["timestamp"] = "2026-03-01T12:00:00+00:00"
        path.write_text(json.dumps(data))
        assert verifier.verify(ref).kind is RejectionKind.TAMPERED

    def test_stale_one_second_past_window(self, verifier, make_evidence):
        """Should report evidence one second past the window as stale."""
        ref = make_evidence("US-001", "playwright_validated", age=WINDOW + 1)
        result = verifier.verify(ref)
        assert result.kind is RejectionKind.STALE

    def test_fresh_one_second_inside_window(self, verifier, make_evidence):
        """Should accept evidence one second inside the window."""
        ref = make_evidence("US-001", "playwright_validated", age=WINDOW - 1)
        assert verifier.verify(ref).ok

    def test_exactly_at_window_is_fresh(self, verifier, make_evidence):
        """Should accept evidence exactly at the window."""
        ref = make_evidence("US-001", "playwright_validated", age=WINDOW)
        assert verifier.verify(ref).ok

    def test_goes_stale_as_clock_advances(self, verifier, make_evidence, clock):
        """Should go stale as the clock advances."""
        ref = make_evidence("US-001", "playwright_validated")
        assert verifier.verify(ref).ok
        clock.advance(WINDOW + 1)
        assert verifier.verify(ref).kind is RejectionKind.STALE

    def test_far_future_timestamp(self, verifier, make_evidence):
        """Should report a far-future timestamp as malformed."""
        ref = make_evidence("US-001", "playwright_validated", age=-(WINDOW + 60))
        assert verifier.verify(ref).kind is RejectionKind.MALFORMED

    def test_wrong_story(self, verifier, make_evidence):
        """Should reject evidence for another story."""
        ref = make_evidence("US-002", "playwright_validated")
        result = verifier.verify(ref, story_id="US-001", kind="playwright_validated")
        assert result.kind is RejectionKind.MALFORMED
        assert "US-002" in result.detail

    def test_wrong_kind(self, verifier, make_evidence):
        """Should reject evidence for another checkpoint kind."""
        ref = make_evidence("US-001", "browser_validated")
        result = verifier.verify(ref, story_id="US-001", kind="whitebox_validated")
        assert result.kind is RejectionKind.MALFORMED

    def test_absolute_ref(self, verifier, make_evidence, project_root):
        """Should accept an absolute evidence path."""
        ref = make_evidence("US-001", "playwright_validated")
        assert verifier.verify(str(project_root / ref)).ok

    def test_rejection_logged(self, verifier, caplog):
        """Should log every rejection."""
        import logging
        caplog.set_level(logging.WARNING)
        verifier.verify("verification/none.json")
        assert "[EVIDENCE]" in caplog.text
        assert "missing" in caplog.text
