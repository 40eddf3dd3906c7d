"""Unit tests for acc data models."""

import random
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from acc_trust.core.models import (
    AttestationDetail,
    AttestationVerifyReport,
    ExitCode,
    PolicyDecision,
    PushResult,
    TrustStatusReport,
    VerificationRecord,
    VerificationStatus,
    Violation,
    Waiver,
)

from conftest import IMAGE_A, DIGEST_A, make_record, violation


def test_record_round_trip_uses_camel_case() -> None:
    record = make_record(violations=[violation("no-root-user")], profile_used="strict")
    data = record.to_dict()

    assert data["imageRef"] == IMAGE_A
    assert data["imageDigest"] == DIGEST_A
    assert data["policyDecision"]["allow"] is False
    assert data["profileUsed"] == "strict"
    assert "attestations" not in data

    assert VerificationRecord.model_validate(data) == record


def test_gate_invariant_holds_for_random_decisions() -> None:
    """Derived status always agrees with policyDecision.allow."""
    rng = random.Random(1234)
    for _ in range(200):
        violations = [violation(f"rule-{i}") for i in range(rng.randint(0, 3))]
        decision = PolicyDecision(allow=rng.random() < 0.5, violations=violations)
        record = VerificationRecord.from_decision(IMAGE_A, decision)
        assert record.passed == decision.allow
        assert (record.status is VerificationStatus.PASS) == record.policy_decision.allow


@pytest.mark.parametrize(
    "status,allow",
    [("pass", False), ("fail", True), ("warn", True), ("warn", False)],
)
def test_inconsistent_records_are_rejected(status: str, allow: bool) -> None:
    with pytest.raises(ValidationError):
        VerificationRecord.model_validate(
            {"imageRef": IMAGE_A, "status": status, "policyDecision": {"allow": allow}}
        )


def test_allow_must_be_literal_true() -> None:
    assert PolicyDecision.model_validate({"allow": "true"}).allow is False
    assert PolicyDecision.model_validate({"allow": 1}).allow is False
    assert PolicyDecision.model_validate({"allow": True}).allow is True


def test_lenient_decoding_of_decision_lists() -> None:
    decision = PolicyDecision.model_validate(
        {
            "allow": False,
            "violations": [{"rule": "a", "severity": 3}, "garbage", None],
            "warnings": "not-a-list",
        }
    )
    assert decision.violations == [Violation(rule="a")]
    assert decision.warnings == []
    assert decision.waivers == []


def test_record_missing_optional_fields_decodes() -> None:
    record = VerificationRecord.model_validate(
        {"imageRef": IMAGE_A, "status": "fail", "unknownField": 1}
    )
    assert record.image_digest == ""
    assert record.sbom_present is False
    assert record.policy_decision.allow is False


class TestWaiverExpiry:
    now = datetime(2025, 6, 1, tzinfo=timezone.utc)

    def test_no_expiry_never_expires(self) -> None:
        assert not Waiver(rule_id="r").is_expired(self.now)

    def test_future_and_past(self) -> None:
        assert not Waiver(rule_id="r", expiry="2025-12-31T00:00:00Z").is_expired(self.now)
        assert Waiver(rule_id="r", expiry="2025-01-01T00:00:00Z").is_expired(self.now)

    def test_date_only_expiry(self) -> None:
        assert Waiver(rule_id="r", expiry="2025-01-01").is_expired(self.now)
        assert not Waiver(rule_id="r", expiry="2026-01-01").is_expired(self.now)

    def test_unparseable_expiry_counts_as_expired(self) -> None:
        assert Waiver(rule_id="r", expiry="next tuesday").is_expired(self.now)


def test_trust_status_report_defaults() -> None:
    report = TrustStatusReport(image_ref=IMAGE_A)
    data = report.to_dict()

    assert data == {
        "schemaVersion": "v0.2",
        "imageRef": IMAGE_A,
        "status": "unknown",
        "violations": [],
        "warnings": [],
        "sbomPresent": False,
        "attestations": [],
        "timestamp": "",
    }
    assert report.exit_code == ExitCode.UNKNOWN


@pytest.mark.parametrize(
    "status,code",
    [("pass", 0), ("fail", 1), ("warn", 1), ("unknown", 2), ("bogus", 2)],
)
def test_trust_status_exit_codes(status: str, code: int) -> None:
    assert TrustStatusReport(image_ref=IMAGE_A, status=status).exit_code == code


@pytest.mark.parametrize(
    "status,code",
    [("verified", 0), ("unverified", 1), ("unknown", 2)],
)
def test_attestation_verify_exit_codes(status: str, code: int) -> None:
    report = AttestationVerifyReport(image_ref=IMAGE_A, verification_status=status)
    assert report.exit_code == code


def test_attestation_detail_validity() -> None:
    detail = AttestationDetail(path="a.json", valid_schema=True, digest_match=True)
    assert not detail.is_valid()
    assert detail.is_valid(require_results_hash=False)

    detail.results_hash_match = True
    assert detail.is_valid()

    detail.digest_match = False
    assert not detail.is_valid(require_results_hash=False)


def test_push_result_omits_missing_attestation_ref() -> None:
    result = PushResult(image_ref=IMAGE_A, pushed=True)
    data = result.to_dict()
    assert data["command"] == "push"
    assert data["pushed"] is True
    assert "attestationRef" not in data
