# SPDX-License-Identifier: MPL-2.0
"""Data models for acc trust state, attestations and reports.

All models serialise with camelCase keys, which is the persisted and
published wire format.  Decoding is lenient about missing fields (they
default to empty values) but strict about the invariants that make a record
trustworthy.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ATTESTATION_SCHEMA_VERSION = "v0.1"
TRUST_STATUS_SCHEMA_VERSION = "v0.2"
ATTESTATION_VERIFY_SCHEMA_VERSION = "v0.3"
PUSH_RESULT_SCHEMA_VERSION = "v0.1"

ENVELOPE_ALG = "ed25519"
ENVELOPE_CANON = "jcs"


def utc_timestamp() -> str:
    """Return the current time as an RFC 3339 UTC timestamp with second precision."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ExitCode(IntEnum):
    """Process exit codes shared by every command."""

    PASS = 0
    FAIL = 1
    UNKNOWN = 2


class VerificationStatus(str, Enum):
    """Status of a verification record."""

    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"


class AccModel(BaseModel):
    """Base model using camelCase aliases on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_dict(self) -> Dict[str, Any]:
        """Convert the model to a JSON-compatible dictionary."""
        return self.model_dump(by_alias=True, mode="json")

    def to_json(self, indent: int = 2) -> str:
        """Convert the model to a JSON string."""
        return json.dumps(self.to_dict(), indent=indent)


def _dicts_only(value: Any) -> List[Any]:
    """Drop entries that are not objects so malformed decisions decode to empty lists."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, (dict, BaseModel))]


class Violation(AccModel):
    """A single policy violation or warning."""

    rule: str = ""
    severity: str = ""
    result: str = ""
    message: str = ""

    @field_validator("rule", "severity", "result", "message", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""


class Waiver(AccModel):
    """A policy waiver with an optional expiry."""

    rule_id: str = ""
    justification: str = ""
    expiry: str = ""
    approved_by: str = ""

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Return True if the waiver has expired.

        An expiry that cannot be parsed counts as expired.
        """
        if not self.expiry:
            return False
        try:
            expiry = datetime.fromisoformat(self.expiry.replace("Z", "+00:00"))
        except ValueError:
            return True
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return (now or datetime.now(timezone.utc)) > expiry


class PolicyDecision(AccModel):
    """Decision returned by the policy engine after profile and waiver filtering."""

    allow: bool = False
    violations: List[Violation] = Field(default_factory=list)
    warnings: List[Violation] = Field(default_factory=list)
    waivers: List[Waiver] = Field(default_factory=list)

    @field_validator("violations", "warnings", "waivers", mode="before")
    @classmethod
    def _lenient_lists(cls, value: Any) -> List[Any]:
        return _dicts_only(value)

    @field_validator("allow", mode="before")
    @classmethod
    def _strict_allow(cls, value: Any) -> bool:
        # Only a literal JSON true allows; anything else fails closed
        return value is True


class VerificationRecord(AccModel):
    """Outcome of one verification run for one image.

    ``status`` and ``policy_decision.allow`` can never disagree: ``pass``
    requires ``allow`` and ``fail`` requires not ``allow``.  Any other
    combination, including a persisted ``warn``, fails validation.
    """

    image_ref: str
    image_digest: str = ""
    status: VerificationStatus
    timestamp: str = ""
    policy_decision: PolicyDecision = Field(default_factory=PolicyDecision)
    sbom_present: bool = False
    profile_used: Optional[str] = None
    attestations: Optional[List[str]] = None

    @model_validator(mode="after")
    def _single_authoritative_gate(self) -> VerificationRecord:
        allow = self.policy_decision.allow
        if self.status is VerificationStatus.PASS and not allow:
            raise ValueError("status 'pass' requires policyDecision.allow == true")
        if self.status is VerificationStatus.FAIL and allow:
            raise ValueError("status 'fail' requires policyDecision.allow == false")
        if self.status is VerificationStatus.WARN:
            raise ValueError("status 'warn' cannot be derived from a policy decision")
        return self

    @classmethod
    def from_decision(
        cls,
        image_ref: str,
        decision: PolicyDecision,
        image_digest: str = "",
        sbom_present: bool = False,
        profile_used: Optional[str] = None,
        attestations: Optional[List[str]] = None,
        timestamp: Optional[str] = None,
    ) -> VerificationRecord:
        """Build a record whose status is derived from ``decision``."""
        return cls(
            image_ref=image_ref,
            image_digest=image_digest,
            status=VerificationStatus.PASS if decision.allow else VerificationStatus.FAIL,
            timestamp=timestamp or utc_timestamp(),
            policy_decision=decision,
            sbom_present=sbom_present,
            profile_used=profile_used,
            attestations=attestations,
        )

    @property
    def passed(self) -> bool:
        return self.status is VerificationStatus.PASS

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class AttestationSubject(AccModel):
    """Identifies what is being attested."""

    image_ref: str
    image_digest: str = ""


class AttestationEvidence(AccModel):
    """Verification evidence carried by an attestation."""

    sbom_ref: str = ""
    policy_pack: str = ".acc/policy"
    policy_mode: str = ""
    verification_status: str = ""
    verification_results_hash: str = ""


class AttestationMetadata(AccModel):
    """Tool metadata carried by an attestation."""

    tool: str = "acc"
    tool_version: str = ""
    git_commit: str = ""


class AttestationDocument(AccModel):
    """Claim that a specific image digest was verified with a specific decision."""

    schema_version: str = ATTESTATION_SCHEMA_VERSION
    timestamp: str = Field(default_factory=utc_timestamp)
    subject: AttestationSubject
    evidence: AttestationEvidence
    metadata: AttestationMetadata = Field(default_factory=AttestationMetadata)


class SignatureEnvelope(AccModel):
    """Detached Ed25519 signature over the JCS form of an attestation."""

    alg: str = ENVELOPE_ALG
    canon: str = ENVELOPE_CANON
    key_id: str = ""
    public_key: str = ""
    payload_hash: str = ""
    signature: str = ""

    @field_validator("alg", "canon", "key_id", "public_key", "payload_hash", "signature", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""


class AttestationPointer(AccModel):
    """Single-slot pointer to the most recently written attestation."""

    output_path: str
    timestamp: str
    image_ref: str
    image_digest: str = ""
    status: str = ""


class AttestationDetail(AccModel):
    """Validation outcome for one attestation file."""

    path: str
    timestamp: str = ""
    verification_status: str = ""
    verification_results_hash: str = ""
    valid_schema: bool = False
    digest_match: bool = False
    results_hash_match: bool = False
    signed: bool = False
    key_id: str = ""
    invalid_reason: str = ""

    def is_valid(self, require_results_hash: bool = True) -> bool:
        """Return True if every demanded binding holds."""
        if not (self.valid_schema and self.digest_match):
            return False
        return self.results_hash_match or not require_results_hash


class TrustStatusReport(AccModel):
    """Read-side trust summary for a single image. Never persisted."""

    schema_version: str = TRUST_STATUS_SCHEMA_VERSION
    image_ref: str
    status: str = "unknown"
    profile_used: Optional[str] = None
    violations: List[Violation] = Field(default_factory=list)
    warnings: List[Violation] = Field(default_factory=list)
    sbom_present: bool = False
    attestations: List[str] = Field(default_factory=list)
    timestamp: str = ""

    @property
    def exit_code(self) -> ExitCode:
        """0 for pass, 1 for fail or warn, 2 for unknown."""
        if self.status == VerificationStatus.PASS.value:
            return ExitCode.PASS
        if self.status in (VerificationStatus.FAIL.value, VerificationStatus.WARN.value):
            return ExitCode.FAIL
        return ExitCode.UNKNOWN

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if not self.profile_used:
            data.pop("profileUsed", None)
        return data


class AttestationVerifyReport(AccModel):
    """Result of checking every attestation stored for an image digest."""

    schema_version: str = ATTESTATION_VERIFY_SCHEMA_VERSION
    image_ref: str
    image_digest: str = ""
    verification_status: str = "unknown"
    attestation_count: int = 0
    attestations: List[AttestationDetail] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def exit_code(self) -> ExitCode:
        if self.verification_status == "verified":
            return ExitCode.PASS
        if self.verification_status == "unverified":
            return ExitCode.FAIL
        return ExitCode.UNKNOWN


class PushResult(AccModel):
    """Result of a gated push."""

    schema_version: str = PUSH_RESULT_SCHEMA_VERSION
    command: str = "push"
    image_ref: str
    image_digest: str = ""
    verification_status: str = ""
    pushed: bool = False
    timestamp: str = Field(default_factory=utc_timestamp)
    attestation_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
