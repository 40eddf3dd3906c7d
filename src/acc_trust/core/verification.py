# SPDX-License-Identifier: MPL-2.0
"""
Verification Module for acc

This module produces verification records (the ``verify`` flow) and checks
the attestations stored for an image (the ``trust verify`` flow).
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from acc_trust.core.config import AccConfig, AccPaths
from acc_trust.core.digest import DigestResolver, try_resolve
from acc_trust.core.exceptions import DigestUnresolvedError, PolicyEvaluationError
from acc_trust.core.hashing import compute_results_hash
from acc_trust.core.models import (
    AttestationVerifyReport,
    PolicyDecision,
    VerificationRecord,
    Violation,
)
from acc_trust.core.policy import (
    BUILTIN_RULES,
    OpaPolicyEngine,
    PolicyEngine,
    Profile,
    apply_waivers,
    build_policy_input,
    critical,
    expired_waiver_violations,
    load_waivers,
)
from acc_trust.core.registry import RegistryClient, fetch_remote_attestations
from acc_trust.core.state import VerificationStateStore
from acc_trust.core.store import AttestationStore

logger = logging.getLogger(__name__)


class ImageInspector(Protocol):
    """Reads the runtime configuration (user, labels) of a local image."""

    def inspect_config(self, image_ref: str) -> Dict[str, Any]:
        ...


class Verifier:
    """
    Evaluates an image against the project's policy and records the outcome.

    Every check runs and contributes its violations; the record's status is
    derived from the final decision and never set on its own.
    """

    def __init__(
        self,
        paths: AccPaths,
        config: AccConfig,
        resolver: DigestResolver,
        inspector: ImageInspector,
        engine: Optional[PolicyEngine] = None,
        state: Optional[VerificationStateStore] = None,
        store: Optional[AttestationStore] = None,
    ):
        """Initialize the verifier.

        Args:
            paths: Project layout
            config: Loaded project configuration
            resolver: Digest resolver used to key the saved record
            inspector: Source of the image configuration fed to policy
            engine: Policy engine; defaults to OPA over ``.acc/policy``
            state: Verification state store
            store: Attestation store, used to tell policy whether the image
                already has attestations
        """
        self.paths = paths
        self.config = config
        self.resolver = resolver
        self.inspector = inspector
        self.engine = engine or OpaPolicyEngine(paths.policy_dir)
        self.state = state or VerificationStateStore(paths, resolver)
        self.store = store or AttestationStore(paths)

    def _evaluate_policy(
        self, image_ref: str, digest: str, sbom_present: bool, promotion: bool
    ) -> List[Violation]:
        try:
            image_config = self.inspector.inspect_config(image_ref)
        except DigestUnresolvedError as e:
            return [critical("image-inspect-failed", f"Unable to inspect image config: {e}")]

        attestation_present = bool(digest) and bool(self.store.find_for_digest(digest))
        input_document = build_policy_input(image_config, sbom_present, attestation_present, promotion)
        try:
            return self.engine.evaluate(input_document)
        except PolicyEvaluationError as e:
            return [critical("policy-evaluation-error", f"Policy evaluation error: {e}")]

    def verify(
        self,
        image_ref: str,
        profile: Optional[Profile] = None,
        promotion: bool = False,
        now: Optional[datetime] = None,
    ) -> VerificationRecord:
        """Verify ``image_ref`` and persist the resulting record.

        Args:
            image_ref: Image to verify
            profile: Optional profile applied to the policy engine's violations;
                acc's own rules and expired waivers always block
            promotion: Tell policy this verification gates a promotion
            now: Clock used for waiver expiry

        Returns:
            The saved VerificationRecord
        """
        digest = try_resolve(self.resolver, image_ref)
        violations: List[Violation] = []

        sbom_present = self.config.sbom_path(self.paths).is_file()
        if not sbom_present:
            violations.append(critical("sbom-required", "SBOM is required but not found"))

        violations.extend(self._evaluate_policy(image_ref, digest, sbom_present, promotion))

        waivers = load_waivers(self.paths.waivers_file)
        violations, applied = apply_waivers(violations, waivers, now)

        builtin = [v for v in violations if v.rule in BUILTIN_RULES]
        policy_violations = [v for v in violations if v.rule not in BUILTIN_RULES]
        warnings: List[Violation] = []
        if profile is not None:
            policy_violations, warnings = profile.resolve(policy_violations)

        violations = builtin + policy_violations + expired_waiver_violations(waivers, now)

        decision = PolicyDecision(
            allow=not violations,
            violations=violations,
            warnings=warnings,
            waivers=applied,
        )
        record = VerificationRecord.from_decision(
            image_ref,
            decision,
            image_digest=digest,
            sbom_present=sbom_present,
            profile_used=profile.name if profile is not None else None,
        )
        logger.debug(
            "Verified %s: %s (%d violation(s), %d warning(s))",
            image_ref, record.status.value, len(violations), len(warnings),
        )
        return self.state.save(record)


class AttestationVerifier:
    """Checks every stored attestation for an image's digest."""

    def __init__(
        self,
        paths: AccPaths,
        resolver: DigestResolver,
        state: Optional[VerificationStateStore] = None,
        store: Optional[AttestationStore] = None,
        registry: Optional[RegistryClient] = None,
    ):
        self.paths = paths
        self.resolver = resolver
        self.state = state or VerificationStateStore(paths, resolver)
        self.store = store or AttestationStore(paths)
        self.registry = registry

    def verify(self, image_ref: str, remote: bool = False) -> AttestationVerifyReport:
        report = AttestationVerifyReport(image_ref=image_ref)

        digest = try_resolve(self.resolver, image_ref)
        if not digest:
            report.errors.append(f"Cannot resolve digest for {image_ref}")
            return report
        report.image_digest = digest

        if remote and self.registry is not None:
            fetch_remote_attestations(self.registry, self.store, image_ref, digest)

        # Without a verification record there is no decision to bind against
        record = self.state.find(image_ref)
        expected_hash = compute_results_hash(record) if record is not None else ""

        details = self.store.evaluate(digest, expected_hash)
        report.attestations = details
        report.attestation_count = len(details)

        if not details:
            report.verification_status = "unverified"
            report.errors.append("No attestations found")
            return report

        for detail in details:
            if not detail.is_valid(require_results_hash=record is not None):
                report.errors.append(
                    f"Invalid attestation: {Path(detail.path).name} ({detail.invalid_reason or 'results hash not checked'})"
                )
        report.verification_status = "unverified" if report.errors else "verified"
        return report
