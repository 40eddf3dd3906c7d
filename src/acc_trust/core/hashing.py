# SPDX-License-Identifier: MPL-2.0
"""Results hash binding an attestation to one verification decision."""

from __future__ import annotations

import hashlib
from typing import Any, Dict, List

from acc_trust.core.canonicalization import canonical_bytes
from acc_trust.core.models import VerificationRecord


def _sorted_violations(record: VerificationRecord) -> List[Dict[str, Any]]:
    violations = sorted(
        record.policy_decision.violations, key=lambda v: (v.rule, v.severity)
    )
    return [v.to_dict() for v in violations]


def _sorted_waivers(record: VerificationRecord) -> List[Dict[str, Any]]:
    waivers = sorted(record.policy_decision.waivers, key=lambda w: w.rule_id)
    return [w.to_dict() for w in waivers]


def results_hash_payload(record: VerificationRecord) -> Dict[str, Any]:
    """Build the canonical object hashed by :func:`compute_results_hash`."""
    return {
        "status": record.status.value,
        "violations": _sorted_violations(record),
        "waivers": _sorted_waivers(record),
        "sbomPresent": record.sbom_present,
        "attestations": record.attestations,
    }


def compute_results_hash(record: VerificationRecord) -> str:
    """Return the hex SHA-256 of the record's canonical decision content.

    Violations are ordered by ``(rule, severity)`` and waivers by ``ruleId``
    before serialisation, so the hash does not depend on the order in which
    the policy engine reported them.
    """
    return hashlib.sha256(canonical_bytes(results_hash_payload(record))).hexdigest()
