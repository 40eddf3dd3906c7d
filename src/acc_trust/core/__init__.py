# SPDX-License-Identifier: MPL-2.0
"""Core functionality for acc trust enforcement."""
from acc_trust.core.attestation import AttestationForge, AttestationResult
from acc_trust.core.canonicalization import canonicalize
from acc_trust.core.crypto import KeyPair, key_id_from_public_bytes, verify_signature
from acc_trust.core.digest import ContainerToolResolver, DigestResolver
from acc_trust.core.enforcement import EnforcementGate
from acc_trust.core.envelope import sign_attestation, verify_envelope
from acc_trust.core.hashing import compute_results_hash
from acc_trust.core.state import VerificationStateStore
from acc_trust.core.status import TrustStatusAggregator
from acc_trust.core.store import AttestationStore

__all__ = [
    "AttestationForge",
    "AttestationResult",
    "AttestationStore",
    "ContainerToolResolver",
    "DigestResolver",
    "EnforcementGate",
    "KeyPair",
    "TrustStatusAggregator",
    "VerificationStateStore",
    "canonicalize",
    "compute_results_hash",
    "key_id_from_public_bytes",
    "sign_attestation",
    "verify_envelope",
    "verify_signature",
]
