# SPDX-License-Identifier: MPL-2.0
"""
acc trust - verifiable trust gates for container workloads.

This package records policy verification results per image digest, binds
them to signed attestations, and refuses to run or push images whose trust
cannot be established.
"""

import contextlib
from importlib.metadata import version

# Set up version
__version__ = "0.1.0"

with contextlib.suppress(Exception):
    __version__ = version("acc-trust")


# Core components
from acc_trust.core import (
    AttestationForge,
    AttestationStore,
    EnforcementGate,
    TrustStatusAggregator,
    VerificationStateStore,
    canonicalize,
    compute_results_hash,
    sign_attestation,
    verify_envelope,
)

# Public API
__all__ = [
    "AttestationForge",
    "AttestationStore",
    "EnforcementGate",
    "TrustStatusAggregator",
    "VerificationStateStore",
    "canonicalize",
    "compute_results_hash",
    "sign_attestation",
    "verify_envelope",
    "__version__",
]
