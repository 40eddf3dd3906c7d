# SPDX-License-Identifier: MPL-2.0
"""Trust gate shared by the run and push flows."""

from __future__ import annotations

import logging
from typing import Optional

from acc_trust.core.config import AccPaths
from acc_trust.core.digest import DigestResolver, digest_prefix, normalize_digest, try_resolve
from acc_trust.core.exceptions import (
    AttestationRequiredError,
    ImageMismatchError,
    NoVerificationStateError,
    VerificationFailedError,
)
from acc_trust.core.hashing import compute_results_hash
from acc_trust.core.models import VerificationRecord
from acc_trust.core.state import VerificationStateStore
from acc_trust.core.store import AttestationStore

logger = logging.getLogger(__name__)


class EnforcementGate:
    """Decides whether an image may be run or pushed.

    :meth:`check` either returns the passing verification record or raises a
    :class:`~acc_trust.core.exceptions.TrustGateError`.  Whatever the caller
    does afterwards cannot turn an allow into a trust failure.
    """

    def __init__(
        self,
        paths: AccPaths,
        resolver: DigestResolver,
        state: Optional[VerificationStateStore] = None,
        store: Optional[AttestationStore] = None,
    ):
        self.paths = paths
        self.resolver = resolver
        self.state = state or VerificationStateStore(paths, resolver)
        self.store = store or AttestationStore(paths)

    def check(self, image_ref: str, require_attestation: bool = False) -> VerificationRecord:
        record = self.state.find(image_ref)
        if record is None:
            raise NoVerificationStateError(
                f"no verification state found for {image_ref}",
                remediation=f"Run 'acc verify {image_ref}' first",
            )

        if not record.passed:
            raise VerificationFailedError(
                f"verification failed for {image_ref} (status: {record.status.value})",
                remediation=f"Fix the policy violations and run 'acc verify {image_ref}' again",
                details={"violations": [v.to_dict() for v in record.policy_decision.violations]},
            )

        digest = self._check_image_match(image_ref, record)

        if require_attestation:
            self._check_attestation(image_ref, record, digest)

        logger.debug("Trust gate passed for %s", image_ref)
        return record

    def _check_image_match(self, image_ref: str, record: VerificationRecord) -> str:
        current = try_resolve(self.resolver, image_ref)
        verified = normalize_digest(record.image_digest) or try_resolve(self.resolver, record.image_ref)

        if current and verified:
            if current != verified:
                raise ImageMismatchError(
                    f"image mismatch: '{image_ref}' (digest: sha256:{digest_prefix(current)}) "
                    f"does not match verified image '{record.image_ref}' (digest: sha256:{digest_prefix(verified)})",
                    remediation=f"Run 'acc verify {image_ref}' first",
                )
            return current

        if image_ref != record.image_ref:
            raise ImageMismatchError(
                f"image mismatch: '{image_ref}' does not match verified image '{record.image_ref}'",
                remediation=f"Run 'acc verify {image_ref}' first",
            )
        return current or verified

    def _check_attestation(self, image_ref: str, record: VerificationRecord, digest: str) -> None:
        remediation = f"Run 'acc attest {image_ref}' to create an attestation"
        if not digest:
            raise AttestationRequiredError(
                f"attestation required but the digest of {image_ref} could not be resolved",
                remediation=remediation,
            )

        details = self.store.evaluate(digest, compute_results_hash(record))
        if not any(d.is_valid() for d in details):
            raise AttestationRequiredError(
                f"attestation required but no valid attestation found for {image_ref}",
                remediation=remediation,
                details={"checked": len(details), "reasons": sorted({d.invalid_reason for d in details})},
            )
