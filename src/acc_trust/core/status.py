# SPDX-License-Identifier: MPL-2.0
"""Read-side trust status for one image."""

from __future__ import annotations

import logging
from typing import List, Optional

from acc_trust.core.config import AccPaths
from acc_trust.core.digest import DigestResolver, normalize_digest, try_resolve
from acc_trust.core.models import TrustStatusReport, VerificationRecord
from acc_trust.core.registry import RegistryClient, fetch_remote_attestations
from acc_trust.core.state import VerificationStateStore
from acc_trust.core.store import AttestationStore

logger = logging.getLogger(__name__)


class TrustStatusAggregator:
    """Merges the verification record and attestations of an image into a report.

    Missing history is not an error here: it is reported as ``unknown``.
    """

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

    def _attestations(self, image_ref: str, record: VerificationRecord, remote: bool) -> List[str]:
        digest = try_resolve(self.resolver, image_ref) or normalize_digest(record.image_digest)
        if not digest:
            logger.debug("No digest for %s; reporting no attestations", image_ref)
            return []

        if remote and self.registry is not None:
            fetch_remote_attestations(self.registry, self.store, image_ref, digest)
        return [self.paths.relative(path) for path in self.store.find_for_digest(digest)]

    def status(self, image_ref: str, remote: bool = False) -> TrustStatusReport:
        record = self.state.find(image_ref)
        if record is None:
            return TrustStatusReport(image_ref=image_ref)

        decision = record.policy_decision
        return TrustStatusReport(
            image_ref=image_ref,
            status=record.status.value,
            profile_used=record.profile_used or None,
            violations=list(decision.violations),
            warnings=list(decision.warnings),
            sbom_present=record.sbom_present,
            attestations=self._attestations(image_ref, record, remote),
            timestamp=record.timestamp,
        )
