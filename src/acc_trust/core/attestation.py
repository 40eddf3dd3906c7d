# SPDX-License-Identifier: MPL-2.0
"""Creation of attestations from the last verification record."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from acc_trust.core.config import AccConfig, AccPaths
from acc_trust.core.crypto import KeyPair
from acc_trust.core.digest import DigestResolver, digest_prefix, normalize_digest, try_resolve
from acc_trust.core.envelope import sign_attestation, signed_document
from acc_trust.core.exceptions import (
    AccError,
    ImageMismatchError,
    NoVerificationStateError,
    RegistryError,
    StateNotFoundError,
)
from acc_trust.core.hashing import compute_results_hash
from acc_trust.core.models import (
    AttestationDocument,
    AttestationEvidence,
    AttestationMetadata,
    AttestationPointer,
    AttestationSubject,
    SignatureEnvelope,
    VerificationRecord,
)
from acc_trust.core.registry import RegistryClient, publish_attestation
from acc_trust.core.state import VerificationStateStore
from acc_trust.core.store import AttestationStore
from acc_trust.schemas import ATTESTATION_SCHEMA, validate_document

logger = logging.getLogger(__name__)


@dataclass
class AttestationResult:
    """Outcome of :meth:`AttestationForge.create`."""

    document: AttestationDocument
    path: Path
    results_hash: str
    envelope: Optional[SignatureEnvelope] = None
    remote_ref: Optional[str] = None
    remote_error: Optional[str] = None

    @property
    def digest(self) -> str:
        return self.document.subject.image_digest

    def to_dict(self, paths: AccPaths) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "outputPath": paths.relative(self.path),
            "attestation": self.document.to_dict(),
        }
        if self.envelope is not None:
            data["envelope"] = self.envelope.to_dict()
        if self.remote_ref:
            data["remoteRef"] = self.remote_ref
        if self.remote_error:
            data["remoteError"] = self.remote_error
        return data


class AttestationForge:
    """Builds and stores attestations bound to a verification decision.

    Nothing is announced through ``notify`` and nothing is written until the
    last verification record has been loaded and shown to belong to the
    image being attested.
    """

    def __init__(
        self,
        paths: AccPaths,
        resolver: DigestResolver,
        state: Optional[VerificationStateStore] = None,
        store: Optional[AttestationStore] = None,
        registry: Optional[RegistryClient] = None,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.paths = paths
        self.resolver = resolver
        self.state = state or VerificationStateStore(paths, resolver)
        self.store = store or AttestationStore(paths)
        self.registry = registry
        self.notify = notify

    def _check_image_match(self, image_ref: str, record: VerificationRecord) -> str:
        """Return the resolved digest of ``image_ref`` if it is the verified image.

        Digests decide when both sides resolve; otherwise the references must
        be identical strings.
        """
        current = try_resolve(self.resolver, image_ref)
        verified = try_resolve(self.resolver, record.image_ref) or normalize_digest(record.image_digest)

        if current and verified:
            if current == verified:
                return current
            raise ImageMismatchError(
                f"image mismatch: attempting to attest '{image_ref}' (digest: sha256:{digest_prefix(current)}) "
                f"but last verified image was '{record.image_ref}' (digest: sha256:{digest_prefix(verified)})",
                remediation=f"Run 'acc verify {image_ref}' first",
                details={"imageRef": image_ref, "verifiedRef": record.image_ref},
            )

        if image_ref != record.image_ref:
            raise ImageMismatchError(
                f"image mismatch: attempting to attest '{image_ref}' "
                f"but last verified image was '{record.image_ref}'",
                remediation=f"Run 'acc verify {image_ref}' first",
                details={"imageRef": image_ref, "verifiedRef": record.image_ref},
            )
        return current

    def _sbom_ref(self, config: AccConfig) -> str:
        path = config.sbom_path(self.paths)
        return self.paths.relative(path) if path.is_file() else ""

    def create(
        self,
        image_ref: str,
        config: AccConfig,
        tool_version: str = "",
        git_commit: str = "",
        signing_key: Optional[Callable[[], KeyPair]] = None,
        remote: bool = False,
    ) -> AttestationResult:
        """Create, persist and optionally sign and publish an attestation.

        ``signing_key`` is called only after the verification record has been
        found and matched to ``image_ref``; a rejected request creates no key.

        Raises:
            NoVerificationStateError: If nothing has been verified yet.
            ImageMismatchError: If ``image_ref`` is not the last verified image.
        """
        if not image_ref:
            raise AccError("image reference required")

        try:
            record = self.state.load_last()
        except StateNotFoundError as e:
            raise NoVerificationStateError(
                "verification state not found",
                remediation=f"Run 'acc verify {image_ref}' first to generate verification results",
            ) from e

        digest = self._check_image_match(image_ref, record)
        key_pair = signing_key() if signing_key is not None else None

        if self.notify is not None:
            self.notify(f"Creating attestation for {image_ref}")
        if not digest:
            logger.warning("Could not resolve digest for %s; attestation will not be digest-bound", image_ref)

        results_hash = compute_results_hash(record)
        document = AttestationDocument(
            subject=AttestationSubject(image_ref=image_ref, image_digest=digest),
            evidence=AttestationEvidence(
                sbom_ref=self._sbom_ref(config),
                policy_mode=config.policy.mode,
                verification_status=record.status.value,
                verification_results_hash=results_hash,
            ),
            metadata=AttestationMetadata(tool_version=tool_version, git_commit=git_commit),
        )

        validate_document(document.to_dict(), ATTESTATION_SCHEMA)

        envelope = None
        if key_pair is not None:
            envelope = sign_attestation(document, key_pair)
            content = signed_document(document, envelope)
        else:
            content = document.to_dict()

        path = self.store.write(content, digest, image_ref)
        result = AttestationResult(document=document, path=path, results_hash=results_hash, envelope=envelope)

        pointer = AttestationPointer(
            output_path=self.paths.relative(path),
            timestamp=document.timestamp,
            image_ref=image_ref,
            image_digest=digest,
            status=record.status.value,
        )
        try:
            self.state.save_attestation_pointer(pointer)
        except OSError as e:
            logger.warning("Failed to update last attestation pointer: %s", e)

        if remote:
            self._publish(result, image_ref, content)
        return result

    def _publish(self, result: AttestationResult, image_ref: str, content: Dict[str, Any]) -> None:
        if self.registry is None:
            result.remote_error = "no registry client configured"
            logger.warning("Remote publish requested but no registry client is configured")
            return
        try:
            result.remote_ref = publish_attestation(
                self.registry,
                image_ref,
                result.digest,
                (json.dumps(content, indent=2) + "\n").encode("utf-8"),
                result.document.timestamp,
            )
        except RegistryError as e:
            result.remote_error = str(e)
            logger.warning("Failed to publish attestation to remote registry: %s", e)
