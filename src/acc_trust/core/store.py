# SPDX-License-Identifier: MPL-2.0
"""Digest-scoped attestation storage and validation.

Attestations live under ``.acc/attestations/<digest-prefix-12>/``.  Local
documents are written to ``local/`` and documents pulled from a registry are
cached under ``remote/<registry>/<repo>/``.  Lookups for one digest never
look outside that digest's directory.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from acc_trust.core.config import AccPaths
from acc_trust.core.digest import digest_prefix, normalize_digest, sanitize_ref
from acc_trust.core.envelope import verify_envelope
from acc_trust.core.models import AttestationDetail

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("schemaVersion", "timestamp", "subject", "evidence")
FILENAME_TIME_FORMAT = "%Y%m%d-%H%M%S-%f"

REASON_UNREADABLE = "cannot read file"
REASON_INVALID_JSON = "invalid JSON"
REASON_INVALID_ENVELOPE = "invalid envelope format"
REASON_INVALID_SCHEMA = "invalid schema"
REASON_DIGEST_MISMATCH = "digest mismatch"
REASON_MISSING_HASH = "missing results hash"
REASON_HASH_MISMATCH = "results hash mismatch"
REASON_SIGNATURE_INVALID = "signature invalid"


def _str_field(data: Any, *keys: str) -> str:
    for key in keys:
        if not isinstance(data, dict):
            return ""
        data = data.get(key)
    return data if isinstance(data, str) else ""


def split_envelope(document: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """Split a parsed file into ``(attestation, envelope)``.

    Unsigned files return ``(document, None)``.  A file that has an
    ``attestation`` key without a usable ``envelope`` returns ``(None, None)``.
    """
    if "attestation" not in document:
        return document, None
    attestation = document.get("attestation")
    envelope = document.get("envelope")
    if not isinstance(attestation, dict) or not isinstance(envelope, dict):
        return None, None
    return attestation, envelope


class AttestationStore:
    """Reads, writes and validates attestation files for one project root."""

    def __init__(self, paths: AccPaths):
        self.paths = paths

    def digest_dir(self, digest: str) -> Path:
        return self.paths.attestations_dir / digest_prefix(digest)

    def local_dir(self, digest: str, image_ref: str = "") -> Path:
        """Directory for locally created attestations.

        Falls back to a sanitised image reference when the digest is unknown.
        """
        key = digest_prefix(digest) if normalize_digest(digest) else sanitize_ref(image_ref)
        return self.paths.attestations_dir / key / "local"

    def remote_cache_path(self, digest: str, registry: str, repository: str, content: bytes) -> Path:
        name = hashlib.sha256(content).hexdigest()[:16]
        return self.digest_dir(digest) / "remote" / registry / repository / f"{name}.json"

    def write(self, document: Dict[str, Any], digest: str, image_ref: str) -> Path:
        """Write a new attestation file without touching existing ones.

        Filenames carry a microsecond timestamp; if a file with the same name
        already exists a numeric suffix is added.
        """
        directory = self.local_dir(digest, image_ref)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime(FILENAME_TIME_FORMAT)
        content = json.dumps(document, indent=2) + "\n"

        attempt = 0
        while True:
            suffix = f"-{attempt}" if attempt else ""
            path = directory / f"{stamp}{suffix}-attestation.json"
            try:
                with open(path, "x", encoding="utf-8") as f:
                    f.write(content)
            except FileExistsError:
                attempt += 1
                continue
            logger.debug("Wrote attestation %s", path)
            return path

    def cache_remote(self, digest: str, registry: str, repository: str, content: bytes) -> Optional[Path]:
        """Cache a fetched attestation; returns None if it was already cached."""
        path = self.remote_cache_path(digest, registry, repository, content)
        if path.exists():
            return None
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(path, "xb") as f:
                f.write(content)
        except FileExistsError:
            return None
        return path

    def find_for_digest(self, digest: str) -> List[Path]:
        """List attestation files stored for ``digest``.

        An empty digest never widens the search: it yields no results.
        """
        if not normalize_digest(digest):
            logger.warning("Attestation lookup with an empty digest; returning no attestations")
            return []

        root = self.digest_dir(digest)
        if not root.is_dir():
            return []

        found = []
        for dirpath, _dirnames, filenames in os.walk(root, followlinks=False):
            for filename in filenames:
                if filename.endswith(".json") and not filename.startswith("."):
                    found.append(Path(dirpath) / filename)
        return sorted(found)

    def validate(
        self, path: Path, expected_digest: str, expected_results_hash: str = ""
    ) -> AttestationDetail:
        """Check one attestation file against a digest and results hash.

        Every failure is reported through ``invalidReason``; the first failing
        check wins.  A bad signature always clears ``validSchema``.
        """
        detail = AttestationDetail(path=self.paths.relative(path))

        try:
            raw = path.read_bytes()
        except OSError:
            detail.invalid_reason = REASON_UNREADABLE
            return detail

        try:
            document = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            detail.invalid_reason = REASON_INVALID_JSON
            return detail
        if not isinstance(document, dict):
            detail.invalid_reason = REASON_INVALID_JSON
            return detail

        attestation, envelope = split_envelope(document)
        if attestation is None:
            detail.invalid_reason = REASON_INVALID_ENVELOPE
            return detail

        detail.timestamp = _str_field(attestation, "timestamp")
        detail.verification_status = _str_field(attestation, "evidence", "verificationStatus")
        detail.verification_results_hash = _str_field(attestation, "evidence", "verificationResultsHash")

        reasons = []
        detail.valid_schema = all(field in attestation for field in REQUIRED_FIELDS)
        if not detail.valid_schema:
            reasons.append(REASON_INVALID_SCHEMA)

        expected = normalize_digest(expected_digest)
        attested = normalize_digest(_str_field(attestation, "subject", "imageDigest"))
        detail.digest_match = bool(expected) and attested == expected
        if not detail.digest_match:
            reasons.append(REASON_DIGEST_MISMATCH)

        if not detail.verification_results_hash:
            reasons.append(REASON_MISSING_HASH)
        elif expected_results_hash:
            detail.results_hash_match = detail.verification_results_hash == expected_results_hash
            if not detail.results_hash_match:
                reasons.append(REASON_HASH_MISMATCH)

        if envelope is not None:
            detail.signed = True
            detail.key_id = _str_field(envelope, "keyId")
            if not verify_envelope(attestation, envelope):
                detail.valid_schema = False
                reasons.append(REASON_SIGNATURE_INVALID)

        detail.invalid_reason = reasons[0] if reasons else ""
        return detail

    def evaluate(self, digest: str, expected_results_hash: str = "") -> List[AttestationDetail]:
        """Validate every attestation for ``digest``, ordered by (timestamp, path)."""
        details = [
            self.validate(path, digest, expected_results_hash)
            for path in self.find_for_digest(digest)
        ]
        return sorted(details, key=lambda d: (d.timestamp, d.path))

    def has_valid_attestation(self, digest: str, expected_results_hash: str) -> bool:
        return any(d.is_valid() for d in self.evaluate(digest, expected_results_hash))
