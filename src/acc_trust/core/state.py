# SPDX-License-Identifier: MPL-2.0
"""Verification state persistence.

One record is kept per image digest under ``.acc/state/verify/`` and the most
recent record is also written to ``.acc/state/last_verify.json``.  That
single slot is only honoured for the exact image reference it was written
for; it never answers for another image.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from acc_trust.core.config import AccPaths
from acc_trust.core.digest import DigestResolver, normalize_digest, try_resolve
from acc_trust.core.exceptions import StateNotFoundError
from acc_trust.core.models import AttestationPointer, VerificationRecord

logger = logging.getLogger(__name__)


def write_json(path: Path, data: dict) -> None:
    """Write ``data`` as indented JSON, replacing ``path`` atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise


def read_record(path: Path) -> VerificationRecord:
    """Read a record file.

    Raises:
        StateNotFoundError: If the file is missing, unreadable, malformed, or
            holds a record that violates the status/decision invariant.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise StateNotFoundError(f"no verification state at {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable verification state %s: %s", path, e)
        raise StateNotFoundError(f"unreadable verification state at {path}") from e

    try:
        return VerificationRecord.model_validate(data)
    except ValidationError as e:
        logger.warning("Ignoring invalid verification state %s: %s", path, e)
        raise StateNotFoundError(f"invalid verification state at {path}") from e


class VerificationStateStore:
    """Persists and loads verification records keyed by image digest."""

    def __init__(self, paths: AccPaths, resolver: DigestResolver):
        self.paths = paths
        self.resolver = resolver

    def record_path(self, digest: str) -> Path:
        return self.paths.verify_dir / f"{normalize_digest(digest)}.json"

    def save(self, record: VerificationRecord) -> VerificationRecord:
        """Write ``record`` to its digest slot and the last-verification slot.

        If the record carries no digest one is resolved; when that fails only
        the last-verification slot is written.
        """
        digest = normalize_digest(record.image_digest) or try_resolve(self.resolver, record.image_ref)
        if digest != record.image_digest:
            record = record.model_copy(update={"image_digest": digest})

        data = record.to_dict()
        write_json(self.paths.last_verify, data)
        if digest:
            write_json(self.record_path(digest), data)
        else:
            logger.warning(
                "Digest unresolved for %s; verification stored in the last-verification slot only",
                record.image_ref,
            )
        return record

    def load(self, image_ref: str) -> VerificationRecord:
        """Load the verification record for ``image_ref``.

        Raises:
            StateNotFoundError: If no record exists for this exact image.
        """
        digest = try_resolve(self.resolver, image_ref)
        if digest:
            path = self.record_path(digest)
            if path.exists():
                try:
                    record = read_record(path)
                except StateNotFoundError:
                    record = None
                if record is not None and normalize_digest(record.image_digest) in ("", digest):
                    return record

        record = read_record(self.paths.last_verify)
        if record.image_ref != image_ref:
            raise StateNotFoundError(
                f"state mismatch: found state for {record.image_ref}, requested {image_ref}"
            )
        recorded = normalize_digest(record.image_digest)
        if digest and recorded and recorded != digest:
            raise StateNotFoundError(
                f"state mismatch: {image_ref} now resolves to {digest[:12]} "
                f"but was verified as {recorded[:12]}"
            )
        return record

    def load_last(self) -> VerificationRecord:
        """Load the most recent verification record regardless of image.

        Raises:
            StateNotFoundError: If no verification has been recorded.
        """
        return read_record(self.paths.last_verify)

    def find(self, image_ref: str) -> Optional[VerificationRecord]:
        """Like :meth:`load` but returns ``None`` instead of raising."""
        try:
            return self.load(image_ref)
        except StateNotFoundError:
            return None

    def save_attestation_pointer(self, pointer: AttestationPointer) -> None:
        write_json(self.paths.last_attestation, pointer.to_dict())

    def load_attestation_pointer(self) -> Optional[AttestationPointer]:
        try:
            with open(self.paths.last_attestation, "r", encoding="utf-8") as f:
                return AttestationPointer.model_validate(json.load(f))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("Ignoring unreadable attestation pointer: %s", e)
            return None
