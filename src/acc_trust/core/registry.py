# SPDX-License-Identifier: MPL-2.0
"""Remote attestation publishing and fetching.

Attestations are stored as OCI artifacts in the image's own repository under
tags of the form ``attestation-<digest12>-<timestamp>``.  Transport is
delegated to a :class:`RegistryClient`; the default client drives the
``oras`` CLI.  Remote failures never change a local trust decision.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, NamedTuple, Protocol

from acc_trust.core.digest import digest_prefix
from acc_trust.core.exceptions import RegistryError
from acc_trust.core.store import AttestationStore

logger = logging.getLogger(__name__)

ATTESTATION_MEDIA_TYPE = "application/vnd.acc.attestation.v1+json"
ATTESTATION_FILENAME = "attestation.json"
ORAS_TIMEOUT = 120  # seconds


class ImageReference(NamedTuple):
    registry: str
    repository: str
    reference: str

    @property
    def repository_ref(self) -> str:
        return f"{self.registry}/{self.repository}"


def parse_image_ref(image_ref: str) -> ImageReference:
    """Split ``registry/repo[:tag|@digest]`` into its parts.

    Raises:
        RegistryError: If the reference has no registry component.
    """
    parts = image_ref.split("/", 1)
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise RegistryError(f"invalid image reference format: {image_ref}")
    registry, rest = parts

    if "@" in rest:
        repository, reference = rest.split("@", 1)
    elif ":" in rest:
        repository, reference = rest.split(":", 1)
    else:
        repository, reference = rest, "latest"
    return ImageReference(registry, repository, reference)


def attestation_tag_prefix(digest: str) -> str:
    return f"attestation-{digest_prefix(digest)}-"


def attestation_tag(digest: str, timestamp: str) -> str:
    """Tag for an attestation; OCI tags cannot contain ``:``."""
    return attestation_tag_prefix(digest) + timestamp.replace(":", "-")


class RegistryClient(Protocol):
    """Moves attestation documents to and from an OCI registry."""

    def publish(self, image_ref: str, digest: str, content: bytes, timestamp: str) -> str:
        """Publish ``content`` and return the pushed artifact reference."""
        ...

    def fetch(self, image_ref: str, digest: str) -> List[bytes]:
        """Return the raw content of every attestation published for ``digest``."""
        ...


class OrasRegistryClient:
    """RegistryClient backed by the ``oras`` command line tool."""

    def __init__(self, executable: str = "oras", timeout: float = ORAS_TIMEOUT):
        self.executable = executable
        self.timeout = timeout

    def _oras(self, *args: str, cwd: Path) -> str:
        if shutil.which(self.executable) is None:
            raise RegistryError(f"{self.executable} CLI not found; install oras for remote attestations")

        cmd = [self.executable, *args]
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, cwd=cwd, timeout=self.timeout, check=False
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise RegistryError(f"{' '.join(cmd[:2])} failed: {e}") from e
        if result.returncode != 0:
            raise RegistryError(
                f"{' '.join(cmd[:2])} failed: {result.stderr.strip()}",
                details={"returncode": result.returncode},
            )
        return result.stdout

    def publish(self, image_ref: str, digest: str, content: bytes, timestamp: str) -> str:
        ref = parse_image_ref(image_ref)
        target = f"{ref.repository_ref}:{attestation_tag(digest, timestamp)}"

        with tempfile.TemporaryDirectory(prefix="acc-attest-") as tmp:
            workdir = Path(tmp)
            (workdir / ATTESTATION_FILENAME).write_bytes(content)
            self._oras(
                "push",
                "--disable-path-validation",
                target,
                f"{ATTESTATION_FILENAME}:{ATTESTATION_MEDIA_TYPE}",
                cwd=workdir,
            )

        logger.info("Published attestation to %s", target)
        return target

    def fetch(self, image_ref: str, digest: str) -> List[bytes]:
        ref = parse_image_ref(image_ref)
        prefix = attestation_tag_prefix(digest)

        with tempfile.TemporaryDirectory(prefix="acc-fetch-") as tmp:
            workdir = Path(tmp)
            tags = self._oras("repo", "tags", ref.repository_ref, cwd=workdir).split()
            matching = sorted(tag for tag in tags if tag.startswith(prefix))

            contents = []
            for tag in matching:
                pull_dir = workdir / tag
                pull_dir.mkdir()
                try:
                    self._oras("pull", f"{ref.repository_ref}:{tag}", "-o", str(pull_dir), cwd=workdir)
                except RegistryError as e:
                    logger.warning("Skipping remote attestation %s: %s", tag, e)
                    continue
                for path in sorted(pull_dir.rglob("*.json")):
                    contents.append(path.read_bytes())
        return contents


def publish_attestation(
    client: RegistryClient, image_ref: str, digest: str, content: bytes, timestamp: str
) -> str:
    """Publish an attestation.

    Raises:
        RegistryError: If the digest is unknown or the client fails.
    """
    if not digest:
        raise RegistryError("cannot publish attestation without a resolved image digest")
    return client.publish(image_ref, digest, content, timestamp)


def fetch_remote_attestations(
    client: RegistryClient, store: AttestationStore, image_ref: str, digest: str
) -> int:
    """Fetch remote attestations into the local cache.

    Returns the number of newly cached documents.  Failures are logged and
    reported as zero so that callers keep working from local attestations.
    """
    if not digest:
        return 0
    try:
        ref = parse_image_ref(image_ref)
        contents = client.fetch(image_ref, digest)
    except RegistryError as e:
        logger.warning("Failed to fetch remote attestations for %s: %s", image_ref, e)
        return 0

    cached = 0
    for content in contents:
        if store.cache_remote(digest, ref.registry, ref.repository, content) is not None:
            cached += 1
    logger.debug("Cached %d of %d remote attestation(s) for %s", cached, len(contents), image_ref)
    return cached
