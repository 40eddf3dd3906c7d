# SPDX-License-Identifier: MPL-2.0
"""Image digest resolution.

The trust core never spawns processes itself; it asks a
:class:`DigestResolver` for digests.  :class:`ContainerToolResolver` is the
production implementation and shells out to whichever container runtime is
installed.  Tests substitute a resolver backed by a dictionary.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import subprocess
from typing import Any, Dict, List, Optional, Protocol, Sequence

from acc_trust.core.exceptions import DigestUnresolvedError

logger = logging.getLogger(__name__)

CONTAINER_TOOLS = ("docker", "podman", "nerdctl")
DIGEST_PREFIX_LENGTH = 12
INSPECT_TIMEOUT = 60  # seconds


class DigestResolver(Protocol):
    """Resolves an image reference to a bare lower-case hex digest."""

    def resolve(self, image_ref: str) -> str:
        """Return the digest for ``image_ref`` or raise DigestUnresolvedError."""
        ...


def normalize_digest(digest: str) -> str:
    """Trim, lower-case and strip an optional ``sha256:`` prefix."""
    digest = digest.strip().lower()
    if digest.startswith("sha256:"):
        digest = digest[len("sha256:"):]
    return digest


def digest_prefix(digest: str) -> str:
    """Return the directory key for ``digest``: its first 12 hex characters."""
    return normalize_digest(digest)[:DIGEST_PREFIX_LENGTH]


def sanitize_ref(image_ref: str) -> str:
    """Turn an image reference into a safe directory name.

    The registry and tag are dropped and any remaining character outside
    ``[a-zA-Z0-9_-]`` is replaced with ``_``.
    """
    name = image_ref.split("/")[-1].split(":")[0]
    return re.sub(r"[^a-zA-Z0-9\-_]", "_", name)


def try_resolve(resolver: DigestResolver, image_ref: str) -> str:
    """Resolve a digest, returning an empty string when resolution fails."""
    try:
        return normalize_digest(resolver.resolve(image_ref))
    except DigestUnresolvedError as e:
        logger.debug("Digest unresolved for %s: %s", image_ref, e)
        return ""


class ContainerToolResolver:
    """Resolve digests through docker, podman or nerdctl ``inspect``.

    Tools are tried in a fixed order and the first non-empty image id wins.
    Nothing is cached: re-tagging an image changes the answer.
    """

    def __init__(self, tools: Sequence[str] = CONTAINER_TOOLS, timeout: float = INSPECT_TIMEOUT):
        self.tools = tuple(tools)
        self.timeout = timeout

    def available_tools(self) -> List[str]:
        return [tool for tool in self.tools if shutil.which(tool)]

    def _run(self, args: List[str]) -> Optional[str]:
        try:
            completed = subprocess.run(
                args, capture_output=True, text=True, timeout=self.timeout, check=False
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("%s failed: %s", " ".join(args), e)
            return None
        if completed.returncode != 0:
            logger.debug("%s exited %d: %s", " ".join(args), completed.returncode, completed.stderr.strip())
            return None
        return completed.stdout

    def resolve(self, image_ref: str) -> str:
        tools = self.available_tools()
        if not tools:
            raise DigestUnresolvedError(
                f"could not resolve digest for {image_ref}: no container tool installed",
                details={"tried": list(self.tools)},
            )

        for tool in tools:
            output = self._run([tool, "inspect", "--format={{.Id}}", image_ref])
            if output is None:
                continue
            digest = normalize_digest(output)
            if digest:
                logger.debug("Resolved %s to %s via %s", image_ref, digest[:DIGEST_PREFIX_LENGTH], tool)
                return digest

        raise DigestUnresolvedError(
            f"could not resolve digest for {image_ref}", details={"tried": tools}
        )

    def inspect_config(self, image_ref: str) -> Dict[str, Any]:
        """Return ``{"User": ..., "Labels": {...}}`` from the image config.

        Raises:
            DigestUnresolvedError: If no tool can inspect the image.
        """
        tools = self.available_tools()
        for tool in tools:
            output = self._run([tool, "inspect", image_ref])
            if output is None:
                continue
            try:
                inspected = json.loads(output)
            except json.JSONDecodeError:
                continue
            if isinstance(inspected, list) and inspected and isinstance(inspected[0], dict):
                config = inspected[0].get("Config") or {}
                return {
                    "User": config.get("User") or "",
                    "Labels": config.get("Labels") or {},
                }

        if not tools:
            raise DigestUnresolvedError(
                "no container tools found (docker/podman/nerdctl required)"
            )
        raise DigestUnresolvedError(f"failed to inspect image {image_ref} (tried {'/'.join(tools)})")
