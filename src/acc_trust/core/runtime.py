# SPDX-License-Identifier: MPL-2.0
"""Gated run and push of container workloads.

Both flows call :class:`~acc_trust.core.enforcement.EnforcementGate` first.
Anything that goes wrong after the gate allowed the image raises
:class:`RuntimeUnavailableError` or :class:`WorkloadExecutionError`, never a
trust error.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from acc_trust.core.digest import DigestResolver, try_resolve
from acc_trust.core.enforcement import EnforcementGate
from acc_trust.core.exceptions import RuntimeUnavailableError, WorkloadExecutionError
from acc_trust.core.models import PushResult
from acc_trust.core.state import VerificationStateStore

logger = logging.getLogger(__name__)

RUNTIMES = ("docker", "podman", "nerdctl")
PUSH_TOOLS = ("nerdctl", "docker", "oras")
HARDENED_RUNTIMES = ("docker", "podman")

Which = Callable[[str], Optional[str]]


def detect_runtime(runtimes: Sequence[str] = RUNTIMES, which: Which = shutil.which) -> str:
    for runtime in runtimes:
        if which(runtime):
            return runtime
    raise RuntimeUnavailableError(
        "no container runtime found (docker, podman, or nerdctl required)"
    )


@dataclass
class RunOptions:
    """Options for a gated workload run."""

    image_ref: str
    args: List[str] = field(default_factory=list)
    network: str = "none"
    read_only: bool = False
    user: str = ""
    cap_add: List[str] = field(default_factory=list)


def build_run_command(
    runtime: str, options: RunOptions, stdin_tty: bool = False, stdout_tty: bool = False
) -> List[str]:
    """Build a ``<runtime> run`` command with restrictive defaults.

    Networking is off unless asked for.  On docker and podman every
    capability is dropped except those requested and privilege escalation is
    disabled.
    """
    cmd = [runtime, "run", "--rm"]
    if stdin_tty:
        cmd.append("-i")
    if stdout_tty:
        cmd.append("-t")

    if options.user:
        cmd.extend(["--user", options.user])
    elif runtime in HARDENED_RUNTIMES:
        logger.warning("No user specified; consider --user to run as non-root")

    if options.read_only:
        cmd.append("--read-only")
    cmd.extend(["--network", options.network or "none"])

    if runtime in HARDENED_RUNTIMES:
        cmd.extend(["--cap-drop", "ALL"])
        for cap in options.cap_add:
            cmd.extend(["--cap-add", cap])
        cmd.extend(["--security-opt", "no-new-privileges"])

    cmd.append(options.image_ref)
    cmd.extend(options.args)
    return cmd


class WorkloadRunner:
    """Runs an image locally once the trust gate allows it."""

    def __init__(
        self,
        gate: EnforcementGate,
        which: Which = shutil.which,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.gate = gate
        self.which = which
        self.runner = runner

    def run(self, options: RunOptions, require_attestation: bool = False) -> List[str]:
        """Gate, then run the workload in the foreground.

        Returns:
            The command that was executed.
        """
        self.gate.check(options.image_ref, require_attestation)

        runtime = detect_runtime(which=self.which)
        cmd = build_run_command(
            runtime, options, stdin_tty=sys.stdin.isatty(), stdout_tty=sys.stdout.isatty()
        )
        logger.info("Running: %s", " ".join(cmd))

        try:
            completed = self.runner(cmd, check=False)
        except OSError as e:
            raise WorkloadExecutionError(f"failed to start {runtime}: {e}") from e
        if completed.returncode != 0:
            raise WorkloadExecutionError(
                f"workload exited with status {completed.returncode}",
                details={"returncode": completed.returncode, "command": cmd},
            )
        return cmd


class ImagePusher:
    """Pushes an image to its registry once the trust gate allows it."""

    def __init__(
        self,
        gate: EnforcementGate,
        resolver: DigestResolver,
        state: VerificationStateStore,
        which: Which = shutil.which,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.gate = gate
        self.resolver = resolver
        self.state = state
        self.which = which
        self.runner = runner

    def _push(self, image_ref: str, quiet: bool) -> str:
        tried = []
        for tool in PUSH_TOOLS:
            if not self.which(tool):
                continue
            tried.append(tool)
            kwargs = {"capture_output": True, "text": True} if quiet else {}
            try:
                completed = self.runner([tool, "push", image_ref], check=False, **kwargs)
            except OSError as e:
                logger.debug("%s push failed: %s", tool, e)
                continue
            if completed.returncode == 0:
                return tool
            logger.debug("%s push exited %d", tool, completed.returncode)

        if not tried:
            raise RuntimeUnavailableError(
                "push not possible: no supported tool found (install nerdctl, docker, or oras)"
            )
        raise WorkloadExecutionError(f"push failed with every available tool ({', '.join(tried)})")

    def push(self, image_ref: str, require_attestation: bool = False, quiet: bool = False) -> PushResult:
        record = self.gate.check(image_ref, require_attestation)

        digest = try_resolve(self.resolver, image_ref)
        tool = self._push(image_ref, quiet)
        logger.info("Pushed %s with %s", image_ref, tool)

        pointer = self.state.load_attestation_pointer()
        attestation_ref = None
        if pointer is not None and pointer.image_ref == image_ref:
            attestation_ref = pointer.output_path

        return PushResult(
            image_ref=image_ref,
            image_digest=digest,
            verification_status=record.status.value,
            pushed=True,
            attestation_ref=attestation_ref,
        )
