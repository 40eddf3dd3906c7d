"""Shared fixtures: a temporary project and fake external collaborators."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from acc_trust.core.config import AccConfig, AccPaths
from acc_trust.core.exceptions import DigestUnresolvedError, PolicyEvaluationError, RegistryError
from acc_trust.core.models import PolicyDecision, VerificationRecord, Violation
from acc_trust.core.state import VerificationStateStore
from acc_trust.core.store import AttestationStore


def make_digest(name: str) -> str:
    return hashlib.sha256(name.encode("utf-8")).hexdigest()


IMAGE_A = "registry.example.com/team/app-a:1.0"
IMAGE_B = "registry.example.com/team/app-b:1.0"
DIGEST_A = make_digest("image-a")
DIGEST_B = make_digest("image-b")


class FakeResolver:
    """DigestResolver backed by a dictionary."""

    def __init__(self, digests: Optional[Dict[str, str]] = None):
        self.digests = dict(digests or {})
        self.calls: List[str] = []

    def resolve(self, image_ref: str) -> str:
        self.calls.append(image_ref)
        try:
            return self.digests[image_ref]
        except KeyError:
            raise DigestUnresolvedError(f"could not resolve digest for {image_ref}") from None


class FakeInspector:
    def __init__(self, config: Optional[dict] = None, fail: bool = False):
        self.config = config if config is not None else {"User": "1000", "Labels": {}}
        self.fail = fail

    def inspect_config(self, image_ref: str) -> dict:
        if self.fail:
            raise DigestUnresolvedError("no container tools found (docker/podman/nerdctl required)")
        return self.config


class FakeEngine:
    def __init__(self, violations: Optional[List[Violation]] = None, error: Optional[str] = None):
        self.violations = violations or []
        self.error = error
        self.inputs: List[dict] = []

    def evaluate(self, input_document: dict) -> List[Violation]:
        self.inputs.append(input_document)
        if self.error:
            raise PolicyEvaluationError(self.error)
        return list(self.violations)


class FakeRegistry:
    """RegistryClient keeping published artifacts in memory."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published: Dict[str, List[bytes]] = {}

    def publish(self, image_ref: str, digest: str, content: bytes, timestamp: str) -> str:
        if self.fail:
            raise RegistryError("registry unreachable")
        self.published.setdefault(digest, []).append(content)
        return f"{image_ref.split(':')[0]}:attestation-{digest[:12]}-{timestamp.replace(':', '-')}"

    def fetch(self, image_ref: str, digest: str) -> List[bytes]:
        if self.fail:
            raise RegistryError("registry unreachable")
        return list(self.published.get(digest, []))


def violation(rule: str, severity: str = "high", message: str = "") -> Violation:
    return Violation(rule=rule, severity=severity, result="fail", message=message or f"{rule} violated")


def make_record(
    image_ref: str = IMAGE_A,
    digest: str = DIGEST_A,
    violations: Optional[List[Violation]] = None,
    **kwargs,
) -> VerificationRecord:
    violations = violations or []
    decision = PolicyDecision(allow=not violations, violations=violations)
    return VerificationRecord.from_decision(
        image_ref, decision, image_digest=digest, sbom_present=True, **kwargs
    )


@pytest.fixture
def paths(tmp_path: Path) -> AccPaths:
    return AccPaths(tmp_path)


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver({IMAGE_A: DIGEST_A, IMAGE_B: DIGEST_B})


@pytest.fixture
def config() -> AccConfig:
    return AccConfig.model_validate({"project": {"name": "demo"}})


@pytest.fixture
def state(paths: AccPaths, resolver: FakeResolver) -> VerificationStateStore:
    return VerificationStateStore(paths, resolver)


@pytest.fixture
def store(paths: AccPaths) -> AttestationStore:
    return AttestationStore(paths)


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()
