"""Conformance tests for attestation-v0.1 JSON schema."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from jsonschema import ValidationError, validate

from acc_trust.schemas import ATTESTATION_SCHEMA, load_schema

VECTORS_DIR = Path(__file__).resolve().parent / "vectors" / "attestation"

SCHEMA = load_schema(ATTESTATION_SCHEMA)


def load_vectors(kind: str) -> list[Path]:
    return sorted((VECTORS_DIR / kind).glob("*.json"))


@pytest.mark.parametrize("vector", load_vectors("valid"), ids=lambda p: p.stem)
def test_valid_vectors(vector: Path) -> None:
    data = json.loads(vector.read_text())
    validate(instance=data, schema=SCHEMA)


@pytest.mark.parametrize("vector", load_vectors("invalid"), ids=lambda p: p.stem)
def test_invalid_vectors(vector: Path) -> None:
    data = json.loads(vector.read_text())
    with pytest.raises(ValidationError):
        validate(instance=data, schema=SCHEMA)


def test_forged_attestation_conforms(tmp_path) -> None:
    """Documents written by the forge always match the published schema."""
    from acc_trust.core.attestation import AttestationForge
    from acc_trust.core.config import AccConfig, AccPaths
    from acc_trust.core.models import PolicyDecision, VerificationRecord
    from acc_trust.core.state import VerificationStateStore

    from conftest import IMAGE_A, DIGEST_A, FakeResolver

    paths = AccPaths(tmp_path)
    resolver = FakeResolver({IMAGE_A: DIGEST_A})
    VerificationStateStore(paths, resolver).save(
        VerificationRecord.from_decision(IMAGE_A, PolicyDecision(allow=True))
    )
    config = AccConfig.model_validate({"project": {"name": "demo"}, "policy": {"mode": "warn"}})

    result = AttestationForge(paths, resolver).create(IMAGE_A, config)
    validate(instance=json.loads(result.path.read_text()), schema=SCHEMA)
