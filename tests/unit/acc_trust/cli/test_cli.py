"""End-to-end tests of the acc command line through click's test runner."""

import json
import logging

import pytest
from click.testing import CliRunner

from acc_trust.cli.commands import AppContext
from acc_trust.cli.main import cli
from acc_trust.core.config import AccPaths

from conftest import (
    IMAGE_A,
    IMAGE_B,
    DIGEST_A,
    DIGEST_B,
    FakeEngine,
    FakeInspector,
    FakeRegistry,
    FakeResolver,
    violation,
)


@pytest.fixture(autouse=True)
def restore_logging():
    # The CLI reconfigures the root logger on every invocation
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def project(tmp_path):
    (tmp_path / "acc.yaml").write_text("project:\n  name: demo\n")
    sbom = tmp_path / ".acc" / "sbom" / "demo.spdx.json"
    sbom.parent.mkdir(parents=True)
    sbom.write_text("{}")
    return tmp_path


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def invoke(project, engine, registry):
    runner = CliRunner()

    def _invoke(*args):
        app = AppContext(
            paths=AccPaths(project),
            resolver=FakeResolver({IMAGE_A: DIGEST_A, IMAGE_B: DIGEST_B}),
            inspector=FakeInspector(),
            engine=engine,
            registry=registry,
        )
        return runner.invoke(cli, list(args), obj=app)

    return _invoke


def test_version(invoke) -> None:
    result = invoke("version")
    assert result.exit_code == 0
    assert result.output.startswith("acc v")


class TestVerify:
    def test_pass(self, invoke, project) -> None:
        result = invoke("verify", IMAGE_A)
        assert result.exit_code == 0
        assert f"Verification passed: {IMAGE_A}" in result.output
        assert (project / ".acc" / "state" / "verify" / f"{DIGEST_A}.json").exists()

    def test_fail_json(self, invoke, engine) -> None:
        engine.violations = [violation("no-root-user", "critical")]
        result = invoke("--json", "verify", IMAGE_A)

        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["status"] == "fail"
        assert data["policyDecision"]["allow"] is False
        assert data["policyDecision"]["violations"][0]["rule"] == "no-root-user"

    def test_missing_config_exits_2(self, invoke, project, monkeypatch) -> None:
        monkeypatch.setenv("HOME", str(project / "home"))
        (project / "acc.yaml").unlink()
        result = invoke("verify", IMAGE_A)
        assert result.exit_code == 2
        assert "no configuration file found" in result.output

    def test_unwritable_state_exits_2(self, invoke, project) -> None:
        (project / ".acc" / "state").write_text("not a directory")
        result = invoke("--json", "verify", IMAGE_A)

        assert result.exit_code == 2
        assert "I/O error" in result.output
        assert "Traceback" not in result.output

    def test_unknown_profile_exits_2(self, invoke) -> None:
        result = invoke("--json", "verify", "--profile", "missing", IMAGE_A)
        assert result.exit_code == 2
        assert "profile not found" in json.loads(result.output)["error"]


class TestAttest:
    def test_attest_after_verify(self, invoke, project) -> None:
        invoke("verify", IMAGE_A)
        result = invoke("attest", IMAGE_A)

        assert result.exit_code == 0
        assert f"Creating attestation for {IMAGE_A}" in result.output
        assert "Attestation created" in result.output
        files = list((project / ".acc" / "attestations" / DIGEST_A[:12] / "local").glob("*.json"))
        assert len(files) == 1

    def test_attest_without_verify(self, invoke) -> None:
        result = invoke("--json", "attest", IMAGE_A)

        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["error"] == "verification state not found"
        assert "acc verify" in data["remediation"]

    def test_attest_other_image(self, invoke, project) -> None:
        invoke("verify", IMAGE_A)
        result = invoke("attest", IMAGE_B)

        assert result.exit_code == 1
        assert "Creating attestation" not in result.output
        assert "image mismatch" in result.output
        assert not (project / ".acc" / "attestations").exists()

    def test_signed_attestation(self, invoke, project) -> None:
        (project / "acc.yaml").write_text("project:\n  name: demo\nsigning:\n  mode: key\n")
        invoke("verify", IMAGE_A)
        result = invoke("--json", "attest", IMAGE_A)

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["envelope"]["alg"] == "ed25519"
        assert (project / ".acc" / "keys" / "ed25519.key").exists()

    def test_failed_attest_creates_no_key(self, invoke, project, monkeypatch) -> None:
        monkeypatch.delenv("ACC_SIGNING_KEY", raising=False)
        monkeypatch.delenv("ACC_SIGNING_KEY_FILE", raising=False)
        (project / "acc.yaml").write_text("project:\n  name: demo\nsigning:\n  mode: key\n")
        key_file = project / ".acc" / "keys" / "ed25519.key"

        assert invoke("--json", "attest", IMAGE_A).exit_code == 1
        assert not key_file.exists()

        invoke("verify", IMAGE_A)
        assert invoke("--json", "attest", IMAGE_B).exit_code == 1
        assert not key_file.exists()

    def test_remote_failure_is_a_warning(self, invoke, registry) -> None:
        registry.fail = True
        invoke("verify", IMAGE_A)
        result = invoke("attest", "--remote", IMAGE_A)

        assert result.exit_code == 0
        assert "Attestation created" in result.output
        assert "remote publish failed: registry unreachable" in result.output


class TestTrust:
    def test_status_unknown(self, invoke) -> None:
        result = invoke("--json", "trust", "status", IMAGE_A)

        assert result.exit_code == 2
        data = json.loads(result.output)
        assert data["status"] == "unknown"
        assert data["violations"] == [] and data["warnings"] == [] and data["attestations"] == []
        assert data["sbomPresent"] is False
        assert data["timestamp"] == ""

    def test_status_after_attest(self, invoke) -> None:
        invoke("verify", IMAGE_A)
        invoke("attest", IMAGE_A)
        result = invoke("--json", "trust", "status", IMAGE_A)

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"] == "pass"
        assert len(data["attestations"]) == 1

        other = json.loads(invoke("--json", "trust", "status", IMAGE_B).output)
        assert other["attestations"] == []

    def test_status_human_output(self, invoke, engine) -> None:
        engine.violations = [violation("no-root-user")]
        invoke("verify", IMAGE_A)
        result = invoke("trust", "status", IMAGE_A)

        assert result.exit_code == 1
        assert "Status: FAIL" in result.output
        assert "no-root-user" in result.output

    def test_trust_verify(self, invoke) -> None:
        assert invoke("trust", "verify", IMAGE_A).exit_code == 1

        invoke("verify", IMAGE_A)
        invoke("attest", IMAGE_A)
        result = invoke("--json", "trust", "verify", IMAGE_A)

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["verificationStatus"] == "verified"
        assert data["attestationCount"] == 1


class TestGates:
    def test_run_unverified(self, invoke) -> None:
        result = invoke("run", IMAGE_A)
        assert result.exit_code == 1
        assert f"acc verify {IMAGE_A}" in result.output

    def test_push_requires_attestation(self, invoke) -> None:
        invoke("verify", IMAGE_A)
        result = invoke("--json", "push", "--require-attestation", IMAGE_A)

        assert result.exit_code == 1
        assert "acc attest" in json.loads(result.output)["remediation"]

    def test_missing_runtime_after_gate_exits_2(self, invoke, project, monkeypatch) -> None:
        invoke("verify", IMAGE_A)
        monkeypatch.setenv("PATH", str(project / "no-tools"))
        result = invoke("run", "--user", "1000", IMAGE_A)

        assert result.exit_code == 2
        assert "no container runtime found" in result.output
        assert "Trust enforcement passed" in result.output

    def test_configured_attestation_requirement(self, invoke, project) -> None:
        (project / "acc.yaml").write_text("project:\n  name: demo\npolicy:\n  requireAttestation: true\n")
        invoke("verify", IMAGE_A)
        result = invoke("run", IMAGE_A)

        assert result.exit_code == 1
        assert "attestation required" in result.output


class TestKeys:
    def test_generate_and_show(self, invoke) -> None:
        generated = invoke("--json", "keys", "generate")
        assert generated.exit_code == 0
        key_id = json.loads(generated.output)["keyId"]

        shown = json.loads(invoke("--json", "keys", "show").output)
        assert shown["keyId"] == key_id

        again = invoke("keys", "generate")
        assert again.exit_code == 2
        assert "already exists" in again.output

    def test_show_without_key(self, invoke, monkeypatch) -> None:
        monkeypatch.delenv("ACC_SIGNING_KEY", raising=False)
        monkeypatch.delenv("ACC_SIGNING_KEY_FILE", raising=False)
        result = invoke("keys", "show")
        assert result.exit_code == 2
        assert "no signing key found" in result.output
