"""Tests for configuration loading and project layout."""

import pytest

from acc_trust.core.config import AccPaths, discover_config, load_config
from acc_trust.core.exceptions import ConfigurationError


def write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def test_paths_layout(tmp_path) -> None:
    paths = AccPaths(tmp_path)
    assert paths.last_verify == tmp_path / ".acc" / "state" / "last_verify.json"
    assert paths.verify_dir == tmp_path / ".acc" / "state" / "verify"
    assert paths.last_attestation == tmp_path / ".acc" / "state" / "last_attestation.json"
    assert paths.attestations_dir == tmp_path / ".acc" / "attestations"
    assert paths.signing_key == tmp_path / ".acc" / "keys" / "ed25519.key"
    assert paths.relative(tmp_path / "a" / "b.json") == "a/b.json"
    assert paths.relative(tmp_path.parent / "elsewhere") == str(tmp_path.parent / "elsewhere")


def test_discovery_order(tmp_path) -> None:
    home = tmp_path / "home"
    root = tmp_path / "project"
    root.mkdir()
    assert discover_config(root, home) is None

    home_cfg = write(home / ".acc" / "config.yaml", "project: {name: home}\n")
    assert discover_config(root, home) == home_cfg

    nested = write(root / ".acc" / "acc.yaml", "project: {name: nested}\n")
    assert discover_config(root, home) == nested

    top = write(root / "acc.yaml", "project: {name: top}\n")
    assert discover_config(root, home) == top


def test_load_config_defaults(tmp_path) -> None:
    write(tmp_path / "acc.yaml", "project:\n  name: demo\n")
    config = load_config(root=tmp_path, home=tmp_path)

    assert config.project.name == "demo"
    assert config.policy.mode == "enforce"
    assert config.signing.mode == "keyless"
    assert not config.signing_enabled
    assert config.sbom_path(AccPaths(tmp_path)) == tmp_path / ".acc" / "sbom" / "demo.spdx.json"


def test_load_config_full(tmp_path) -> None:
    path = write(
        tmp_path / "custom.yaml",
        "project:\n  name: svc\n"
        "policy:\n  mode: warn\n  requireAttestation: true\n"
        "signing:\n  mode: key\n"
        "sbom:\n  format: cyclonedx\n",
    )
    config = load_config(path)

    assert config.policy.mode == "warn"
    assert config.policy.require_attestation
    assert config.signing_enabled
    assert config.sbom_path(AccPaths(tmp_path)).name == "svc.cyclonedx.json"


@pytest.mark.parametrize(
    "text",
    [
        "project: [",
        "- just\n- a list\n",
        "build: {}\n",
        "project: {name: x}\npolicy: {mode: sometimes}\n",
    ],
)
def test_invalid_config(tmp_path, text) -> None:
    path = write(tmp_path / "acc.yaml", text)
    with pytest.raises(ConfigurationError):
        load_config(path)


def test_missing_config(tmp_path) -> None:
    with pytest.raises(ConfigurationError, match="no configuration file found"):
        load_config(root=tmp_path, home=tmp_path / "home")
