# SPDX-License-Identifier: MPL-2.0
"""Project configuration and on-disk layout.

Configuration is read from YAML and validated with pydantic.  Every file the
trust core reads or writes is located through :class:`AccPaths`, which is
rooted at the project directory so that tests can point it at a temporary
directory.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional, Union

import yaml
from pydantic import Field, ValidationError

from acc_trust.core.exceptions import ConfigurationError
from acc_trust.core.models import AccModel

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ("acc.yaml", os.path.join(".acc", "acc.yaml"))
HOME_CONFIG = os.path.join(".acc", "config.yaml")


@dataclass(frozen=True)
class AccPaths:
    """Locations of persisted trust state under a project root.

    Layout::

        .acc/state/last_verify.json
        .acc/state/verify/<digest>.json
        .acc/state/last_attestation.json
        .acc/attestations/<digest-prefix-12>/{local,remote/<registry>/<repo>}/...
    """

    root: Path = field(default_factory=Path.cwd)

    @property
    def acc_dir(self) -> Path:
        return self.root / ".acc"

    @property
    def state_dir(self) -> Path:
        return self.acc_dir / "state"

    @property
    def last_verify(self) -> Path:
        return self.state_dir / "last_verify.json"

    @property
    def verify_dir(self) -> Path:
        return self.state_dir / "verify"

    @property
    def last_attestation(self) -> Path:
        return self.state_dir / "last_attestation.json"

    @property
    def attestations_dir(self) -> Path:
        return self.acc_dir / "attestations"

    @property
    def policy_dir(self) -> Path:
        return self.acc_dir / "policy"

    @property
    def sbom_dir(self) -> Path:
        return self.acc_dir / "sbom"

    @property
    def waivers_file(self) -> Path:
        return self.acc_dir / "waivers.yaml"

    @property
    def profiles_dir(self) -> Path:
        return self.acc_dir / "profiles"

    @property
    def signing_key(self) -> Path:
        return self.acc_dir / "keys" / "ed25519.key"

    def relative(self, path: Path) -> str:
        """Render ``path`` relative to the project root when possible."""
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return str(path)


class ProjectConfig(AccModel):
    name: str


class BuildConfig(AccModel):
    context: str = "."
    default_tag: str = "latest"


class RegistryConfig(AccModel):
    default: str = "localhost:5000"


class PolicyConfig(AccModel):
    mode: Literal["enforce", "warn"] = "enforce"
    require_attestation: bool = False


class SigningConfig(AccModel):
    mode: Literal["keyless", "key"] = "keyless"


class SBOMConfig(AccModel):
    format: Literal["spdx", "cyclonedx"] = "spdx"


class AccConfig(AccModel):
    """Validated contents of ``acc.yaml``."""

    project: ProjectConfig
    build: BuildConfig = Field(default_factory=BuildConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    signing: SigningConfig = Field(default_factory=SigningConfig)
    sbom: SBOMConfig = Field(default_factory=SBOMConfig)

    @property
    def signing_enabled(self) -> bool:
        return self.signing.mode == "key"

    def sbom_path(self, paths: AccPaths) -> Path:
        """Expected SBOM location: ``.acc/sbom/<project>.<format>.json``."""
        return paths.sbom_dir / f"{self.project.name}.{self.sbom.format}.json"


def discover_config(root: Path, home: Optional[Path] = None) -> Optional[Path]:
    """Find the config file using the standard discovery order."""

    for name in CONFIG_FILENAMES:
        candidate = root / name
        if candidate.is_file():
            return candidate

    home_dir = home if home is not None else Path.home()
    candidate = home_dir / HOME_CONFIG
    if candidate.is_file():
        return candidate
    return None


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    root: Optional[Path] = None,
    home: Optional[Path] = None,
) -> AccConfig:
    """Load configuration from ``config_path`` or by discovery.

    Raises:
        ConfigurationError: If no file is found or it does not validate.
    """

    if config_path:
        path: Optional[Path] = Path(config_path)
    else:
        path = discover_config(root or Path.cwd(), home)

    if path is None:
        raise ConfigurationError(
            "no configuration file found (checked ./acc.yaml, ./.acc/acc.yaml, ~/.acc/config.yaml)"
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"failed to read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"failed to parse config {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"config {path} must be a mapping")

    try:
        config = AccConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid config {path}: {e}", details={"errors": e.errors()}) from e

    logger.debug("Loaded configuration from %s", path)
    return config
