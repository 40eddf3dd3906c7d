# SPDX-License-Identifier: MPL-2.0
"""
Policy evaluation inputs and outputs.

Rule evaluation is delegated to an external engine (OPA by default); this
module builds the engine's input document, turns its output into typed
violations, and applies waivers and policy profiles to the result.
"""

import json
import logging
import os
import shutil
import subprocess
import tempfile
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

import yaml
from pydantic import ConfigDict, Field, ValidationError, field_validator

from acc_trust.core.config import AccPaths
from acc_trust.core.exceptions import ConfigurationError, PolicyEvaluationError
from acc_trust.core.models import AccModel, Violation, Waiver

logger = logging.getLogger(__name__)

OPA_QUERY = "data.acc.policy.result"
OPA_TIMEOUT = 60  # seconds
PROFILE_SCHEMA_VERSION = 1

SEVERITY_CRITICAL = "critical"
RESULT_FAIL = "fail"

# Rules raised by acc itself; profiles never filter these
BUILTIN_RULES = frozenset(
    {"sbom-required", "image-inspect-failed", "opa-required", "policy-evaluation-error"}
)


def critical(rule: str, message: str) -> Violation:
    """Build a blocking violation raised by acc itself rather than by policy."""
    return Violation(rule=rule, severity=SEVERITY_CRITICAL, result=RESULT_FAIL, message=message)


class PolicyEngine(Protocol):
    """Evaluates a policy input document and returns the violations found."""

    def evaluate(self, input_document: Dict[str, Any]) -> List[Violation]:
        """Raise PolicyEvaluationError if no decision can be produced."""
        ...


def build_policy_input(
    image_config: Dict[str, Any],
    sbom_present: bool,
    attestation_present: bool,
    promotion: bool = False,
) -> Dict[str, Any]:
    """Build the input document passed to the policy engine."""
    return {
        "config": {
            "User": image_config.get("User") or "",
            "Labels": image_config.get("Labels") or {},
        },
        "sbom": {"present": sbom_present},
        "attestation": {"present": attestation_present},
        "promotion": promotion,
    }


def _violation_from_object(obj: Any) -> Optional[Violation]:
    if not isinstance(obj, dict):
        return None

    def text(key: str, default: str) -> str:
        value = obj.get(key)
        return value if isinstance(value, str) else default

    return Violation(
        rule=text("rule", "policy-violation"),
        severity=text("severity", "error"),
        result=text("result", RESULT_FAIL),
        message=text("message", "Policy deny rule triggered"),
    )


def parse_opa_output(output: str) -> List[Violation]:
    """Extract violations from ``opa eval --format json`` output.

    Both ``violations`` and the older ``deny`` set are read from the first
    expression value.
    """
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise PolicyEvaluationError(f"failed to parse OPA output: {e}") from e

    try:
        value = data["result"][0]["expressions"][0]["value"]
    except (KeyError, IndexError, TypeError):
        return []
    if not isinstance(value, dict):
        return []

    violations = []
    for key in ("violations", "deny"):
        items = value.get(key)
        if not isinstance(items, list):
            continue
        for item in items:
            violation = _violation_from_object(item)
            if violation is not None:
                violations.append(violation)
    return violations


class OpaPolicyEngine:
    """Runs ``opa eval`` against the project's Rego policy directory."""

    def __init__(self, policy_dir: Path, executable: str = "opa", timeout: float = OPA_TIMEOUT):
        self.policy_dir = Path(policy_dir)
        self.executable = executable
        self.timeout = timeout

    def has_policies(self) -> bool:
        return self.policy_dir.is_dir() and any(self.policy_dir.rglob("*.rego"))

    def evaluate(self, input_document: Dict[str, Any]) -> List[Violation]:
        if not self.has_policies():
            logger.debug("No Rego policies under %s; allowing", self.policy_dir)
            return []

        opa = shutil.which(self.executable)
        if opa is None:
            return [
                critical(
                    "opa-required",
                    "OPA not found. Policy evaluation requires OPA to be installed.\n\n"
                    "Install OPA: https://www.openpolicyagent.org/docs/latest/#running-opa",
                )
            ]

        fd, input_path = tempfile.mkstemp(prefix="acc-rego-input-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(input_document, f)

            cmd = [
                opa, "eval",
                "--data", str(self.policy_dir),
                "--input", input_path,
                "--format", "json",
                OPA_QUERY,
            ]
            try:
                result = subprocess.run(
                    cmd, capture_output=True, text=True, timeout=self.timeout, check=False
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                raise PolicyEvaluationError(f"OPA evaluation failed: {e}") from e
        finally:
            os.unlink(input_path)

        if result.returncode != 0:
            raise PolicyEvaluationError(
                f"OPA evaluation failed: {result.stderr.strip()}",
                details={"returncode": result.returncode},
            )
        return parse_opa_output(result.stdout)


# Waivers

def load_waivers(path: Path) -> List[Waiver]:
    """Load waivers from ``path``; a missing file means no waivers.

    An unreadable or malformed file is logged and treated as empty.
    """
    if not path.exists():
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to load waivers from %s: %s", path, e)
        return []

    items = data.get("waivers") if isinstance(data, dict) else None
    if not isinstance(items, list):
        return []

    waivers = []
    for item in items:
        if not isinstance(item, dict):
            continue
        # YAML parses unquoted timestamps into datetimes
        if isinstance(item.get("expiry"), date):
            item = dict(item, expiry=item["expiry"].isoformat())
        try:
            waivers.append(Waiver.model_validate(item))
        except ValidationError as e:
            logger.warning("Ignoring malformed waiver in %s: %s", path, e)
    return waivers


def apply_waivers(
    violations: List[Violation], waivers: List[Waiver], now: Optional[datetime] = None
) -> Tuple[List[Violation], List[Waiver]]:
    """Drop violations covered by an active waiver.

    Returns the remaining violations and the waivers that were applied.
    Expired waivers never suppress anything.
    """
    active = {w.rule_id: w for w in waivers if w.rule_id and not w.is_expired(now)}
    remaining = []
    applied: Dict[str, Waiver] = {}
    for violation in violations:
        waiver = active.get(violation.rule)
        if waiver is None:
            remaining.append(violation)
        else:
            applied[waiver.rule_id] = waiver
    return remaining, list(applied.values())


def expired_waiver_violations(waivers: List[Waiver], now: Optional[datetime] = None) -> List[Violation]:
    return [
        critical(w.rule_id, f"Waiver for rule '{w.rule_id}' expired on {w.expiry}")
        for w in waivers
        if w.is_expired(now)
    ]


# Profiles

class ProfilePolicies(AccModel):
    model_config = ConfigDict(extra="forbid")

    allow: List[str] = Field(default_factory=list)


class ProfileViolations(AccModel):
    model_config = ConfigDict(extra="forbid")

    ignore: List[str] = Field(default_factory=list)


class ProfileWarnings(AccModel):
    model_config = ConfigDict(extra="forbid")

    show: bool = False


class Profile(AccModel):
    """A policy profile: post-evaluation filtering of violations."""

    model_config = ConfigDict(extra="forbid")

    schema_version: int
    name: str
    description: str
    policies: ProfilePolicies = Field(default_factory=ProfilePolicies)
    violations: ProfileViolations = Field(default_factory=ProfileViolations)
    warnings: ProfileWarnings = Field(default_factory=ProfileWarnings)

    @field_validator("schema_version")
    @classmethod
    def _supported_version(cls, value: int) -> int:
        if value != PROFILE_SCHEMA_VERSION:
            raise ValueError(f"unsupported schemaVersion: {value} (expected {PROFILE_SCHEMA_VERSION})")
        return value

    @field_validator("name", "description")
    @classmethod
    def _required(cls, value: str) -> str:
        if not value:
            raise ValueError("is required")
        return value

    def resolve(self, violations: List[Violation]) -> Tuple[List[Violation], List[Violation]]:
        """Split ``violations`` into ``(blocking, warnings)``.

        With a non-empty allow list, violations of other rules are dropped.
        Violations whose rule or severity is ignored become warnings when
        ``warnings.show`` is set and are dropped otherwise.
        """
        allow = set(self.policies.allow)
        ignore = {item.lower() for item in self.violations.ignore}

        blocking: List[Violation] = []
        warnings: List[Violation] = []
        for violation in violations:
            if allow and violation.rule not in allow:
                continue
            if violation.rule.lower() in ignore or violation.severity.lower() in ignore:
                if self.warnings.show:
                    warnings.append(violation)
                continue
            blocking.append(violation)
        return blocking, warnings


def profile_path(name_or_path: str, paths: AccPaths) -> Path:
    """Treat anything that looks like a path as one, otherwise look in ``.acc/profiles``."""
    if "/" in name_or_path or name_or_path.endswith((".yaml", ".yml")):
        return Path(name_or_path)
    return paths.profiles_dir / f"{name_or_path}.yaml"


def load_profile(name_or_path: str, paths: AccPaths) -> Profile:
    """Load and validate a profile.

    Raises:
        ConfigurationError: If the profile is missing, unparseable or invalid.
    """
    path = profile_path(name_or_path, paths)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"profile not found: {path}") from e
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"failed to parse profile {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"profile {path} must be a mapping")
    for section, key in (("policies", "allow"), ("violations", "ignore")):
        entries = data.get(section)
        entries = entries.get(key) if isinstance(entries, dict) else None
        for i, item in enumerate(entries if isinstance(entries, list) else []):
            if not isinstance(item, str) or not item.strip():
                raise ConfigurationError(f"profile {path} validation failed: {section}.{key}[{i}]: empty value not allowed")

    try:
        return Profile.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"profile {path} validation failed: {e}") from e
