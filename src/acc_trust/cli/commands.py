# SPDX-License-Identifier: MPL-2.0
"""
Shared plumbing for acc CLI commands.

Commands receive an :class:`AppContext` through click's context object.  It
carries the output mode and the collaborators (digest resolver, registry
client, policy engine) so that tests can swap them out.
"""

import functools
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import click

from acc_trust.core.config import AccConfig, AccPaths, load_config
from acc_trust.core.digest import ContainerToolResolver, DigestResolver
from acc_trust.core.exceptions import (
    AccError,
    RuntimeUnavailableError,
    TrustGateError,
    WorkloadExecutionError,
)
from acc_trust.core.models import ExitCode
from acc_trust.core.policy import PolicyEngine
from acc_trust.core.registry import OrasRegistryClient, RegistryClient
from acc_trust.core.verification import ImageInspector

logger = logging.getLogger(__name__)

# Raised only after the trust gate has allowed the workload
OPERATIONAL_ERRORS = (RuntimeUnavailableError, WorkloadExecutionError)


@dataclass
class AppContext:
    """State shared by every command of one invocation."""

    json_output: bool = False
    config_path: Optional[str] = None
    paths: AccPaths = field(default_factory=AccPaths)
    resolver: Optional[DigestResolver] = None
    registry: Optional[RegistryClient] = None
    inspector: Optional[ImageInspector] = None
    engine: Optional[PolicyEngine] = None
    _config: Optional[AccConfig] = field(default=None, repr=False)
    _container_tools: Optional[ContainerToolResolver] = field(default=None, repr=False)

    def _tools(self) -> ContainerToolResolver:
        if self._container_tools is None:
            self._container_tools = ContainerToolResolver()
        return self._container_tools

    def get_resolver(self) -> DigestResolver:
        if self.resolver is None:
            self.resolver = self._tools()
        return self.resolver

    def get_inspector(self) -> ImageInspector:
        if self.inspector is None:
            self.inspector = self._tools()
        return self.inspector

    def get_registry(self) -> RegistryClient:
        if self.registry is None:
            self.registry = OrasRegistryClient()
        return self.registry

    def config(self) -> AccConfig:
        if self._config is None:
            self._config = load_config(self.config_path, root=self.paths.root)
        return self._config


pass_app = click.make_pass_decorator(AppContext, ensure=True)


def configure_logging(verbose: bool) -> None:
    """Send log records to stderr so that JSON on stdout stays parseable."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def emit_json(data: Dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=2))


def info(app: AppContext, message: str) -> None:
    """Print a progress message unless JSON output was requested."""
    if not app.json_output:
        click.echo(message)


def exit_code_for(error: AccError) -> ExitCode:
    """Trust decisions exit 1; everything that prevented a decision exits 2."""
    if isinstance(error, TrustGateError):
        return ExitCode.FAIL
    return ExitCode.UNKNOWN


def report_error(app: AppContext, error: AccError) -> None:
    operational = isinstance(error, OPERATIONAL_ERRORS)
    if app.json_output:
        data: Dict[str, Any] = {"error": error.message}
        remediation = getattr(error, "remediation", "")
        if remediation:
            data["remediation"] = remediation
        if operational:
            data["trustEnforcement"] = "passed"
        emit_json(data)
    else:
        click.echo(f"Error: {error}", err=True)
        if operational:
            click.echo("Trust enforcement passed; the failure happened afterwards.", err=True)


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Map acc errors and I/O failures raised by a command to the exit-code contract."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        app = click.get_current_context().find_object(AppContext) or AppContext()
        try:
            return func(*args, **kwargs)
        except AccError as e:
            logger.debug("Command failed", exc_info=True)
            report_error(app, e)
            sys.exit(int(exit_code_for(e)))
        except OSError as e:
            logger.debug("Command failed", exc_info=True)
            report_error(app, AccError(f"I/O error: {e}", details={"errno": e.errno}))
            sys.exit(int(ExitCode.UNKNOWN))

    return wrapper


def project_paths(project_dir: Optional[str]) -> AccPaths:
    return AccPaths(Path(project_dir).resolve()) if project_dir else AccPaths(Path.cwd())
