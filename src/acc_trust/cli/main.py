# SPDX-License-Identifier: MPL-2.0
"""Main CLI entry point."""
import base64
import functools
import sys
from typing import Optional, Tuple

import click

from acc_trust.cli.commands import (
    AppContext,
    configure_logging,
    emit_json,
    handle_errors,
    info,
    pass_app,
    project_paths,
)
from acc_trust.cli.trust import trust
from acc_trust.core.attestation import AttestationForge
from acc_trust.core.crypto import KeyPair, ensure_signing_key, resolve_signing_key, write_key_file
from acc_trust.core.enforcement import EnforcementGate
from acc_trust.core.exceptions import InvalidKeyError
from acc_trust.core.models import ExitCode
from acc_trust.core.policy import load_profile
from acc_trust.core.runtime import ImagePusher, RunOptions, WorkloadRunner
from acc_trust.core.state import VerificationStateStore
from acc_trust.core.verification import Verifier


@click.group()  # type: ignore[misc]
@click.option("--json", "json_output", is_flag=True, help="Emit machine-readable JSON on stdout.")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Path to acc.yaml.")
@click.option("-C", "--project-dir", type=click.Path(file_okay=False), help="Project root (default: current directory).")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging on stderr.")
@click.pass_context
def cli(ctx: click.Context, json_output: bool, config_path: Optional[str], project_dir: Optional[str], verbose: bool) -> None:
    """acc - verifiable trust gates for container workloads."""
    configure_logging(verbose)
    app = ctx.ensure_object(AppContext)
    app.json_output = json_output
    app.config_path = config_path
    if project_dir:
        app.paths = project_paths(project_dir)


@cli.command()  # type: ignore[misc]
def version() -> None:
    """Show version information."""
    from acc_trust import __version__

    click.echo(f"acc v{__version__}")


@cli.command()  # type: ignore[misc]
@click.argument("image_ref")
@click.option("--profile", "profile_name", help="Policy profile name or path.")
@pass_app
@handle_errors
def verify(app: AppContext, image_ref: str, profile_name: Optional[str]) -> None:
    """Verify IMAGE_REF against policy and record the result."""
    config = app.config()
    profile = load_profile(profile_name, app.paths) if profile_name else None

    verifier = Verifier(app.paths, config, app.get_resolver(), app.get_inspector(), engine=app.engine)

    info(app, f"Verifying {image_ref}")
    record = verifier.verify(image_ref, profile=profile)

    if app.json_output:
        emit_json(record.to_dict())
    else:
        for violation in record.policy_decision.violations:
            click.echo(f"  [{violation.severity}] {violation.rule}: {violation.message}", err=True)
        for warning in record.policy_decision.warnings:
            click.echo(f"  warning [{warning.severity}] {warning.rule}: {warning.message}", err=True)
        click.echo(f"Verification {'passed' if record.passed else 'failed'}: {image_ref}")

    sys.exit(int(ExitCode.PASS if record.passed else ExitCode.FAIL))


@cli.command()  # type: ignore[misc]
@click.argument("image_ref")
@click.option("--remote", is_flag=True, help="Also publish the attestation to the image's registry.")
@pass_app
@handle_errors
def attest(app: AppContext, image_ref: str, remote: bool) -> None:
    """Create an attestation for the last verified image."""
    from acc_trust import __version__

    config = app.config()
    signing_key = functools.partial(ensure_signing_key, app.paths.signing_key) if config.signing_enabled else None

    forge = AttestationForge(
        app.paths,
        app.get_resolver(),
        registry=app.get_registry() if remote else None,
        notify=lambda message: info(app, message),
    )
    result = forge.create(image_ref, config, tool_version=__version__, signing_key=signing_key, remote=remote)

    if app.json_output:
        emit_json(result.to_dict(app.paths))
        return

    click.echo("Attestation created")
    click.echo(f"  Path:    {app.paths.relative(result.path)}")
    click.echo(f"  Subject: {image_ref}")
    if result.digest:
        click.echo(f"  Digest:  sha256:{result.digest[:12]}")
    click.echo(f"  Hash:    {result.results_hash[:16]}")
    if result.envelope is not None:
        click.echo(f"  Signed:  {result.envelope.key_id}")
    if result.remote_ref:
        click.echo(f"  Remote:  {result.remote_ref}")
    elif result.remote_error:
        click.echo(f"Warning: remote publish failed: {result.remote_error}", err=True)


@cli.command(context_settings={"ignore_unknown_options": True})  # type: ignore[misc]
@click.argument("image_ref")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option("--network", default="none", show_default=True, help="Container network mode.")
@click.option("--read-only", is_flag=True, help="Mount the container filesystem read-only.")
@click.option("--user", default="", help="User to run as inside the container.")
@click.option("--cap-add", multiple=True, help="Capability to add back after dropping all.")
@click.option("--require-attestation", is_flag=True, help="Require a valid attestation even if not configured.")
@pass_app
@handle_errors
def run(
    app: AppContext,
    image_ref: str,
    args: Tuple[str, ...],
    network: str,
    read_only: bool,
    user: str,
    cap_add: Tuple[str, ...],
    require_attestation: bool,
) -> None:
    """Run IMAGE_REF locally if it passed verification."""
    config = app.config()
    gate = EnforcementGate(app.paths, app.get_resolver())
    runner = WorkloadRunner(gate)

    options = RunOptions(
        image_ref=image_ref,
        args=list(args),
        network=network,
        read_only=read_only,
        user=user,
        cap_add=list(cap_add),
    )
    info(app, f"Checking trust for {image_ref}")
    cmd = runner.run(options, require_attestation or config.policy.require_attestation)
    if app.json_output:
        emit_json({"command": "run", "imageRef": image_ref, "executed": cmd})


@cli.command()  # type: ignore[misc]
@click.argument("image_ref")
@click.option("--require-attestation", is_flag=True, help="Require a valid attestation even if not configured.")
@pass_app
@handle_errors
def push(app: AppContext, image_ref: str, require_attestation: bool) -> None:
    """Push IMAGE_REF to its registry if it passed verification."""
    config = app.config()
    resolver = app.get_resolver()
    state = VerificationStateStore(app.paths, resolver)
    pusher = ImagePusher(EnforcementGate(app.paths, resolver, state=state), resolver, state)

    result = pusher.push(
        image_ref,
        require_attestation or config.policy.require_attestation,
        quiet=app.json_output,
    )
    if app.json_output:
        emit_json(result.to_dict())
    else:
        click.echo(f"Pushed {image_ref}")
        if result.attestation_ref:
            click.echo(f"  Attestation: {result.attestation_ref}")


@cli.group()  # type: ignore[misc]
def keys() -> None:
    """Manage the attestation signing key."""


@keys.command("generate")  # type: ignore[misc]
@click.option("--force", is_flag=True, help="Overwrite an existing key.")
@pass_app
@handle_errors
def keys_generate(app: AppContext, force: bool) -> None:
    """Generate an Ed25519 signing key in .acc/keys."""
    path = app.paths.signing_key
    if path.exists() and not force:
        raise InvalidKeyError(f"signing key already exists at {app.paths.relative(path)} (use --force to replace it)")

    key_pair = KeyPair.generate()
    write_key_file(path, key_pair)
    _show_key(app, key_pair)


@keys.command("show")  # type: ignore[misc]
@pass_app
@handle_errors
def keys_show(app: AppContext) -> None:
    """Show the key id and public key of the signing key."""
    _show_key(app, resolve_signing_key(app.paths.signing_key))


def _show_key(app: AppContext, key_pair: KeyPair) -> None:
    public_key = base64.b64encode(key_pair.public_bytes()).decode("ascii")
    if app.json_output:
        emit_json({
            "keyId": key_pair.key_id,
            "publicKey": public_key,
            "path": app.paths.relative(app.paths.signing_key),
        })
    else:
        click.echo(f"Key ID:     {key_pair.key_id}")
        click.echo(f"Public Key: {public_key}")


cli.add_command(trust)


if __name__ == "__main__":
    cli()
