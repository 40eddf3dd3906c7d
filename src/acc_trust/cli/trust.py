# SPDX-License-Identifier: MPL-2.0
"""
CLI Commands for Inspecting Trust

``acc trust status`` summarises the verification record and attestations of
an image; ``acc trust verify`` checks every attestation stored for it.  Both
are read-only apart from caching remotely fetched attestations.
"""

import sys

import click

from acc_trust.cli.commands import AppContext, emit_json, handle_errors, pass_app
from acc_trust.core.status import TrustStatusAggregator
from acc_trust.core.verification import AttestationVerifier


# Click command group
@click.group()
def trust():
    """Inspect verification state and attestations."""
    pass


@trust.command()
@click.argument("image_ref")
@click.option("--remote", is_flag=True, help="Fetch attestations from the image's registry first.")
@pass_app
@handle_errors
def status(app: AppContext, image_ref: str, remote: bool):
    """Show the trust status of IMAGE_REF."""
    aggregator = TrustStatusAggregator(
        app.paths, app.get_resolver(), registry=app.get_registry() if remote else None
    )
    report = aggregator.status(image_ref, remote=remote)

    if app.json_output:
        emit_json(report.to_dict())
    else:
        click.echo(f"Image:  {report.image_ref}")
        click.echo(f"Status: {report.status.upper()}")
        if report.profile_used:
            click.echo(f"Profile: {report.profile_used}")
        if report.timestamp:
            click.echo(f"Verified at: {report.timestamp}")
        click.echo(f"SBOM:   {'present' if report.sbom_present else 'missing'}")

        if report.violations:
            click.echo("\nViolations:")
            for v in report.violations:
                click.echo(f"  ✗ [{v.severity}] {v.rule}: {v.message}")
        if report.warnings:
            click.echo("\nWarnings:")
            for w in report.warnings:
                click.echo(f"  ⚠ [{w.severity}] {w.rule}: {w.message}")

        click.echo(f"\nAttestations: {len(report.attestations)}")
        for path in report.attestations:
            click.echo(f"  {path}")

        if report.status == "unknown":
            click.echo(f"\nNo verification state found. Run 'acc verify {image_ref}' first.", err=True)

    sys.exit(int(report.exit_code))


@trust.command("verify")
@click.argument("image_ref")
@click.option("--remote", is_flag=True, help="Fetch attestations from the image's registry first.")
@pass_app
@handle_errors
def verify_attestations(app: AppContext, image_ref: str, remote: bool):
    """Verify the attestations stored for IMAGE_REF."""
    verifier = AttestationVerifier(
        app.paths, app.get_resolver(), registry=app.get_registry() if remote else None
    )
    report = verifier.verify(image_ref, remote=remote)

    if app.json_output:
        emit_json(report.to_dict())
    else:
        click.echo(f"Image:  {report.image_ref}")
        if report.image_digest:
            click.echo(f"Digest: sha256:{report.image_digest[:12]}")
        click.echo(f"Status: {report.verification_status.upper()}")
        click.echo(f"Attestations: {report.attestation_count}")
        for detail in report.attestations:
            mark = "✓" if not detail.invalid_reason else "✗"
            signed = f" signed by {detail.key_id}" if detail.signed else ""
            reason = f" ({detail.invalid_reason})" if detail.invalid_reason else ""
            click.echo(f"  {mark} {detail.path}{signed}{reason}")

        if report.errors:
            click.echo("\nErrors:", err=True)
            for error in report.errors:
                click.echo(f"  ✗ {error}", err=True)
        if report.verification_status == "unverified" and not report.attestations:
            click.echo(f"\nRemediation: Run 'acc verify {image_ref} && acc attest {image_ref}'", err=True)

    sys.exit(int(report.exit_code))
