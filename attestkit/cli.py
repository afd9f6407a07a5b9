"""Command-line interface for signing and verification."""

import json
import sys
from pathlib import Path

import click

from . import __version__
from .config import ConfigError, SigningConfig, load_config, load_default_config
from .cosign import Cosign
from .imagetools import ImageTools
from .logging import configure_logging
from .models import AttestationSignResult, ProvenanceSignResult
from .orchestrator import Sigstore


def _load_config(config):
    if config:
        try:
            signing_config = load_config(config)
        except (FileNotFoundError, ConfigError) as e:
            click.echo(f"❌ Config error: {e}", err=True)
            sys.exit(1)
    else:
        signing_config = load_default_config() or SigningConfig({})
    return signing_config.apply_environment_overrides()


def _sigstore(signing_config: SigningConfig) -> Sigstore:
    return Sigstore(
        cosign=Cosign(signing_config.cosign_path),
        imagetools=ImageTools(signing_config.imagetools_command),
        endpoints=signing_config.endpoints(),
    )


def _emit(results, output):
    text = json.dumps({k: v.to_dict() for k, v in results.items()}, indent=2)
    if output:
        Path(output).write_text(text, encoding="utf-8")
    click.echo(text)


def _read_signed(path, loader):
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return {k: loader(v) for k, v in data.items()}


def _identity_regexp(signing_config, value):
    regexp = value or signing_config.get_verify_config().get("certificate_identity_regexp")
    if not regexp:
        click.echo("❌ --certificate-identity-regexp is required", err=True)
        sys.exit(1)
    return regexp


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    type=click.Path(exists=True),
    help="Configuration file (YAML). Defaults to .attestkit/config.yaml if present.",
)
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON")
@click.pass_context
def main(ctx, config, verbose, json_logs):
    """Keyless signing and verification of BuildKit attestations."""
    configure_logging("DEBUG" if verbose else "INFO", json_output=json_logs)
    ctx.obj = _load_config(config)


@main.command()
@click.argument("image_ref")
@click.option("--platform", help="Only attestations of this platform (os/arch[/variant])")
@click.pass_obj
def attestations(signing_config, image_ref, platform):
    """List attestation manifest digests of an image index."""
    try:
        imagetools = ImageTools(signing_config.imagetools_command)
        for digest in imagetools.attestation_digests(image_ref, platform):
            click.echo(digest)
    except Exception as e:
        click.echo(f"❌ Attestation discovery failed: {e}", err=True)
        sys.exit(1)


@main.command("sign-manifests")
@click.option("--image", "images", multiple=True, required=True, help="Image name")
@click.option("--digest", required=True, help="Image index digest")
@click.option(
    "--no-transparency-log/--transparency-log",
    default=None,
    help="Skip Rekor upload (defaults to the repository visibility)",
)
@click.option("--output", type=click.Path(), help="Write results to this file")
@click.pass_obj
def sign_manifests(signing_config, images, digest, no_transparency_log, output):
    """Sign attestation manifests of an image."""
    if no_transparency_log is None:
        no_transparency_log = signing_config.no_transparency_log
    try:
        results = _sigstore(signing_config).sign_attestation_manifests(
            list(images), digest, no_transparency_log=no_transparency_log
        )
    except Exception as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)
    _emit(results, output)


@main.command("verify-manifests")
@click.option("--signed", "signed_path", type=click.Path(exists=True), required=True,
              help="Results file written by sign-manifests")
@click.option("--certificate-identity-regexp", help="Regex the certificate SAN must match")
@click.option("--retries", type=int, help="Maximum attempts per manifest")
@click.option("--no-retry", is_flag=True, help="Do not retry MANIFEST_UNKNOWN failures")
@click.option("--output", type=click.Path(), help="Write results to this file")
@click.pass_obj
def verify_manifests(signing_config, signed_path, certificate_identity_regexp, retries,
                     no_retry, output):
    """Verify signed attestation manifests in the registry."""
    verify_config = signing_config.get_verify_config()
    regexp = _identity_regexp(signing_config, certificate_identity_regexp)
    retry = not no_retry and verify_config.get("retry_on_manifest_unknown", True)
    try:
        signed = _read_signed(signed_path, AttestationSignResult.from_dict)
        results = _sigstore(signing_config).verify_signed_manifests(
            signed,
            regexp,
            retry_on_manifest_unknown=retry,
            retries=retries or verify_config.get("retries", 15),
        )
    except Exception as e:
        click.echo(f"❌ Verification failed: {e}", err=True)
        sys.exit(1)
    _emit(results, output)


@main.command("sign-provenance")
@click.argument("local_export_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--name", default="provenance", help="Bundle file name stem")
@click.option(
    "--no-transparency-log/--transparency-log",
    default=None,
    help="Skip Rekor upload (defaults to the repository visibility)",
)
@click.option("--output", type=click.Path(), help="Write results to this file")
@click.pass_obj
def sign_provenance(signing_config, local_export_dir, name, no_transparency_log, output):
    """Sign provenance blobs of a local export."""
    if no_transparency_log is None:
        no_transparency_log = signing_config.no_transparency_log
    try:
        results = _sigstore(signing_config).sign_provenance_blobs(
            local_export_dir, name=name, no_transparency_log=no_transparency_log
        )
    except Exception as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)
    _emit(results, output)


@main.command("verify-provenance")
@click.option("--signed", "signed_path", type=click.Path(exists=True), required=True,
              help="Results file written by sign-provenance")
@click.option("--certificate-identity-regexp", help="Regex the certificate SAN must match")
@click.option("--output", type=click.Path(), help="Write results to this file")
@click.pass_obj
def verify_provenance(signing_config, signed_path, certificate_identity_regexp, output):
    """Verify provenance subjects against their bundles with cosign."""
    regexp = _identity_regexp(signing_config, certificate_identity_regexp)
    try:
        signed = _read_signed(signed_path, ProvenanceSignResult.from_dict)
        results = _sigstore(signing_config).verify_signed_artifacts(signed, regexp)
    except Exception as e:
        click.echo(f"❌ Verification failed: {e}", err=True)
        sys.exit(1)
    _emit(results, output)


@main.command("verify-bundle")
@click.argument("artifact", type=click.Path(exists=True, dir_okay=False))
@click.option("--bundle", "bundle_path", type=click.Path(exists=True), help="Sigstore bundle")
@click.option("--certificate-identity", help="Exact certificate SAN")
@click.option("--certificate-identity-regexp", help="Regex the certificate SAN must match")
@click.option("--certificate-oidc-issuer", help="Expected OIDC issuer")
@click.option("--offline", is_flag=True, help="Do not contact the transparency log")
def verify_bundle(artifact, bundle_path, certificate_identity, certificate_identity_regexp,
                  certificate_oidc_issuer, offline):
    """Verify a bundle against an artifact without cosign."""
    from .verify import verify_artifact

    if bundle_path is None:
        bundle_path = f"{artifact}.sigstore.json"

    try:
        verified = verify_artifact(
            artifact,
            bundle_path,
            certificate_identity=certificate_identity,
            certificate_identity_regexp=certificate_identity_regexp,
            certificate_issuer=certificate_oidc_issuer,
            offline=offline,
        )
    except Exception as e:
        click.echo(f"❌ Verification failed: {e}", err=True)
        sys.exit(1)

    click.echo("✅ Bundle verified")
    if verified.tlog_id:
        click.echo(f"Rekor log index: {verified.tlog_id}")


@main.command("cosign-version")
@click.pass_obj
def cosign_version(signing_config):
    """Print the cosign version."""
    Cosign(signing_config.cosign_path).print_version()


if __name__ == "__main__":
    main()
