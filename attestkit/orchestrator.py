"""Signing and verification of BuildKit attestations with Sigstore."""

import json
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from .backends.sigstore import KeylessSigner
from .bundle import to_signed_bundle, write_bundle
from .cosign import (
    SIGNING_CONFIG_VERSION_RANGE,
    Cosign,
    build_signing_config,
    last_output_line,
    parse_command_output,
    scan_command_output,
)
from .errors import (
    AttestkitError,
    CosignCommandFailed,
    OutputFormatError,
    PreconditionError,
    SigningError,
)
from .identity import (
    MISSING_ID_TOKEN_PERMISSION,
    GitHubContext,
    OIDCIdentity,
    has_id_token_permission,
)
from .imagetools import ImageTools
from .logging import get_logger
from .models import (
    FULCIO_URL,
    GITHUB_OIDC_ISSUER,
    INTOTO_PAYLOAD_TYPE,
    REKOR_URL,
    SEARCH_URL,
    TSASERVER_URL,
    AttestationSignResult,
    Endpoints,
    ProvenanceSignResult,
    VerifyArtifactResult,
    VerifyManifestResult,
)
from .provenance import discover_provenance_blobs, provenance_subjects
from .retry import DEFAULT_ATTEMPTS, retry_call

logger = get_logger(__name__)

COSIGN_ENV = {"COSIGN_EXPERIMENTAL": "1"}


class Sigstore:
    """Coordinates cosign, buildx imagetools and keyless signing."""

    def __init__(
        self,
        cosign: Optional[Cosign] = None,
        imagetools: Optional[ImageTools] = None,
        endpoints: Optional[Endpoints] = None,
        github_context: Optional[GitHubContext] = None,
        signer_factory: Callable[[Endpoints], KeylessSigner] = KeylessSigner,
    ):
        """
        Initialize with collaborators.

        Args:
            cosign: Cosign adapter (default: ``cosign`` on PATH)
            imagetools: buildx imagetools adapter
            endpoints: Base Sigstore endpoints (default: public good instance)
            github_context: Run context used for repository visibility
            signer_factory: Builds the keyless signer for provenance blobs
        """
        self.cosign = cosign or Cosign()
        self.imagetools = imagetools or ImageTools()
        self.endpoints = endpoints or Endpoints(FULCIO_URL, REKOR_URL, TSASERVER_URL)
        self._github_context = github_context
        self.signer_factory = signer_factory

    @property
    def github_context(self) -> GitHubContext:
        if self._github_context is None:
            self._github_context = GitHubContext.from_env()
        return self._github_context

    def no_transparency_log(self, no_transparency_log: Optional[bool] = None) -> bool:
        """Resolve the flag, defaulting to the repository visibility."""
        if no_transparency_log is not None:
            return no_transparency_log
        return bool(self.github_context.repository_private)

    def signing_endpoints(self, no_transparency_log: Optional[bool] = None) -> Endpoints:
        """
        Endpoints to sign with.

        Private repositories never upload to the public transparency log
        unless ``no_transparency_log`` is explicitly False.
        """
        disabled = self.no_transparency_log(no_transparency_log)
        logger.info(
            "transparency_log",
            upload="disabled" if disabled else "enabled",
        )
        return Endpoints(
            fulcio_url=self.endpoints.fulcio_url,
            rekor_url=None if disabled else self.endpoints.rekor_url,
            tsa_server_url=self.endpoints.tsa_server_url,
        )

    def _require_cosign(self, action: str) -> None:
        if not self.cosign.is_available():
            raise PreconditionError(f"Cosign is required to {action}")

    @staticmethod
    def _require_id_token() -> None:
        if not has_id_token_permission():
            raise PreconditionError(MISSING_ID_TOKEN_PERMISSION)

    @staticmethod
    def _legacy_signing_args(endpoints: Endpoints) -> List[str]:
        args = [f"--fulcio-url={endpoints.fulcio_url}"]
        if endpoints.rekor_url:
            args.append(f"--rekor-url={endpoints.rekor_url}")
        else:
            args.append("--tlog-upload=false")
        if endpoints.tsa_timestamp_url:
            args.append(f"--timestamp-server-url={endpoints.tsa_timestamp_url}")
        return args

    def _command_failure(
        self, command: str, output: str, exit_code: int
    ) -> CosignCommandFailed:
        result = scan_command_output(output)
        if result.errors:
            return CosignCommandFailed.from_errors(command, result.errors, exit_code)
        detail = last_output_line(output) or f"exit code {exit_code}"
        return CosignCommandFailed(
            f"Cosign {command} command failed: {detail}", exit_code=exit_code
        )

    def _sign_manifest(
        self, ref: str, image_name: str, cosign_args: List[str]
    ) -> AttestationSignResult:
        args = [
            "--verbose",
            "sign",
            "--yes",
            "--oidc-provider", "github-actions",
            "--registry-referrers-mode", "oci-1-1",
            "--new-bundle-format",
            *cosign_args,
            ref,
        ]
        logger.info("cosign_sign", command=["cosign", *args])
        proc = self.cosign.run(args, env=COSIGN_ENV)
        if proc.returncode != 0:
            raise self._command_failure("sign", proc.stdout or "", proc.returncode)

        parsed = parse_command_output(proc.stdout or "")
        if parsed.bundle is None:
            raise OutputFormatError("cannot find signature bundle in output")

        signed = to_signed_bundle(parsed.bundle)
        if signed.tlog_id:
            logger.info("tlog_uploaded", url=f"{SEARCH_URL}?logIndex={signed.tlog_id}")
        logger.info("signature_manifest_pushed", ref=ref)
        return AttestationSignResult(
            payload=signed.payload,
            certificate=signed.certificate,
            tlog_id=signed.tlog_id,
            image_name=image_name,
        )

    def sign_attestation_manifests(
        self,
        image_names: Union[str, Sequence[str]],
        image_digest: str,
        no_transparency_log: Optional[bool] = None,
    ) -> Dict[str, AttestationSignResult]:
        """
        Sign every attestation manifest attached to an image.

        Args:
            image_names: Image name(s) the digest was pushed under
            image_digest: Digest of the image index
            no_transparency_log: Skip Rekor upload (default: private repo)

        Returns:
            Results keyed by ``<image name>@<attestation digest>``

        Raises:
            PreconditionError: If cosign or the id-token permission is missing
            SigningError: If any signing step fails
        """
        if isinstance(image_names, str):
            image_names = [image_names]

        self._require_cosign("sign attestation manifests")
        self._require_id_token()

        results: Dict[str, AttestationSignResult] = {}
        config_path = None
        try:
            endpoints = self.signing_endpoints(no_transparency_log)
            logger.info("signing_endpoint", fulcio=endpoints.fulcio_url)

            if self.cosign.version_satisfies(SIGNING_CONFIG_VERSION_RANGE):
                with tempfile.NamedTemporaryFile(
                    mode="w", delete=False, prefix="signing-config-", suffix=".json"
                ) as f:
                    config_path = f.name
                    json.dump(build_signing_config(endpoints), f)
                cosign_args = [f"--signing-config={config_path}"]
            else:
                cosign_args = self._legacy_signing_args(endpoints)

            for image_name in image_names:
                digests = self.imagetools.attestation_digests(f"{image_name}@{image_digest}")
                for digest in digests:
                    ref = f"{image_name}@{digest}"
                    results[ref] = self._sign_manifest(ref, image_name, cosign_args)
        except (AttestkitError, RuntimeError, OSError, ValueError) as e:
            raise SigningError(f"Signing BuildKit attestation manifests failed: {e}") from e
        finally:
            if config_path:
                Path(config_path).unlink(missing_ok=True)

        return results

    def _verify_manifest(self, ref: str, args: List[str]) -> VerifyManifestResult:
        proc = self.cosign.run([*args, ref], env=COSIGN_ENV)
        output = proc.stdout or ""
        if proc.returncode != 0:
            raise self._command_failure("verify", output, proc.returncode)

        digest = scan_command_output(output).signature_manifest_digest
        if not digest:
            raise OutputFormatError("cannot find signature manifest digest in output")
        return VerifyManifestResult(cosign_args=list(args), signature_manifest_digest=digest)

    def verify_signed_manifests(
        self,
        signed: Dict[str, AttestationSignResult],
        certificate_identity_regexp: str,
        retry_on_manifest_unknown: bool = True,
        retries: int = DEFAULT_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Dict[str, VerifyManifestResult]:
        """
        Verify signed attestation manifests in the registry.

        A registry may briefly answer MANIFEST_UNKNOWN for a freshly pushed
        referrer; such failures are retried with exponential backoff. Any
        other failure is raised at once.

        Args:
            signed: Results of ``sign_attestation_manifests``
            certificate_identity_regexp: Regex the certificate SAN must match
            retry_on_manifest_unknown: Retry MANIFEST_UNKNOWN failures
            retries: Maximum attempts per manifest
            sleep: Sleep function, injectable for tests

        Returns:
            Results keyed by attestation reference

        Raises:
            CosignCommandFailed: If verification fails
        """
        self._require_cosign("verify signed manifests")

        results: Dict[str, VerifyManifestResult] = {}
        for ref, signed_res in signed.items():
            args = [
                "--verbose",
                "verify",
                "--experimental-oci11",
                "--new-bundle-format",
                "--certificate-oidc-issuer", GITHUB_OIDC_ISSUER,
                "--certificate-identity-regexp", certificate_identity_regexp,
            ]
            if not signed_res.tlog_id:
                # no tlog entry, rely on the signed timestamp
                args.extend(["--use-signed-timestamps", "--insecure-ignore-tlog"])
            logger.info("cosign_verify", command=["cosign", *args, ref])

            if retry_on_manifest_unknown:
                result = retry_call(
                    lambda: self._verify_manifest(ref, args),
                    lambda e: isinstance(e, CosignCommandFailed) and e.is_manifest_unknown,
                    attempts=retries,
                    sleep=sleep,
                )
            else:
                result = self._verify_manifest(ref, args)

            logger.info(
                "signature_manifest_verified",
                image=f"{signed_res.image_name}@{result.signature_manifest_digest}",
            )
            results[ref] = result
        return results

    def sign_provenance_blobs(
        self,
        local_export_dir: Union[str, Path],
        name: str = "provenance",
        no_transparency_log: Optional[bool] = None,
        identity: Optional[OIDCIdentity] = None,
    ) -> Dict[str, ProvenanceSignResult]:
        """
        Sign provenance blobs of a local export and write bundles beside them.

        Args:
            local_export_dir: Local export directory
            name: Bundle file name stem (``<name>.sigstore.json``)
            no_transparency_log: Skip Rekor upload (default: private repo)
            identity: OIDC identity (default: fetched from GitHub Actions)

        Returns:
            Results keyed by provenance file path

        Raises:
            PreconditionError: If the id-token permission is missing
            SigningError: If discovery or signing fails
        """
        if identity is None:
            self._require_id_token()

        results: Dict[str, ProvenanceSignResult] = {}
        try:
            endpoints = self.signing_endpoints(no_transparency_log)
            logger.info("signing_endpoint", fulcio=endpoints.fulcio_url)

            blobs = discover_provenance_blobs(local_export_dir)
            signer = None
            for path, blob in blobs.items():
                subjects = provenance_subjects(blob)
                if not subjects:
                    logger.warning("provenance_without_subjects", path=path)
                    continue

                if signer is None:
                    signer = self.signer_factory(endpoints)
                if identity is None:
                    identity = OIDCIdentity.from_github_actions()

                bundle = signer.sign_dsse(blob, identity, INTOTO_PAYLOAD_TYPE)
                signed = to_signed_bundle(bundle)
                for subject in subjects:
                    for alg, value in list(subject.digest.items())[:1]:
                        logger.info(
                            "provenance_subject_signed",
                            name=subject.name,
                            digest=f"{alg}:{value}",
                        )
                if signed.tlog_id:
                    logger.info("tlog_uploaded", url=f"{SEARCH_URL}?logIndex={signed.tlog_id}")

                bundle_path = os.path.join(os.path.dirname(path), f"{name}.sigstore.json")
                write_bundle(bundle_path, bundle)
                logger.info("bundle_written", path=bundle_path)

                results[path] = ProvenanceSignResult(
                    payload=signed.payload,
                    certificate=signed.certificate,
                    tlog_id=signed.tlog_id,
                    bundle_path=bundle_path,
                    subjects=subjects,
                )
        except (AttestkitError, RuntimeError, OSError, ValueError) as e:
            raise SigningError(f"Signing BuildKit provenance blobs failed: {e}") from e

        return results

    def verify_signed_artifacts(
        self,
        signed: Dict[str, ProvenanceSignResult],
        certificate_identity_regexp: str,
    ) -> Dict[str, VerifyArtifactResult]:
        """
        Verify every subject of signed provenance blobs with cosign.

        Local files are not subject to registry propagation delay, so there
        is no retry.

        Returns:
            Results keyed by artifact path

        Raises:
            CosignCommandFailed: If cosign rejects an artifact
        """
        self._require_cosign("verify signed artifacts")

        results: Dict[str, VerifyArtifactResult] = {}
        for provenance_path, signed_res in signed.items():
            base_dir = os.path.dirname(provenance_path)
            logger.info("verifying_bundle", bundle=signed_res.bundle_path)
            for subject in signed_res.subjects:
                artifact_path = os.path.join(base_dir, subject.name)
                args = [
                    "verify-blob-attestation",
                    "--new-bundle-format",
                    "--certificate-oidc-issuer", GITHUB_OIDC_ISSUER,
                    "--certificate-identity-regexp", certificate_identity_regexp,
                ]
                if not signed_res.tlog_id:
                    args.extend(["--use-signed-timestamps", "--insecure-ignore-tlog"])

                proc = self.cosign.run([*args, "--bundle", signed_res.bundle_path, artifact_path])
                if proc.returncode != 0:
                    raise self._command_failure(
                        "verify-blob-attestation", proc.stdout or "", proc.returncode
                    )

                logger.info("artifact_verified", artifact=artifact_path)
                results[artifact_path] = VerifyArtifactResult(
                    bundle_path=signed_res.bundle_path, cosign_args=args
                )
        return results
