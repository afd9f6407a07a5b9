"""Standalone bundle verification with sigstore-python, without cosign."""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from cryptography import x509
from sigstore.errors import Error as SigstoreError
from sigstore.models import Bundle
from sigstore.verify import Verifier
from sigstore.verify.policy import AnyOf, Identity, OIDCIssuer, OIDCIssuerV2, UnsafeNoOp

from .bundle import certificate_pem, has_tlog_entry, load_bundle, tlog_id
from .errors import BundleError, VerificationError
from .logging import get_logger
from .models import VerifiedBundle

logger = get_logger(__name__)


def certificate_identities(cert: x509.Certificate) -> List[str]:
    """
    Identity values of a certificate's SubjectAlternativeName.

    Returns:
        URI, email and other-name values in extension order
    """
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return []

    identities: List[str] = []
    for name in san:
        if isinstance(name, (x509.UniformResourceIdentifier, x509.RFC822Name)):
            identities.append(name.value)
        elif isinstance(name, x509.OtherName):
            identities.append(_decode_other_name(name.value))
    return identities


def _decode_other_name(value: bytes) -> str:
    # DER UTF8String: tag 0x0c, short or long form length
    if len(value) >= 2 and value[0] == 0x0C:
        length = value[1]
        offset = 2
        if length & 0x80:
            n = length & 0x7F
            length = int.from_bytes(value[2:2 + n], "big")
            offset = 2 + n
        return value[offset:offset + length].decode("utf-8", errors="replace")
    return value.decode("utf-8", errors="replace")


def match_identity(
    cert: x509.Certificate,
    certificate_identity: Optional[str] = None,
    certificate_identity_regexp: Optional[str] = None,
) -> str:
    """
    Check a certificate SAN against an exact identity or a regex.

    The regex is searched, not anchored, the way cosign applies
    ``--certificate-identity-regexp``.

    Returns:
        The matching identity

    Raises:
        VerificationError: If no SAN value matches
    """
    identities = certificate_identities(cert)
    if certificate_identity is not None:
        if certificate_identity in identities:
            return certificate_identity
        raise VerificationError(
            f"Certificate identity {identities} does not match {certificate_identity!r}"
        )

    if certificate_identity_regexp is not None:
        try:
            pattern = re.compile(certificate_identity_regexp)
        except re.error as e:
            raise VerificationError(f"Invalid certificate identity regexp: {e}") from e
        for identity in identities:
            if pattern.search(identity):
                return identity
        raise VerificationError(
            f"Certificate identity {identities} does not match "
            f"regexp {certificate_identity_regexp!r}"
        )

    return identities[0] if identities else ""


def _policy(
    certificate_identity: Optional[str], certificate_issuer: Optional[str]
):
    if certificate_identity is not None and certificate_issuer is not None:
        return Identity(identity=certificate_identity, issuer=certificate_issuer)
    if certificate_issuer is not None:
        return AnyOf([OIDCIssuer(certificate_issuer), OIDCIssuerV2(certificate_issuer)])
    return UnsafeNoOp()


def verify_artifact(
    artifact: Union[bytes, str, Path],
    bundle: Union[Dict[str, Any], str, Path],
    certificate_identity: Optional[str] = None,
    certificate_identity_regexp: Optional[str] = None,
    certificate_issuer: Optional[str] = None,
    offline: bool = False,
    verifier: Optional[Verifier] = None,
) -> VerifiedBundle:
    """
    Verify a bundle against artifact bytes using the public good trust root.

    Args:
        artifact: Artifact bytes or path
        bundle: Bundle JSON or path to a ``.sigstore.json`` file
        certificate_identity: Exact SAN value the certificate must carry
        certificate_identity_regexp: Regex one SAN value must match
        certificate_issuer: Expected OIDC issuer extension
        offline: Do not contact the transparency log
        verifier: Preconfigured verifier (default: production trust root)

    Returns:
        VerifiedBundle with payload, certificate and log index

    Raises:
        VerificationError: If the bundle or certificate does not verify
    """
    if certificate_identity is not None and certificate_identity_regexp is not None:
        raise ValueError(
            "certificate_identity and certificate_identity_regexp are mutually exclusive"
        )

    if isinstance(artifact, (str, Path)):
        artifact = Path(artifact).read_bytes()
    if not isinstance(bundle, dict):
        bundle = load_bundle(bundle)

    if not has_tlog_entry(bundle):
        # sigstore-python requires exactly one tlog entry
        raise VerificationError(
            "Bundle has no transparency log entry; timestamp-only bundles cannot be "
            "verified without cosign (use cosign verify-blob-attestation "
            "--use-signed-timestamps --insecure-ignore-tlog)"
        )

    try:
        certificate = certificate_pem(bundle)
        parsed = Bundle.from_json(json.dumps(bundle))
    except (BundleError, SigstoreError, ValueError) as e:
        raise VerificationError(f"Invalid bundle: {e}") from e

    try:
        if verifier is None:
            logger.info("fetching_trust_root", offline=offline)
            verifier = Verifier.production(offline=offline)
        verifier.verify_artifact(
            input_=artifact,
            bundle=parsed,
            policy=_policy(certificate_identity, certificate_issuer),
        )
    except SigstoreError as e:
        raise VerificationError(f"Failed to verify signature: {e}") from e

    identity = match_identity(
        parsed.signing_certificate,
        certificate_identity=certificate_identity,
        certificate_identity_regexp=certificate_identity_regexp,
    )
    logger.info("artifact_verified", identity=identity, tlog_id=tlog_id(bundle))

    return VerifiedBundle(payload=bundle, certificate=certificate, tlog_id=tlog_id(bundle))
