"""Sigstore bundle helpers shared by signing and verification."""

import base64
import binascii
import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .errors import BundleError
from .models import SignedBundle

CONTENT_CERTIFICATE_CHAIN = "x509CertificateChain"
CONTENT_CERTIFICATE = "certificate"
CONTENT_PUBLIC_KEY = "publicKey"


def _content_case(material: Dict[str, Any]) -> str:
    cases = [
        c
        for c in (CONTENT_CERTIFICATE_CHAIN, CONTENT_CERTIFICATE, CONTENT_PUBLIC_KEY)
        if c in material
    ]
    if len(cases) != 1:
        raise BundleError("Bundle must contain an x509 certificate")
    return cases[0]


def certificate_bytes(bundle: Dict[str, Any]) -> bytes:
    """
    Extract the DER encoded signing certificate of a bundle.

    Raises:
        BundleError: If the bundle has no certificate material
    """
    material = bundle.get("verificationMaterial")
    if not isinstance(material, dict):
        raise BundleError("Bundle has no verification material")

    case = _content_case(material)
    if case == CONTENT_CERTIFICATE_CHAIN:
        certificates = material[case].get("certificates") or []
        if not certificates:
            raise BundleError("Bundle certificate chain is empty")
        raw = certificates[0].get("rawBytes")
    elif case == CONTENT_CERTIFICATE:
        raw = material[case].get("rawBytes")
    else:
        raise BundleError("Bundle must contain an x509 certificate")

    if not raw:
        raise BundleError("Bundle certificate has no raw bytes")
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise BundleError(f"Bundle certificate is not valid base64: {e}") from e


def certificate_pem(bundle: Dict[str, Any]) -> str:
    """Signing certificate of a bundle as a PEM string."""
    der = certificate_bytes(bundle)
    try:
        cert = x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise BundleError(f"Bundle certificate is not valid DER: {e}") from e
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def tlog_id(bundle: Dict[str, Any]) -> Optional[str]:
    """Index of the first transparency log entry, if any."""
    entries = (bundle.get("verificationMaterial") or {}).get("tlogEntries") or []
    if not entries:
        return None
    index = entries[0].get("logIndex")
    return None if index is None else str(index)


def has_tlog_entry(bundle: Dict[str, Any]) -> bool:
    return tlog_id(bundle) is not None


def to_signed_bundle(bundle: Dict[str, Any]) -> SignedBundle:
    """
    Build a SignedBundle from serialized bundle JSON.

    Returns:
        SignedBundle with PEM certificate and transparency log index
    """
    return SignedBundle(
        payload=bundle,
        certificate=certificate_pem(bundle),
        tlog_id=tlog_id(bundle),
    )


def write_bundle(path: Union[str, Path], bundle: Dict[str, Any]) -> Path:
    """Write bundle JSON (2-space indent) and return the path."""
    path = Path(path)
    path.write_text(json.dumps(bundle, indent=2), encoding="utf-8")
    return path


def load_bundle(path: Union[str, Path]) -> Dict[str, Any]:
    """Read bundle JSON from disk."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise BundleError(f"Bundle {path} is not a JSON object")
    return data
