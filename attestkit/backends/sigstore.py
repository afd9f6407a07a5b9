"""Keyless DSSE signing against Fulcio, Rekor and a timestamp authority."""

import base64
import json
from typing import Any, Dict, List, Optional

import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from rfc3161_client import HashAlgorithm, TimestampRequestBuilder, decode_timestamp_response

from ..errors import SigningError
from ..identity import OIDCIdentity
from ..logging import get_logger
from ..models import BUNDLE_V02_MEDIA_TYPE, INTOTO_PAYLOAD_TYPE, Endpoints
from .intoto import create_envelope, envelope_signature

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _hex_to_b64(value: str) -> str:
    return _b64(bytes.fromhex(value))


class FulcioClient:
    """Requests short-lived signing certificates from Fulcio."""

    def __init__(self, url: str, session: Optional[requests.Session] = None):
        self.url = url.rstrip("/")
        self.session = session or requests.Session()

    def signing_certificate(
        self, identity: OIDCIdentity, private_key: ec.EllipticCurvePrivateKey
    ) -> List[x509.Certificate]:
        """
        Exchange an OIDC token for a certificate bound to ``private_key``.

        Returns:
            Certificate chain, leaf first
        """
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        # proof of possession is a signature over the token subject
        proof = private_key.sign(identity.subject.encode(), ec.ECDSA(hashes.SHA256()))

        response = self.session.post(
            f"{self.url}/api/v2/signingCert",
            json={
                "credentials": {"oidcIdentityToken": identity.token},
                "publicKeyRequest": {
                    "publicKey": {"algorithm": "ECDSA", "content": public_pem.decode("ascii")},
                    "proofOfPossession": _b64(proof),
                },
            },
            headers={"Authorization": f"Bearer {identity.token}"},
            timeout=DEFAULT_TIMEOUT,
        )
        if response.status_code >= 400:
            raise SigningError(
                f"Fulcio certificate request failed ({response.status_code}): {response.text}"
            )

        data = response.json()
        signed = data.get("signedCertificateEmbeddedSct") or data.get(
            "signedCertificateDetachedSct"
        )
        chain = ((signed or {}).get("chain") or {}).get("certificates") or []
        if not chain:
            raise SigningError("Fulcio response contains no certificate chain")
        return [x509.load_pem_x509_certificate(pem.encode("ascii")) for pem in chain]


class RekorClient:
    """Uploads DSSE entries to a Rekor v1 transparency log."""

    def __init__(self, url: str, session: Optional[requests.Session] = None):
        self.url = url.rstrip("/")
        self.session = session or requests.Session()

    def create_dsse_entry(
        self, envelope: Dict[str, Any], certificate: x509.Certificate
    ) -> Dict[str, Any]:
        """
        Log a DSSE envelope signed under ``certificate``.

        Returns:
            Transparency log entry in sigstore bundle JSON form
        """
        cert_pem = certificate.public_bytes(serialization.Encoding.PEM)
        proposed = {
            "apiVersion": "0.0.1",
            "kind": "dsse",
            "spec": {
                "proposedContent": {
                    "envelope": json.dumps(envelope, separators=(",", ":")),
                    "verifiers": [_b64(cert_pem)],
                }
            },
        }
        response = self.session.post(
            f"{self.url}/api/v1/log/entries",
            json=proposed,
            timeout=DEFAULT_TIMEOUT,
        )
        if response.status_code >= 400:
            raise SigningError(
                f"Rekor entry creation failed ({response.status_code}): {response.text}"
            )

        entries = response.json()
        if not isinstance(entries, dict) or not entries:
            raise SigningError("Rekor response contains no log entry")
        return self._to_bundle_entry(next(iter(entries.values())))

    @staticmethod
    def _to_bundle_entry(entry: Dict[str, Any]) -> Dict[str, Any]:
        verification = entry.get("verification") or {}
        tlog_entry: Dict[str, Any] = {
            "logIndex": str(entry["logIndex"]),
            "logId": {"keyId": _hex_to_b64(entry["logID"])},
            "kindVersion": {"kind": "dsse", "version": "0.0.1"},
            "integratedTime": str(entry["integratedTime"]),
            "canonicalizedBody": entry["body"],
        }
        if verification.get("signedEntryTimestamp"):
            tlog_entry["inclusionPromise"] = {
                "signedEntryTimestamp": verification["signedEntryTimestamp"]
            }
        proof = verification.get("inclusionProof")
        if proof:
            tlog_entry["inclusionProof"] = {
                "logIndex": str(proof["logIndex"]),
                "rootHash": _hex_to_b64(proof["rootHash"]),
                "treeSize": str(proof["treeSize"]),
                "hashes": [_hex_to_b64(h) for h in proof.get("hashes", [])],
                "checkpoint": {"envelope": proof.get("checkpoint", "")},
            }
        return tlog_entry


class TimestampAuthorityClient:
    """Requests RFC 3161 timestamps over signatures."""

    def __init__(self, url: str, session: Optional[requests.Session] = None):
        self.url = url
        self.session = session or requests.Session()

    def timestamp(self, signature: bytes) -> bytes:
        """
        Timestamp a signature.

        Returns:
            DER encoded timestamp token
        """
        request = (
            TimestampRequestBuilder()
            .hash_algorithm(HashAlgorithm.SHA256)
            .data(signature)
            .nonce(nonce=True)
            .build()
        )
        response = self.session.post(
            self.url,
            data=request.as_bytes(),
            headers={"Content-Type": "application/timestamp-query"},
            timeout=DEFAULT_TIMEOUT,
        )
        if response.status_code >= 400:
            raise SigningError(
                f"Timestamp request failed ({response.status_code}): {response.text}"
            )
        try:
            tsr = decode_timestamp_response(response.content)
        except ValueError as e:
            raise SigningError(f"Invalid timestamp response: {e}") from e
        self._check_response(request, tsr)
        return tsr.time_stamp_token()

    @staticmethod
    def _check_response(request, tsr) -> None:
        # nonce and imprint must echo the request
        if tsr.tst_info.nonce != request.nonce:
            raise SigningError("Timestamp response nonce does not match the request")
        if tsr.tst_info.message_imprint.message != request.message_imprint.message:
            raise SigningError("Timestamp response message imprint does not match the request")


class KeylessSigner:
    """
    Builds sigstore bundles for DSSE payloads without the cosign CLI.

    Each call generates an ephemeral P-256 key, obtains a certificate for it
    from Fulcio, and optionally witnesses the signature with Rekor and/or a
    timestamp authority depending on which endpoints are set.
    """

    def __init__(self, endpoints: Endpoints, session: Optional[requests.Session] = None):
        self.endpoints = endpoints
        session = session or requests.Session()
        self.fulcio = FulcioClient(endpoints.fulcio_url, session)
        self.rekor = RekorClient(endpoints.rekor_url, session) if endpoints.rekor_url else None
        self.tsa = (
            TimestampAuthorityClient(endpoints.tsa_timestamp_url, session)
            if endpoints.tsa_timestamp_url
            else None
        )

    def sign_dsse(
        self,
        payload: bytes,
        identity: OIDCIdentity,
        payload_type: str = INTOTO_PAYLOAD_TYPE,
    ) -> Dict[str, Any]:
        """
        Sign a payload as a DSSE envelope.

        Args:
            payload: Raw payload bytes (signed without re-serialization)
            identity: OIDC identity the certificate is bound to
            payload_type: DSSE payload type

        Returns:
            Serialized sigstore bundle
        """
        private_key = ec.generate_private_key(ec.SECP256R1())
        chain = self.fulcio.signing_certificate(identity, private_key)
        envelope = create_envelope(payload, private_key, payload_type)

        material: Dict[str, Any] = {
            "x509CertificateChain": {
                "certificates": [
                    {"rawBytes": _b64(c.public_bytes(serialization.Encoding.DER))}
                    for c in chain
                ]
            },
            "tlogEntries": [],
        }

        if self.rekor is not None:
            material["tlogEntries"].append(self.rekor.create_dsse_entry(envelope, chain[0]))

        if self.tsa is not None:
            token = self.tsa.timestamp(envelope_signature(envelope))
            material["timestampVerificationData"] = {
                "rfc3161Timestamps": [{"signedTimestamp": _b64(token)}]
            }

        if self.rekor is None and self.tsa is None:
            logger.warning("signing_without_witness", fulcio=self.endpoints.fulcio_url)

        return {
            "mediaType": BUNDLE_V02_MEDIA_TYPE,
            "verificationMaterial": material,
            "dsseEnvelope": envelope,
        }
