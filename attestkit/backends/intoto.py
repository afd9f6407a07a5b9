"""DSSE envelopes for in-toto statements."""

import base64
from typing import Any, Dict

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from ..models import INTOTO_PAYLOAD_TYPE


def compute_pae(payload_type: str, payload: bytes) -> bytes:
    """
    Compute DSSE Pre-Authentication Encoding.

    PAE format: "DSSEv1" + SP + LEN(payloadType) + SP + payloadType + SP + LEN(payload) + SP + payload

    Args:
        payload_type: DSSE payload type
        payload: Payload bytes

    Returns:
        PAE bytes
    """
    payload_type_bytes = payload_type.encode("utf-8")

    pae_parts = [
        b"DSSEv1",
        b" ",
        str(len(payload_type_bytes)).encode("ascii"),
        b" ",
        payload_type_bytes,
        b" ",
        str(len(payload)).encode("ascii"),
        b" ",
        payload,
    ]

    return b"".join(pae_parts)


def create_envelope(
    payload: bytes,
    private_key: ec.EllipticCurvePrivateKey,
    payload_type: str = INTOTO_PAYLOAD_TYPE,
) -> Dict[str, Any]:
    """
    Sign a payload and wrap it in a DSSE envelope.

    The payload is signed as-is; it is not re-serialized.

    Args:
        payload: Payload bytes to sign
        private_key: ECDSA signing key
        payload_type: DSSE payload type

    Returns:
        DSSE envelope in sigstore bundle JSON form
    """
    pae = compute_pae(payload_type, payload)
    signature = private_key.sign(pae, ec.ECDSA(hashes.SHA256()))

    return {
        "payload": base64.b64encode(payload).decode("utf-8"),
        "payloadType": payload_type,
        "signatures": [
            {
                "sig": base64.b64encode(signature).decode("utf-8"),
                "keyid": "",
            }
        ],
    }


def envelope_signature(envelope: Dict[str, Any]) -> bytes:
    """Raw bytes of the first envelope signature."""
    return base64.b64decode(envelope["signatures"][0]["sig"])
