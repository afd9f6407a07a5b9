"""Keyless signing backends."""

from .intoto import compute_pae, create_envelope

# Lazy import for the network clients, which pull in rfc3161-client
__all__ = [
    "compute_pae",
    "create_envelope",
    "KeylessSigner",
    "FulcioClient",
    "RekorClient",
    "TimestampAuthorityClient",
]


def __getattr__(name):
    """Lazy import network clients."""
    if name in ("KeylessSigner", "FulcioClient", "RekorClient", "TimestampAuthorityClient"):
        from . import sigstore
        return getattr(sigstore, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
