"""
Keyless signing and verification of container build attestations.

This package signs BuildKit attestation manifests pushed to OCI registries and
provenance blobs exported locally, using short-lived certificates bound to a
GitHub Actions OIDC identity instead of long-lived keys.
"""

__version__ = "0.1.0"
