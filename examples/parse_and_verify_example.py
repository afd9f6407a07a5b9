#!/usr/bin/env python3
"""Example usage of the cosign output parser and signing endpoints."""

import json

from attestkit.cosign import build_signing_config, scan_command_output
from attestkit.models import Endpoints
from attestkit.orchestrator import Sigstore

# Example 1: Reading a cosign log
print("=== Cosign Output Example ===")

log = "\n".join([
    "Generating ephemeral keys...",
    "Retrieving signed certificate...",
    json.dumps({
        "manifests": [{
            "artifactType": "application/vnd.dev.sigstore.bundle.v0.3+json",
            "digest": "sha256:" + "5" * 64,
        }]
    }),
    '{"errors":[{"code":"MANIFEST_UNKNOWN","message":"manifest unknown","detail":"x"}]}',
])

result = scan_command_output(log)
print(f"Signature manifest: {result.signature_manifest_digest}")
for error in result.errors:
    print(f"Error: [{error.code}] {error.message}")

# Example 2: Signing config for a run without transparency log
print("\n=== Signing Config Example ===")

endpoints = Endpoints(rekor_url=None)
print(json.dumps(build_signing_config(endpoints), indent=2))

# Example 3: Signing and verifying in a GitHub Actions job
# (needs cosign, docker buildx and "permissions: id-token: write")
sigstore = Sigstore()

# signed = sigstore.sign_attestation_manifests(
#     ["docker.io/org/app"], "sha256:<index digest>"
# )
# verified = sigstore.verify_signed_manifests(
#     signed, "^https://github.com/org/app/.github/workflows/"
# )
# for ref, res in verified.items():
#     print(f"{ref} -> {res.signature_manifest_digest}")

# Provenance blobs of a local export
# signed = sigstore.sign_provenance_blobs("/tmp/buildx-output")
# sigstore.verify_signed_artifacts(signed, "^https://github.com/org/app/")

print("\n✅ Example complete")
