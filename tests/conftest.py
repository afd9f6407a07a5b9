"""Shared pytest fixtures for all tests."""

import base64
import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

import jwt
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from attestkit.identity import OIDCIdentity

WORKFLOW_IDENTITY = (
    "https://github.com/owner/repo/.github/workflows/release.yml@refs/heads/main"
)


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: end-to-end flows with stubbed tools")


@pytest.fixture
def mock_oidc_token():
    """Generate a mock GitHub Actions OIDC JWT token."""
    now = datetime.now(timezone.utc)
    exp = now + timedelta(hours=1)

    payload = {
        "iss": "https://token.actions.githubusercontent.com",
        "sub": "repo:owner/repo:ref:refs/heads/main",
        "aud": "sigstore",
        "exp": int(exp.timestamp()),
        "iat": int(now.timestamp()),
        "repository": "owner/repo",
        "repository_owner": "owner",
        "repository_visibility": "public",
        "workflow": "release",
        "workflow_ref": "owner/repo/.github/workflows/release.yml@refs/heads/main",
        "ref": "refs/heads/main",
        "sha": "abc123def456789",
        "run_id": "987654321",
        "job_workflow_ref": "owner/repo/.github/workflows/release.yml@refs/heads/main",
        "actor": "bot-user",
    }

    # Create a JWT token (unsigned for testing)
    token = jwt.encode(payload, "secret", algorithm="HS256")
    return token, payload


@pytest.fixture
def sample_identity(mock_oidc_token):
    """Create sample OIDC identity."""
    token, payload = mock_oidc_token
    return OIDCIdentity(
        token=token,
        issuer=payload["iss"],
        subject=payload["sub"],
        claims=payload,
    )


@pytest.fixture
def mock_github_env(monkeypatch, mock_oidc_token, tmp_path):
    """Set up GitHub Actions environment variables for a public repository."""
    token, _ = mock_oidc_token

    event_path = tmp_path / "event.json"
    event_path.write_text(json.dumps({"repository": {"full_name": "owner/repo", "private": False}}))

    monkeypatch.setenv("ACTIONS_ID_TOKEN_REQUEST_URL", "https://example.com/token?api-version=2.0")
    monkeypatch.setenv("ACTIONS_ID_TOKEN_REQUEST_TOKEN", "request-token-123")
    monkeypatch.setenv("GITHUB_REPOSITORY", "owner/repo")
    monkeypatch.setenv("GITHUB_SERVER_URL", "https://github.com")
    monkeypatch.setenv("GITHUB_EVENT_PATH", str(event_path))

    return token


@pytest.fixture
def signing_key():
    """Ephemeral P-256 key."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def signing_cert(signing_key):
    """Short-lived certificate carrying a workflow SAN, like Fulcio issues."""
    now = datetime.now(timezone.utc)
    name = x509.Name([x509.NameAttribute(NameOID.ORGANIZATION_NAME, "sigstore.dev")])
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(signing_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(minutes=10))
        .add_extension(
            x509.SubjectAlternativeName([x509.UniformResourceIdentifier(WORKFLOW_IDENTITY)]),
            critical=True,
        )
        .sign(signing_key, hashes.SHA256())
    )


@pytest.fixture
def signing_cert_pem(signing_cert):
    return signing_cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


@pytest.fixture
def sample_bundle(signing_cert):
    """Sigstore v0.3 bundle with a certificate and one transparency log entry."""
    raw = base64.b64encode(signing_cert.public_bytes(serialization.Encoding.DER)).decode()
    return {
        "mediaType": "application/vnd.dev.sigstore.bundle.v0.3+json",
        "verificationMaterial": {
            "certificate": {"rawBytes": raw},
            "tlogEntries": [
                {
                    "logIndex": "123456789",
                    "logId": {"keyId": "wNI9atQGlz+VWfO6LRygH4QUfY/8W4RFwiT5i5WRgB0="},
                    "kindVersion": {"kind": "dsse", "version": "0.0.1"},
                    "integratedTime": "1234567890",
                }
            ],
        },
        "dsseEnvelope": {
            "payload": base64.b64encode(b'{"_type":"https://in-toto.io/Statement/v1"}').decode(),
            "payloadType": "application/vnd.in-toto+json",
            "signatures": [{"sig": "c2lnbmF0dXJl", "keyid": ""}],
        },
    }


@pytest.fixture
def sample_bundle_no_tlog(sample_bundle):
    """Same bundle, witnessed only by a timestamp authority."""
    bundle = json.loads(json.dumps(sample_bundle))
    bundle["verificationMaterial"]["tlogEntries"] = []
    bundle["verificationMaterial"]["timestampVerificationData"] = {
        "rfc3161Timestamps": [{"signedTimestamp": "dGltZXN0YW1w"}]
    }
    return bundle


@pytest.fixture
def completed_process():
    """Factory for subprocess.run results."""
    def make(returncode=0, stdout="", stderr=""):
        result = Mock()
        result.returncode = returncode
        result.stdout = stdout
        result.stderr = stderr
        return result

    return make


@pytest.fixture
def fixtures_dir():
    """Return the fixtures directory path."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def cosign_log(fixtures_dir):
    """Read a captured cosign log by name."""
    def read(name):
        return (fixtures_dir / "cosign" / name).read_text()

    return read


@pytest.fixture
def manifest_list_json(fixtures_dir):
    """Multi-platform image index with attestation manifests."""
    return (fixtures_dir / "imagetools" / "manifest-list.json").read_text()


@pytest.fixture
def single_export(tmp_path):
    """Single-platform local export with provenance."""
    export = tmp_path / "single"
    export.mkdir()
    statement = {
        "_type": "https://in-toto.io/Statement/v0.1",
        "predicateType": "https://slsa.dev/provenance/v0.2",
        "subject": [{"name": "app", "digest": {"sha256": "a" * 64}}],
        "predicate": {"builder": {"id": ""}},
    }
    (export / "provenance.json").write_text(json.dumps(statement))
    (export / "app").write_bytes(b"binary")
    return export


@pytest.fixture
def multi_export(tmp_path):
    """Multi-platform local export, one provenance per platform folder."""
    export = tmp_path / "multi"
    for platform in ("linux_amd64", "linux_arm64"):
        folder = export / platform
        folder.mkdir(parents=True)
        statement = {
            "_type": "https://in-toto.io/Statement/v0.1",
            "predicateType": "https://slsa.dev/provenance/v0.2",
            "subject": [{"name": "app", "digest": {"sha256": platform[-1] * 64}}],
            "predicate": {},
        }
        (folder / "provenance.json").write_text(json.dumps(statement))
        (folder / "app").write_bytes(platform.encode())
    return export


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch):
    """Reset environment variables before each test."""
    original_env = dict(os.environ)
    for name in ("ACTIONS_ID_TOKEN_REQUEST_URL", "ACTIONS_ID_TOKEN_REQUEST_TOKEN", "GITHUB_EVENT_PATH"):
        monkeypatch.delenv(name, raising=False)

    yield

    os.environ.clear()
    os.environ.update(original_env)
