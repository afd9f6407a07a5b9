"""Unit tests for identity.py module."""

import json
import pytest
import requests
import responses

from attestkit.identity import (
    GitHubContext,
    OIDCIdentity,
    decode_claims,
    has_id_token_permission,
)


class TestOIDCIdentity:
    """Tests for OIDCIdentity class."""

    def test_from_token(self, mock_oidc_token):
        """Test claims are decoded from the token."""
        token, payload = mock_oidc_token

        identity = OIDCIdentity.from_token(token)

        assert identity.issuer == payload["iss"]
        assert identity.subject == payload["sub"]
        assert identity.claims["job_workflow_ref"] == payload["job_workflow_ref"]

    def test_decode_claims_not_a_jwt(self):
        """Test a token without claims segment is rejected."""
        with pytest.raises(ValueError, match="not a JWT"):
            decode_claims("opaque-token")

    @responses.activate
    def test_from_github_actions_success(self, monkeypatch, mock_oidc_token):
        """Test successful OIDC token acquisition from GitHub Actions."""
        token, payload = mock_oidc_token

        monkeypatch.setenv(
            "ACTIONS_ID_TOKEN_REQUEST_URL", "https://example.com/token?param=value"
        )
        monkeypatch.setenv("ACTIONS_ID_TOKEN_REQUEST_TOKEN", "request-token-123")

        responses.add(
            responses.GET,
            "https://example.com/token?param=value&audience=sigstore",
            json={"value": token},
            status=200,
        )

        identity = OIDCIdentity.from_github_actions(audience="sigstore")

        assert identity.token == token
        assert identity.issuer == payload["iss"]
        assert identity.subject == payload["sub"]
        assert identity.claims["repository"] == payload["repository"]
        assert responses.calls[0].request.headers["Authorization"] == "bearer request-token-123"

    @responses.activate
    def test_from_github_actions_custom_audience(self, monkeypatch, mock_oidc_token):
        """Test OIDC token acquisition with custom audience."""
        token, _ = mock_oidc_token

        monkeypatch.setenv("ACTIONS_ID_TOKEN_REQUEST_URL", "https://example.com/token?api-version=2.0")
        monkeypatch.setenv("ACTIONS_ID_TOKEN_REQUEST_TOKEN", "request-token")

        responses.add(
            responses.GET,
            "https://example.com/token?api-version=2.0&audience=custom-audience",
            json={"value": token},
            status=200,
        )

        identity = OIDCIdentity.from_github_actions(audience="custom-audience")

        assert identity.token == token
        assert len(responses.calls) == 1
        assert "audience=custom-audience" in responses.calls[0].request.url

    def test_from_github_actions_missing_url(self, monkeypatch):
        """Test error when ACTIONS_ID_TOKEN_REQUEST_URL is missing."""
        monkeypatch.setenv("ACTIONS_ID_TOKEN_REQUEST_TOKEN", "token")

        with pytest.raises(RuntimeError, match="Not running in GitHub Actions"):
            OIDCIdentity.from_github_actions()

    def test_from_github_actions_missing_token(self, monkeypatch):
        """Test error when ACTIONS_ID_TOKEN_REQUEST_TOKEN is missing."""
        monkeypatch.setenv("ACTIONS_ID_TOKEN_REQUEST_URL", "https://example.com/token")

        with pytest.raises(RuntimeError, match="Not running in GitHub Actions"):
            OIDCIdentity.from_github_actions()

    @responses.activate
    def test_from_github_actions_http_error(self, monkeypatch):
        """Test error handling when API request fails."""
        monkeypatch.setenv("ACTIONS_ID_TOKEN_REQUEST_URL", "https://example.com/token?a=b")
        monkeypatch.setenv("ACTIONS_ID_TOKEN_REQUEST_TOKEN", "request-token")

        responses.add(
            responses.GET,
            "https://example.com/token?a=b&audience=sigstore",
            json={"error": "unauthorized"},
            status=403,
        )

        with pytest.raises(requests.HTTPError):
            OIDCIdentity.from_github_actions()


class TestIdTokenPermission:
    """Tests for has_id_token_permission."""

    def test_granted(self, mock_github_env):
        """Test the permission is detected from the request URL."""
        assert has_id_token_permission() is True

    def test_missing(self):
        """Test the permission is missing outside GitHub Actions."""
        assert has_id_token_permission() is False


class TestGitHubContext:
    """Tests for GitHubContext class."""

    def test_from_env(self, mock_github_env):
        """Test the context is loaded from environment and event file."""
        context = GitHubContext.from_env()

        assert context.repository == "owner/repo"
        assert context.server_url == "https://github.com"
        assert context.payload["repository"]["full_name"] == "owner/repo"
        assert context.repository_private is False

    def test_private_repository(self, monkeypatch, tmp_path):
        """Test a private repository event."""
        event = tmp_path / "event.json"
        event.write_text(json.dumps({"repository": {"private": True}}))
        monkeypatch.setenv("GITHUB_EVENT_PATH", str(event))

        assert GitHubContext.from_env().repository_private is True

    def test_missing_event_file(self, monkeypatch, tmp_path):
        """Test a missing event file yields an empty payload."""
        monkeypatch.setenv("GITHUB_EVENT_PATH", str(tmp_path / "missing.json"))

        context = GitHubContext.from_env()

        assert context.payload == {}
        assert context.repository_private is None

    def test_visibility_not_boolean(self):
        """Test a non-boolean private field is treated as unknown."""
        context = GitHubContext(payload={"repository": {"private": "yes"}})

        assert context.repository_private is None
