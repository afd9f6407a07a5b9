"""CI identity and repository context for keyless signing."""

import base64
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

ID_TOKEN_REQUEST_URL = "ACTIONS_ID_TOKEN_REQUEST_URL"
ID_TOKEN_REQUEST_TOKEN = "ACTIONS_ID_TOKEN_REQUEST_TOKEN"

MISSING_ID_TOKEN_PERMISSION = (
    'missing "id-token" permission. Please add "permissions: id-token: write" '
    "to your workflow."
)


def has_id_token_permission() -> bool:
    """True if the workflow can request an OIDC token."""
    return bool(os.getenv(ID_TOKEN_REQUEST_URL))


def decode_claims(token: str) -> Dict[str, Any]:
    """Decode JWT claims without verification (Fulcio verifies the token)."""
    try:
        claims_b64 = token.split(".")[1]
    except IndexError as e:
        raise ValueError("OIDC token is not a JWT") from e
    claims_b64 += "=" * (-len(claims_b64) % 4)
    return json.loads(base64.urlsafe_b64decode(claims_b64))


@dataclass
class OIDCIdentity:
    """OIDC-based identity for keyless signing."""

    token: str
    issuer: str
    subject: str
    claims: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_token(cls, token: str) -> "OIDCIdentity":
        claims = decode_claims(token)
        return cls(
            token=token,
            issuer=claims.get("iss", ""),
            subject=claims.get("sub", ""),
            claims=claims,
        )

    @classmethod
    def from_github_actions(cls, audience: str = "sigstore") -> "OIDCIdentity":
        """
        Create OIDC identity from GitHub Actions environment.

        Args:
            audience: OIDC token audience (default: "sigstore")

        Returns:
            OIDCIdentity with token and claims

        Raises:
            RuntimeError: If not running in GitHub Actions or token unavailable
        """
        token_url = os.getenv(ID_TOKEN_REQUEST_URL)
        token_bearer = os.getenv(ID_TOKEN_REQUEST_TOKEN)

        if not token_url or not token_bearer:
            raise RuntimeError(
                "Not running in GitHub Actions or id-token permission not granted"
            )

        response = requests.get(
            f"{token_url}&audience={audience}",
            headers={"Authorization": f"bearer {token_bearer}"},
            timeout=10,
        )
        response.raise_for_status()

        return cls.from_token(response.json()["value"])


@dataclass
class GitHubContext:
    """Subset of the GitHub Actions run context used when signing."""

    repository: str = ""
    server_url: str = "https://github.com"
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "GitHubContext":
        """Load the context from ``GITHUB_*`` variables and the event file."""
        payload: Dict[str, Any] = {}
        event_path = os.getenv("GITHUB_EVENT_PATH")
        if event_path and os.path.exists(event_path):
            with open(event_path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        return cls(
            repository=os.getenv("GITHUB_REPOSITORY", ""),
            server_url=os.getenv("GITHUB_SERVER_URL", "https://github.com"),
            payload=payload,
        )

    @property
    def repository_private(self) -> Optional[bool]:
        """Visibility of the repository, None when the event does not say."""
        repo = self.payload.get("repository")
        if isinstance(repo, dict) and isinstance(repo.get("private"), bool):
            return repo["private"]
        return None
