"""Cosign CLI adapter and parser for its mixed text/JSON output."""

import json
import os
import re
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from .errors import OutputFormatError
from .logging import get_logger
from .models import (
    BUNDLE_V01_MEDIA_TYPE,
    BUNDLE_V02_MEDIA_TYPE,
    BUNDLE_V03_MEDIA_TYPE,
    OCI_EMPTY_JSON_MEDIA_TYPE,
    CosignCommandError,
    CosignCommandResult,
    Endpoints,
)

logger = get_logger(__name__)

BUNDLE_MEDIA_TYPES = frozenset(
    [BUNDLE_V01_MEDIA_TYPE, BUNDLE_V02_MEDIA_TYPE, BUNDLE_V03_MEDIA_TYPE]
)

SIGNING_CONFIG_MEDIA_TYPE = "application/vnd.dev.sigstore.signingconfig.v0.2+json"
SERVICE_VALID_FROM = "2021-01-01T00:00:00Z"

# Versions at or above this accept --signing-config
SIGNING_CONFIG_VERSION_RANGE = ">=3.0.0"

_COMMIT_SHA = re.compile(r"^[0-9a-f]{7}$")

KIND_ERRORS = "errors"
KIND_DIGEST = "digest"
KIND_FALLBACK_DIGEST = "fallback_digest"
KIND_BUNDLE = "bundle"


@dataclass
class ParsedLine:
    """A JSON object found on one output line, tagged by what it carries."""

    kind: str
    value: Any


def classify_line(line: str) -> Optional[ParsedLine]:
    """
    Classify one line of cosign output.

    Args:
        line: Raw output line

    Returns:
        ParsedLine, or None if the line is not a recognized JSON object
    """
    line = line.strip()
    if not (line.startswith("{") and line.endswith("}")):
        return None
    try:
        obj = json.loads(line)
    except ValueError:
        return None
    if not isinstance(obj, dict):
        return None

    errors = obj.get("errors")
    if isinstance(errors, list) and errors:
        return ParsedLine(
            KIND_ERRORS,
            [CosignCommandError.from_dict(e) for e in errors if isinstance(e, dict)],
        )

    manifests = obj.get("manifests")
    if isinstance(manifests, list) and manifests and isinstance(manifests[0], dict):
        first = manifests[0]
        digest = first.get("digest")
        if isinstance(digest, str):
            if first.get("artifactType") == BUNDLE_V03_MEDIA_TYPE:
                return ParsedLine(KIND_DIGEST, digest)
            if first.get("artifactType") == OCI_EMPTY_JSON_MEDIA_TYPE:
                return ParsedLine(KIND_FALLBACK_DIGEST, digest)

    if obj.get("mediaType") in BUNDLE_MEDIA_TYPES:
        return ParsedLine(KIND_BUNDLE, obj)

    return None


def reduce_output(parsed: Iterable[Optional[ParsedLine]]) -> CosignCommandResult:
    """Fold classified lines into a single command result."""
    result = CosignCommandResult()
    fallback_digest: Optional[str] = None

    for item in parsed:
        if item is None:
            continue
        if item.kind == KIND_ERRORS:
            result.errors.extend(item.value)
        elif item.kind == KIND_DIGEST:
            if result.signature_manifest_digest is None:
                result.signature_manifest_digest = item.value
        elif item.kind == KIND_FALLBACK_DIGEST:
            if fallback_digest is None:
                fallback_digest = item.value
        elif item.kind == KIND_BUNDLE:
            if result.bundle is None:
                result.bundle = item.value
        if result.bundle is not None and result.signature_manifest_digest is not None:
            break

    if result.signature_manifest_digest is None:
        result.signature_manifest_digest = fallback_digest
    return result


def scan_command_output(log_text: str) -> CosignCommandResult:
    """Parse cosign output without requiring a bundle or errors."""
    return reduce_output(classify_line(line) for line in log_text.splitlines())


def parse_command_output(log_text: str) -> CosignCommandResult:
    """
    Parse cosign output into bundle, signature manifest digest and errors.

    Raises:
        OutputFormatError: If neither a bundle nor structured errors are found
    """
    result = scan_command_output(log_text)
    if not result.errors and result.bundle is None:
        raise OutputFormatError("cannot find signature bundle in output")
    return result


def last_output_line(log_text: str) -> str:
    """Return the last non-blank line of output, or an empty string."""
    for line in reversed(log_text.splitlines()):
        if line.strip():
            return line.strip()
    return ""


def _service(url: str) -> Dict[str, Any]:
    return {
        "url": url,
        "majorApiVersion": 1,
        "validFor": {"start": SERVICE_VALID_FROM},
        "operator": urlparse(url).hostname or url,
    }


def build_signing_config(endpoints: Endpoints) -> Dict[str, Any]:
    """
    Build a Sigstore SigningConfig document for the given endpoints.

    An absent Rekor URL yields no transparency log services, an absent TSA URL
    no timestamp authorities.
    """
    config: Dict[str, Any] = {
        "mediaType": SIGNING_CONFIG_MEDIA_TYPE,
        "caUrls": [_service(endpoints.fulcio_url)],
        "oidcUrls": [],
        "rekorTlogUrls": [],
        "tsaUrls": [],
    }
    if endpoints.rekor_url:
        config["rekorTlogUrls"].append(_service(endpoints.rekor_url))
        config["rekorTlogConfig"] = {"selector": "ANY"}
    if endpoints.tsa_server_url:
        config["tsaUrls"].append(_service(endpoints.tsa_timestamp_url))
        config["tsaConfig"] = {"selector": "ANY"}
    return config


class Cosign:
    """Thin wrapper around a cosign binary."""

    def __init__(self, bin_path: str = "cosign"):
        """
        Initialize the adapter.

        Args:
            bin_path: Path or name of the cosign binary
        """
        self.bin_path = bin_path
        self._version: Optional[str] = None

    def run(
        self, args: List[str], env: Optional[Dict[str, str]] = None
    ) -> subprocess.CompletedProcess:
        """
        Run cosign and capture stdout and stderr as one buffered stream.

        The return code is not checked.
        """
        run_env = None
        if env:
            run_env = dict(os.environ)
            run_env.update(env)
        return subprocess.run(
            [self.bin_path, *args],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            env=run_env,
        )

    def is_available(self) -> bool:
        """Check that the cosign binary can be executed."""
        try:
            result = subprocess.run(
                [self.bin_path],
                capture_output=True,
                text=True,
            )
        except OSError as e:
            logger.debug("cosign_unavailable", bin_path=self.bin_path, error=str(e))
            return False

        ok = result.returncode == 0
        if not ok:
            logger.debug(
                "cosign_unavailable",
                bin_path=self.bin_path,
                stderr=result.stderr.strip(),
            )
        return ok

    def version(self) -> str:
        """
        Get the cosign git version, computed once per instance.

        Raises:
            RuntimeError: If ``cosign version --json`` fails
        """
        if self._version is not None:
            return self._version

        result = subprocess.run(
            [self.bin_path, "version", "--json"],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise RuntimeError(result.stderr.strip() or f"cosign version exited {result.returncode}")
        self._version = json.loads(result.stdout.strip()).get("gitVersion", "")
        return self._version

    def print_version(self) -> None:
        """Print ``cosign version --json`` to the inherited stdout."""
        subprocess.run([self.bin_path, "version", "--json"], check=False)

    def version_satisfies(self, version_range: str, version: Optional[str] = None) -> bool:
        """
        Check whether the cosign version falls within a PEP 440 range.

        Development builds reporting a short commit hash always satisfy.

        Args:
            version_range: Specifier such as ``">=3.0.0"``
            version: Version to test (defaults to the installed binary)
        """
        ver = version if version is not None else self.version()
        if not ver:
            logger.debug("cosign_version_unknown")
            return False
        if _COMMIT_SHA.match(ver):
            return True
        try:
            ok = SpecifierSet(version_range).contains(
                Version(ver.lstrip("v")), prereleases=True
            )
        except (InvalidVersion, InvalidSpecifier) as e:
            logger.debug("cosign_version_unparsable", version=ver, error=str(e))
            return False
        logger.debug("cosign_version_satisfies", version=ver, range=version_range, result=ok)
        return ok
