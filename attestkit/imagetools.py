"""Attestation discovery through ``docker buildx imagetools``."""

import json
import subprocess
from typing import Any, Dict, List, Optional, Sequence, Union

from .errors import AttestationError, ImageToolsError, OutputFormatError
from .logging import get_logger
from .models import Descriptor, ManifestList, Platform

logger = get_logger(__name__)

DEFAULT_COMMAND = ("docker", "buildx")


class ImageTools:
    """Reads manifests and image configs from a registry via buildx."""

    def __init__(self, command: Optional[Sequence[str]] = None):
        """
        Initialize with the buildx command prefix.

        Args:
            command: Command prefix, ``["docker", "buildx"]`` by default or
                ``["buildx"]`` for a standalone binary
        """
        self.command = list(command or DEFAULT_COMMAND)

    def get_command(self, args: List[str]) -> List[str]:
        return [*self.command, "imagetools", *args]

    def get_inspect_command(self, args: List[str]) -> List[str]:
        return self.get_command(["inspect", *args])

    def _inspect_json(self, name: str, template: str) -> Dict[str, Any]:
        cmd = self.get_inspect_command([name, "--format", template])
        logger.debug("imagetools_inspect", command=cmd)
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            raise ImageToolsError(
                result.stderr.strip()
                or f"imagetools inspect {name} exited with code {result.returncode}"
            )
        try:
            parsed = json.loads(result.stdout)
        except ValueError as e:
            raise OutputFormatError(f"Unexpected output format: {e}") from e
        if not isinstance(parsed, dict):
            raise OutputFormatError("Unexpected output format")
        return parsed

    def inspect_image(self, name: str) -> Union[Dict[str, Dict[str, Any]], Dict[str, Any]]:
        """
        Get the image config of a reference.

        Returns:
            A single image config (has ``config``), or a map of platform to
            image config for multi-platform references
        """
        return self._inspect_json(name, "{{json .Image}}")

    def inspect_manifest(self, name: str) -> Union[ManifestList, Descriptor]:
        """
        Get the raw manifest of a reference.

        Returns:
            ManifestList when the reference is an index, else a Descriptor
        """
        parsed = self._inspect_json(name, "{{json .Manifest}}")
        if "manifests" in parsed:
            if not isinstance(parsed["manifests"], list):
                raise OutputFormatError("Unexpected output format")
            return ManifestList.from_dict(parsed)
        return Descriptor.from_dict(parsed)

    def attestation_descriptors(
        self, name: str, platform: Optional[Union[Platform, str]] = None
    ) -> List[Descriptor]:
        """
        Find attestation manifests attached to an image index.

        Args:
            name: Image reference (usually ``name@digest``)
            platform: Only keep attestations of the manifest for this platform

        Returns:
            Attestation manifest descriptors in index order
        """
        manifest = self.inspect_manifest(name)
        if not isinstance(manifest, ManifestList):
            raise AttestationError(f"No attestation descriptors found for {name}")

        attestations = [m for m in manifest.manifests if m.is_attestation_manifest]
        if platform is None:
            return attestations

        if isinstance(platform, str):
            platform = Platform.parse(platform)

        by_digest = {m.digest: m for m in manifest.manifests}
        result = []
        for attestation in attestations:
            ref = by_digest.get(attestation.reference_digest or "")
            # not every referrer points at a platform manifest
            if ref is None or ref.platform is None:
                continue
            if ref.platform.matches(platform):
                result.append(attestation)
        return result

    def attestation_digests(
        self, name: str, platform: Optional[Union[Platform, str]] = None
    ) -> List[str]:
        """Digests of the attestation manifests of ``name``."""
        return [d.digest for d in self.attestation_descriptors(name, platform)]
