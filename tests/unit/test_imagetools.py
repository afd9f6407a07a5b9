"""Unit tests for imagetools.py module."""

import json
import pytest
from unittest.mock import patch

from attestkit.errors import AttestationError, ImageToolsError, OutputFormatError
from attestkit.imagetools import ImageTools
from attestkit.models import Descriptor, ManifestList, Platform


class TestImageToolsCommand:
    """Tests for command construction."""

    def test_default_command(self):
        """Test the docker buildx plugin is used by default."""
        assert ImageTools().get_inspect_command(["ref"]) == [
            "docker", "buildx", "imagetools", "inspect", "ref",
        ]

    def test_standalone_command(self):
        """Test a standalone buildx binary can be used."""
        assert ImageTools(["buildx"]).get_command(["create"]) == ["buildx", "imagetools", "create"]


class TestInspect:
    """Tests for inspect_manifest and inspect_image."""

    @patch("attestkit.imagetools.subprocess.run")
    def test_inspect_manifest_list(self, mock_run, completed_process, manifest_list_json):
        """Test an index is parsed into a ManifestList."""
        mock_run.return_value = completed_process(0, manifest_list_json)

        manifest = ImageTools().inspect_manifest("docker.io/org/app@sha256:idx")

        assert isinstance(manifest, ManifestList)
        assert manifest.schema_version == 2
        assert [m.digest for m in manifest.manifests] == [
            "sha256:aaa", "sha256:bbb", "sha256:ccc", "sha256:ddd", "sha256:eee",
        ]
        assert manifest.manifests[1].platform == Platform("linux", "arm64", "v8")
        cmd = mock_run.call_args[0][0]
        assert cmd[-3:] == ["docker.io/org/app@sha256:idx", "--format", "{{json .Manifest}}"]

    @patch("attestkit.imagetools.subprocess.run")
    def test_inspect_single_manifest(self, mock_run, completed_process):
        """Test a single manifest is parsed into a Descriptor."""
        mock_run.return_value = completed_process(0, json.dumps({
            "mediaType": "application/vnd.oci.image.manifest.v1+json",
            "digest": "sha256:aaa",
            "size": 481,
        }))

        manifest = ImageTools().inspect_manifest("docker.io/org/app:latest")

        assert isinstance(manifest, Descriptor)
        assert manifest.digest == "sha256:aaa"

    @patch("attestkit.imagetools.subprocess.run")
    def test_inspect_manifest_not_an_object(self, mock_run, completed_process):
        """Test a JSON value other than an object is rejected."""
        mock_run.return_value = completed_process(0, "[1, 2]")

        with pytest.raises(OutputFormatError, match="Unexpected output format"):
            ImageTools().inspect_manifest("ref")

    @patch("attestkit.imagetools.subprocess.run")
    def test_inspect_manifest_bad_manifests(self, mock_run, completed_process):
        """Test a manifests field that is not a list is rejected."""
        mock_run.return_value = completed_process(0, '{"manifests": "nope"}')

        with pytest.raises(OutputFormatError):
            ImageTools().inspect_manifest("ref")

    @patch("attestkit.imagetools.subprocess.run")
    def test_inspect_failure_carries_stderr(self, mock_run, completed_process):
        """Test a failing inspect raises with stderr."""
        mock_run.return_value = completed_process(
            1, stderr="ERROR: docker.io/org/app:nope: not found\n"
        )

        with pytest.raises(ImageToolsError, match="not found"):
            ImageTools().inspect_manifest("docker.io/org/app:nope")

    @patch("attestkit.imagetools.subprocess.run")
    def test_inspect_image_multi_platform(self, mock_run, completed_process):
        """Test image configs of a multi-platform reference are keyed by platform."""
        mock_run.return_value = completed_process(0, json.dumps({
            "linux/amd64": {"architecture": "amd64", "os": "linux", "config": {}},
            "linux/arm64": {"architecture": "arm64", "os": "linux", "config": {}},
        }))

        image = ImageTools().inspect_image("ref")

        assert set(image) == {"linux/amd64", "linux/arm64"}
        assert mock_run.call_args[0][0][-1] == "{{json .Image}}"


class TestAttestationDescriptors:
    """Tests for attestation discovery."""

    @pytest.fixture
    def imagetools(self, mocker, completed_process, manifest_list_json):
        mocker.patch(
            "attestkit.imagetools.subprocess.run",
            return_value=completed_process(0, manifest_list_json),
        )
        return ImageTools()

    def test_all_attestations(self, imagetools):
        """Test attestation manifests are found by annotation, in index order."""
        assert imagetools.attestation_digests("ref") == ["sha256:ccc", "sha256:ddd", "sha256:eee"]

    def test_platform_match(self, imagetools):
        """Test only the attestation of the requested platform is returned."""
        assert imagetools.attestation_digests("ref", "linux/amd64") == ["sha256:ccc"]

    def test_platform_variant(self, imagetools):
        """Test variants are part of the platform match."""
        assert imagetools.attestation_digests("ref", Platform("linux", "arm64", "v8")) == ["sha256:ddd"]
        assert imagetools.attestation_digests("ref", "linux/arm64") == []

    def test_platform_without_match(self, imagetools):
        """Test an unknown platform yields no attestations."""
        assert imagetools.attestation_digests("ref", "windows/amd64") == []

    @patch("attestkit.imagetools.subprocess.run")
    def test_single_platform_scenario(self, mock_run, completed_process):
        """Test the amd64 attestation is found and arm64 finds nothing."""
        mock_run.return_value = completed_process(0, json.dumps({
            "schemaVersion": 2,
            "mediaType": "application/vnd.oci.image.index.v1+json",
            "manifests": [
                {
                    "mediaType": "application/vnd.oci.image.manifest.v1+json",
                    "digest": "sha256:aaa",
                    "size": 1,
                    "platform": {"os": "linux", "architecture": "amd64"},
                },
                {
                    "mediaType": "application/vnd.oci.image.manifest.v1+json",
                    "digest": "sha256:att",
                    "size": 1,
                    "annotations": {
                        "vnd.docker.reference.type": "attestation-manifest",
                        "vnd.docker.reference.digest": "sha256:aaa",
                    },
                },
            ],
        }))
        imagetools = ImageTools()

        amd64 = imagetools.attestation_descriptors("ref", "linux/amd64")
        arm64 = imagetools.attestation_descriptors("ref", "linux/arm64")

        assert [d.digest for d in amd64] == ["sha256:att"]
        assert arm64 == []

    @patch("attestkit.imagetools.subprocess.run")
    def test_media_type_alone_is_not_an_attestation(self, mock_run, completed_process):
        """Test manifests without the reference-type annotation are not attestations."""
        mock_run.return_value = completed_process(0, json.dumps({
            "manifests": [
                {"mediaType": "application/vnd.in-toto+json", "digest": "sha256:x", "size": 1},
            ],
        }))

        assert ImageTools().attestation_digests("ref") == []

    @patch("attestkit.imagetools.subprocess.run")
    def test_single_manifest_raises(self, mock_run, completed_process):
        """Test a reference that is not an index has no attestations."""
        mock_run.return_value = completed_process(0, json.dumps({
            "mediaType": "application/vnd.oci.image.manifest.v1+json",
            "digest": "sha256:aaa",
            "size": 1,
        }))

        with pytest.raises(AttestationError, match="No attestation descriptors found for ref"):
            ImageTools().attestation_descriptors("ref")
