"""Data model for signing results, cosign output and OCI descriptors."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

FULCIO_URL = "https://fulcio.sigstore.dev"
REKOR_URL = "https://rekor.sigstore.dev"
TSASERVER_URL = "https://timestamp.sigstore.dev"
SEARCH_URL = "https://search.sigstore.dev"

TSA_TIMESTAMP_PATH = "/api/v1/timestamp"

GITHUB_OIDC_ISSUER = "https://token.actions.githubusercontent.com"

# https://github.com/in-toto/in-toto-golang/blob/dd6278764ab1dae7301609c7510129888e2fd569/in_toto/envelope.go#L17
INTOTO_PAYLOAD_TYPE = "application/vnd.in-toto+json"

BUNDLE_V01_MEDIA_TYPE = "application/vnd.dev.sigstore.bundle+json;version=0.1"
BUNDLE_V02_MEDIA_TYPE = "application/vnd.dev.sigstore.bundle+json;version=0.2"
BUNDLE_V03_MEDIA_TYPE = "application/vnd.dev.sigstore.bundle.v0.3+json"

OCI_EMPTY_JSON_MEDIA_TYPE = "application/vnd.oci.empty.v1+json"

ANNOTATION_REFERENCE_TYPE = "vnd.docker.reference.type"
ANNOTATION_REFERENCE_DIGEST = "vnd.docker.reference.digest"
ATTESTATION_MANIFEST = "attestation-manifest"


@dataclass
class Endpoints:
    """Sigstore service endpoints. No rekor_url means no transparency log."""

    fulcio_url: str = FULCIO_URL
    rekor_url: Optional[str] = REKOR_URL
    tsa_server_url: Optional[str] = TSASERVER_URL

    @property
    def tsa_timestamp_url(self) -> Optional[str]:
        """RFC 3161 endpoint of the timestamp authority."""
        if not self.tsa_server_url:
            return None
        base = self.tsa_server_url.rstrip("/")
        if base.endswith(TSA_TIMESTAMP_PATH):
            return base
        return base + TSA_TIMESTAMP_PATH


@dataclass
class Subject:
    """Artifact named by an in-toto statement."""

    name: str
    digest: Dict[str, str]

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "digest": dict(self.digest)}


@dataclass
class SignedBundle:
    """Sigstore bundle with its signing certificate extracted."""

    payload: Dict[str, Any]  # serialized bundle JSON
    certificate: str  # PEM encoded leaf certificate
    tlog_id: Optional[str] = None  # transparency log index, if witnessed

    def to_dict(self) -> Dict[str, Any]:
        result = {"payload": self.payload, "certificate": self.certificate}
        if self.tlog_id is not None:
            result["tlogID"] = self.tlog_id
        return result


@dataclass
class VerifiedBundle(SignedBundle):
    """Bundle that passed library-mode verification."""
    pass


@dataclass
class AttestationSignResult(SignedBundle):
    """Result of signing an attestation manifest in a registry."""

    image_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["imageName"] = self.image_name
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttestationSignResult":
        return cls(
            payload=data["payload"],
            certificate=data["certificate"],
            tlog_id=data.get("tlogID"),
            image_name=data.get("imageName", ""),
        )


@dataclass
class ProvenanceSignResult(SignedBundle):
    """Result of signing a local provenance blob."""

    bundle_path: str = ""
    subjects: List[Subject] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["bundlePath"] = self.bundle_path
        result["subjects"] = [s.to_dict() for s in self.subjects]
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProvenanceSignResult":
        return cls(
            payload=data["payload"],
            certificate=data["certificate"],
            tlog_id=data.get("tlogID"),
            bundle_path=data.get("bundlePath", ""),
            subjects=[
                Subject(name=s["name"], digest=dict(s.get("digest") or {}))
                for s in data.get("subjects", [])
            ],
        )


@dataclass
class CosignCommandError:
    """Structured error printed by cosign (registry error format)."""

    code: str
    message: str = ""
    detail: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CosignCommandError":
        detail = data.get("detail", "")
        if not isinstance(detail, str):
            detail = str(detail)
        return cls(
            code=str(data.get("code", "")),
            message=str(data.get("message", "")),
            detail=detail,
        )


@dataclass
class CosignCommandResult:
    """Structured view of a single cosign invocation's output."""

    bundle: Optional[Dict[str, Any]] = None
    signature_manifest_digest: Optional[str] = None
    errors: List[CosignCommandError] = field(default_factory=list)


@dataclass
class VerifyManifestResult:
    """Result of verifying a signed attestation manifest."""

    cosign_args: List[str]
    signature_manifest_digest: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cosignArgs": list(self.cosign_args),
            "signatureManifestDigest": self.signature_manifest_digest,
        }


@dataclass
class VerifyArtifactResult:
    """Result of verifying a local artifact against its bundle with cosign."""

    bundle_path: str
    cosign_args: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"bundlePath": self.bundle_path, "cosignArgs": list(self.cosign_args)}


@dataclass
class Platform:
    """OCI platform triple (plus optional OS details)."""

    os: str
    architecture: str
    variant: Optional[str] = None
    os_version: Optional[str] = None
    os_features: List[str] = field(default_factory=list)

    @classmethod
    def parse(cls, value: str) -> "Platform":
        """Parse an ``os/arch[/variant]`` string."""
        parts = value.strip().split("/")
        if len(parts) < 2 or len(parts) > 3 or not all(parts):
            raise ValueError(f"Invalid platform: {value!r}")
        return cls(
            os=parts[0],
            architecture=parts[1],
            variant=parts[2] if len(parts) == 3 else None,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Platform":
        return cls(
            os=data.get("os", ""),
            architecture=data.get("architecture", ""),
            variant=data.get("variant"),
            os_version=data.get("os.version"),
            os_features=list(data.get("os.features", [])),
        )

    def matches(self, other: "Platform") -> bool:
        """Compare (os, architecture, variant) with a missing variant as ''."""
        return (
            self.os == other.os
            and self.architecture == other.architecture
            and (self.variant or "") == (other.variant or "")
        )

    def __str__(self) -> str:
        if self.variant:
            return f"{self.os}/{self.architecture}/{self.variant}"
        return f"{self.os}/{self.architecture}"


@dataclass
class Descriptor:
    """OCI content descriptor."""

    media_type: str
    digest: str
    size: int
    annotations: Dict[str, str] = field(default_factory=dict)
    platform: Optional[Platform] = None
    artifact_type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Descriptor":
        platform = data.get("platform")
        return cls(
            media_type=data.get("mediaType", ""),
            digest=data.get("digest", ""),
            size=int(data.get("size", 0)),
            annotations=dict(data.get("annotations") or {}),
            platform=Platform.from_dict(platform) if platform else None,
            artifact_type=data.get("artifactType"),
        )

    @property
    def is_attestation_manifest(self) -> bool:
        return self.annotations.get(ANNOTATION_REFERENCE_TYPE) == ATTESTATION_MANIFEST

    @property
    def reference_digest(self) -> Optional[str]:
        return self.annotations.get(ANNOTATION_REFERENCE_DIGEST)


@dataclass
class ManifestList:
    """OCI image index / Docker manifest list."""

    media_type: str
    manifests: List[Descriptor]
    schema_version: int = 2
    annotations: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManifestList":
        return cls(
            media_type=data.get("mediaType", ""),
            manifests=[Descriptor.from_dict(m) for m in data.get("manifests") or []],
            schema_version=int(data.get("schemaVersion", 2)),
            annotations=dict(data.get("annotations") or {}),
        )
