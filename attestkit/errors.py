"""Exception hierarchy for signing and verification operations."""

from typing import List, Optional

from .models import CosignCommandError

MANIFEST_UNKNOWN = "MANIFEST_UNKNOWN"


class AttestkitError(Exception):
    """Base class for all attestkit errors."""
    pass


class PreconditionError(AttestkitError):
    """A required tool or permission is missing."""
    pass


class OutputFormatError(AttestkitError):
    """External tool output did not have the expected shape."""
    pass


class CosignCommandFailed(AttestkitError):
    """Cosign exited with a non-zero status."""

    def __init__(
        self,
        message: str,
        errors: Optional[List[CosignCommandError]] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.errors = errors or []
        self.exit_code = exit_code

    @classmethod
    def from_errors(
        cls, command: str, errors: List[CosignCommandError], exit_code: int
    ) -> "CosignCommandFailed":
        """Build an error aggregating every structured cosign error."""
        lines = "\n".join(
            f"- [{e.code}] {e.message} : {e.detail}" for e in errors
        )
        return cls(
            f"Cosign {command} command failed with errors:\n{lines}",
            errors=errors,
            exit_code=exit_code,
        )

    @property
    def is_manifest_unknown(self) -> bool:
        """True if the registry answered that the manifest is not known yet."""
        return any(e.code == MANIFEST_UNKNOWN for e in self.errors)


class ImageToolsError(AttestkitError):
    """buildx imagetools invocation failed."""
    pass


class AttestationError(AttestkitError):
    """Attestation manifests could not be discovered."""
    pass


class ProvenanceLayoutError(AttestkitError):
    """Local export directory does not have a supported provenance layout."""
    pass


class BundleError(AttestkitError):
    """Sigstore bundle is malformed or lacks required material."""
    pass


class SigningError(AttestkitError):
    """Signing failed."""
    pass


class VerificationError(AttestkitError):
    """Signature or certificate verification failed."""
    pass
