"""Discovery of BuildKit provenance blobs in a local export directory."""

import json
from pathlib import Path
from typing import Dict, List, Union

from .errors import ProvenanceLayoutError
from .models import Subject

PROVENANCE_FILENAME = "provenance.json"


def discover_provenance_blobs(local_export_dir: Union[str, Path]) -> Dict[str, bytes]:
    """
    Find provenance blobs written by a local exporter.

    A single-platform export has ``provenance.json`` at its root. A
    multi-platform export holds only platform subdirectories, each with its
    own ``provenance.json``.

    Args:
        local_export_dir: Local export directory

    Returns:
        Map of provenance file path to raw file content

    Raises:
        ProvenanceLayoutError: If the directory matches neither layout
    """
    root = Path(local_export_dir)

    single = root / PROVENANCE_FILENAME
    if single.exists():
        return {str(single): single.read_bytes()}

    entries = sorted(root.iterdir(), key=lambda p: p.name) if root.is_dir() else []
    folders = [e for e in entries if e.is_dir()]
    if (
        folders
        and len(folders) == len(entries)
        and all((f / PROVENANCE_FILENAME).exists() for f in folders)
    ):
        blobs = {}
        for folder in folders:
            path = folder / PROVENANCE_FILENAME
            blobs[str(path)] = path.read_bytes()
        return blobs

    raise ProvenanceLayoutError(f"No valid provenance.json found in {local_export_dir}")


def provenance_subjects(blob: bytes) -> List[Subject]:
    """
    Read the subjects of an in-toto statement.

    Raises:
        ProvenanceLayoutError: If the blob is not an in-toto statement
    """
    try:
        statement = json.loads(blob)
    except ValueError as e:
        raise ProvenanceLayoutError(f"Provenance is not valid JSON: {e}") from e

    subjects = statement.get("subject") if isinstance(statement, dict) else None
    if not isinstance(subjects, list):
        raise ProvenanceLayoutError("Provenance has no subject list")

    return [
        Subject(name=s.get("name", ""), digest=dict(s.get("digest") or {}))
        for s in subjects
        if isinstance(s, dict)
    ]
