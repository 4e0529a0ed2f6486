"""
Feature Vector I/O.

Reads precomputed feature vectors (face descriptors, voice prints) written by
the upstream extraction pipeline as a .npy array of dicts:

    {"profile_id": 17, "vector": [...]}

Legacy face files use "face_id"/"mu" for the same two fields; both are read.
"""

import logging
from pathlib import Path

from core.errors import InvalidInput
from core.profiles import validate_profile_id, validate_vector

logger = logging.getLogger(__name__)


def load_embeddings(embeddings_path: Path) -> list[dict]:
    """
    Load raw entries from a .npy file.

    Entries are dicts, so the file is unpickled (allow_pickle=True), and
    unpickling can run arbitrary code. Only load files produced by the
    trusted extraction pipeline, never user uploads.

    Args:
        embeddings_path: Path to the .npy file

    Returns:
        List of entry dicts, or empty list if file doesn't exist
    """
    # Defer numpy import (heavy dependency)
    import numpy as np

    embeddings_path = Path(embeddings_path)

    if not embeddings_path.exists():
        return []

    loaded = np.load(embeddings_path, allow_pickle=True)
    return list(loaded)


def load_feature_vectors(embeddings_path: Path, field_name: str = "vector") -> dict:
    """
    Load a profile_id -> vector mapping.

    Entries without a vector are skipped. A later entry for the same
    profile replaces an earlier one (re-extraction appends).

    Raises:
        InvalidInput: If an entry has no id or a malformed vector
    """
    vectors = {}
    for index, entry in enumerate(load_embeddings(embeddings_path)):
        if not isinstance(entry, dict):
            raise InvalidInput(f"Entry {index} in {embeddings_path} is not a dict")

        profile_id = entry.get("profile_id", entry.get("face_id"))
        if profile_id is None:
            raise InvalidInput(f"Entry {index} in {embeddings_path} has no profile_id")
        # numpy round-trips ints as numpy scalars
        if hasattr(profile_id, "item"):
            profile_id = profile_id.item()
        validate_profile_id(profile_id)

        raw = entry.get("vector", entry.get("mu"))
        vector = validate_vector(raw, field_name)
        if vector is None:
            continue
        vectors[profile_id] = vector

    logger.info(f"Loaded {len(vectors)} {field_name} vectors from {embeddings_path}")
    return vectors
