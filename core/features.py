"""
Feature suppliers: where biometric vectors come from.

The matcher never extracts features itself. A supplier answers "what is the
face descriptor (or voice print) for this profile?" with a vector, or None
when the profile has none. Extraction backends plug in by overriding lookup().
"""

from pathlib import Path
from typing import Optional

import numpy as np

from core.embeddings_io import load_feature_vectors
from core.profiles import Profile, ProfileId, validate_vector


FACE = "face"
VOICE = "voice"


class FeatureSupplier:
    """
    Serves precomputed vectors from a profile_id -> vector mapping.

    Subclasses fix the modality.
    """

    modality: str = ""

    def __init__(self, vectors: Optional[dict] = None):
        self._vectors = dict(vectors or {})

    @classmethod
    def from_file(cls, path: Path) -> "FeatureSupplier":
        """Supplier over a .npy feature file (see core.embeddings_io)."""
        return cls(load_feature_vectors(path, field_name=f"{cls.modality} vector"))

    def supply(self, profile_id: ProfileId) -> Optional[np.ndarray]:
        """Validated vector for profile_id, or None if unavailable."""
        return validate_vector(self.lookup(profile_id), f"{self.modality} vector")

    def lookup(self, profile_id: ProfileId):
        return self._vectors.get(profile_id)

    def __len__(self) -> int:
        return len(self._vectors)


class FaceFeatureSupplier(FeatureSupplier):
    modality = FACE


class VoiceFeatureSupplier(FeatureSupplier):
    modality = VOICE


def attach_features(
    profile: Profile,
    face: Optional[FeatureSupplier] = None,
    voice: Optional[FeatureSupplier] = None,
) -> Profile:
    """
    Return a copy of profile with supplier vectors filled in.

    A supplier that has nothing for the profile leaves the existing vector
    (possibly None) in place.
    """
    if face is not None and face.modality != FACE:
        raise ValueError(f"Expected a face supplier, got {face.modality!r}")
    if voice is not None and voice.modality != VOICE:
        raise ValueError(f"Expected a voice supplier, got {voice.modality!r}")

    face_vector = face.supply(profile.profile_id) if face is not None else None
    voice_vector = voice.supply(profile.profile_id) if voice is not None else None
    return profile.with_features(face_descriptor=face_vector, voice_print=voice_vector)
