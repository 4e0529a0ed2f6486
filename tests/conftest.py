"""Shared test fixtures for matching, store and graph tests."""

from datetime import date

import numpy as np
import pytest

from core.connection_store import ConnectionStore, JsonFileBackend, MemoryBackend
from core.profiles import FamilyMember, IdentityAttributes, Profile
from core.similarity import ProfileSimilarity, SimilarityResult, confidence_tier


# Reference date for age scoring in tests
TODAY = date(2026, 1, 1)


def make_result(score: float, facial: float = None, voice: float = None, information: float = None) -> SimilarityResult:
    """SimilarityResult with the given overall score (category scores default to it)."""
    facial = score if facial is None else facial
    voice = score if voice is None else voice
    information = score if information is None else information
    return SimilarityResult(
        facial_score=facial,
        voice_score=voice,
        information_score=information,
        overall_score=score,
        confidence_tier=confidence_tier(facial, voice, information),
        computed_at="2026-01-01T00:00:00+00:00",
    )


def make_profile(
    profile_id,
    name: str = "",
    place: str = None,
    born: date = None,
    languages=(),
    family=(),
    face=None,
    voice=None,
) -> Profile:
    """Profile with the given attributes; family is a list of (name, relationship)."""
    return Profile(
        profile_id=profile_id,
        attributes=IdentityAttributes(
            full_name=name,
            place_of_birth=place,
            date_of_birth=born,
            languages=frozenset(languages),
            family_members=tuple(FamilyMember(n, r) for n, r in family),
        ),
        face_descriptor=face,
        voice_print=voice,
    )


def random_vector(size: int = 128, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.normal(0, 0.1, size)


@pytest.fixture
def similarity():
    """ProfileSimilarity pinned to a fixed date."""
    return ProfileSimilarity(today=TODAY)


@pytest.fixture
def store():
    """In-memory connection store."""
    return ConnectionStore(MemoryBackend())


@pytest.fixture
def json_store(tmp_path):
    """Connection store backed by a JSON file in a temp directory."""
    return ConnectionStore(JsonFileBackend(tmp_path / "connections.json"))
