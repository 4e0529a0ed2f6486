"""
Profile Similarity: multi-factor scoring of two profiles.

Combines three category scores into one ranked score:
  facial       = euclidean_similarity(face descriptors)
  voice        = cosine_similarity(voice prints)
  information  = weighted mean over the identity sub-factors both profiles supply

  overall      = 0.4 * facial + 0.3 * voice + 0.3 * information

The confidence tier uses the plain mean of the three category scores, so it
reflects how many modalities agree rather than the ranking weights.

Missing data degrades a category to 0. Only structurally malformed input
raises (InvalidInput).
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from core.config import (
    AGE_WEIGHT,
    CONFIDENCE_HIGH,
    CONFIDENCE_MEDIUM,
    FACIAL_WEIGHT,
    FAMILY_MEMBERS_WEIGHT,
    INFORMATION_WEIGHT,
    LANGUAGES_WEIGHT,
    NAME_WEIGHT,
    PLACE_OF_BIRTH_WEIGHT,
    VOICE_WEIGHT,
)
from core.errors import InvalidInput
from core.profiles import IdentityAttributes, Profile, validate_vector
from core.vector_metrics import (
    age_similarity,
    best_pairwise_name_similarity,
    cosine_similarity,
    edit_distance_similarity,
    euclidean_similarity,
    set_overlap_similarity,
)


class ConfidenceTier(Enum):
    """How broadly the modalities corroborate a match."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class SimilarityResult:
    """Scores from comparing two profiles. Immutable once produced."""
    facial_score: float
    voice_score: float
    information_score: float
    overall_score: float
    confidence_tier: ConfidenceTier
    computed_at: str  # ISO-8601 UTC

    def to_dict(self) -> dict:
        return {
            "facial_score": self.facial_score,
            "voice_score": self.voice_score,
            "information_score": self.information_score,
            "overall_score": self.overall_score,
            "confidence_tier": self.confidence_tier.value,
            "computed_at": self.computed_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SimilarityResult":
        return cls(
            facial_score=float(data["facial_score"]),
            voice_score=float(data["voice_score"]),
            information_score=float(data["information_score"]),
            overall_score=float(data["overall_score"]),
            confidence_tier=ConfidenceTier(data["confidence_tier"]),
            computed_at=data["computed_at"],
        )


def confidence_tier(facial: float, voice: float, information: float) -> ConfidenceTier:
    """Tier from the unweighted mean of the three category scores."""
    mean = (facial + voice + information) / 3
    if mean >= CONFIDENCE_HIGH:
        return ConfidenceTier.HIGH
    if mean >= CONFIDENCE_MEDIUM:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


def place_similarity(place_a: str, place_b: str) -> float:
    """Edit-distance similarity, with a case-insensitive exact match scoring 1.0."""
    if place_a.lower() == place_b.lower():
        return 1.0
    return edit_distance_similarity(place_a, place_b)


class ProfileSimilarity:
    """
    Scores pairs of profiles.

    Args:
        today: Reference date for ages. Defaults to the current date at each
            comparison; pin it for reproducible batch runs.
    """

    def __init__(self, today: Optional[date] = None):
        self.today = today

    def compare(self, profile_a: Profile, profile_b: Profile) -> SimilarityResult:
        """
        Compare two profiles.

        Raises:
            InvalidInput: If either argument is not a Profile or carries a
                malformed feature vector
        """
        _check_profile(profile_a)
        _check_profile(profile_b)

        face_a = validate_vector(profile_a.face_descriptor, "face_descriptor")
        face_b = validate_vector(profile_b.face_descriptor, "face_descriptor")
        voice_a = validate_vector(profile_a.voice_print, "voice_print")
        voice_b = validate_vector(profile_b.voice_print, "voice_print")

        facial = euclidean_similarity(face_a, face_b)
        voice = cosine_similarity(voice_a, voice_b)
        information = self.information_score(profile_a.attributes, profile_b.attributes)

        overall = (
            facial * FACIAL_WEIGHT
            + voice * VOICE_WEIGHT
            + information * INFORMATION_WEIGHT
        )

        return SimilarityResult(
            facial_score=facial,
            voice_score=voice,
            information_score=information,
            overall_score=overall,
            confidence_tier=confidence_tier(facial, voice, information),
            computed_at=datetime.now(timezone.utc).isoformat(),
        )

    def information_score(self, attrs_a: IdentityAttributes, attrs_b: IdentityAttributes) -> float:
        """Weighted mean over the included sub-factors (0.0 if none)."""
        breakdown = self.explain_attributes(attrs_a, attrs_b)
        total_weight = sum(weight for weight, _ in breakdown.values())
        if total_weight <= 0:
            return 0.0
        score = sum(weight * sub for weight, sub in breakdown.values())
        return score / total_weight

    def explain(self, profile_a: Profile, profile_b: Profile) -> dict:
        """Per-factor (weight, score) breakdown of the information score."""
        _check_profile(profile_a)
        _check_profile(profile_b)
        return self.explain_attributes(profile_a.attributes, profile_b.attributes)

    def explain_attributes(self, attrs_a: IdentityAttributes, attrs_b: IdentityAttributes) -> dict:
        if not isinstance(attrs_a, IdentityAttributes) or not isinstance(attrs_b, IdentityAttributes):
            raise InvalidInput("Profile attributes must be IdentityAttributes")

        # Full name is always attempted; a missing name scores 0 but still counts
        breakdown = {
            "full_name": (
                NAME_WEIGHT,
                edit_distance_similarity(attrs_a.full_name or "", attrs_b.full_name or ""),
            ),
        }

        if attrs_a.place_of_birth and attrs_b.place_of_birth:
            breakdown["place_of_birth"] = (
                PLACE_OF_BIRTH_WEIGHT,
                place_similarity(attrs_a.place_of_birth, attrs_b.place_of_birth),
            )

        if attrs_a.date_of_birth and attrs_b.date_of_birth:
            breakdown["age"] = (
                AGE_WEIGHT,
                age_similarity(attrs_a.date_of_birth, attrs_b.date_of_birth, today=self.today),
            )

        if attrs_a.languages and attrs_b.languages:
            breakdown["languages"] = (
                LANGUAGES_WEIGHT,
                set_overlap_similarity(attrs_a.languages, attrs_b.languages),
            )

        names_a = attrs_a.family_member_names
        names_b = attrs_b.family_member_names
        if names_a and names_b:
            breakdown["family_members"] = (
                FAMILY_MEMBERS_WEIGHT,
                best_pairwise_name_similarity(names_a, names_b),
            )

        return breakdown


def _check_profile(profile) -> None:
    if not isinstance(profile, Profile):
        raise InvalidInput(f"Expected a Profile, got {type(profile).__name__}")
