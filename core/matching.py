"""
Matching: compare profiles and record the results as connections.

Thin orchestration over ProfileSimilarity and ConnectionStore. Feature
extraction has already happened upstream; profiles arrive with vectors.
"""

import logging
from itertools import combinations
from typing import Iterable, Optional

from core.connection_store import Connection, ConnectionStore
from core.profiles import Profile
from core.similarity import ProfileSimilarity

logger = logging.getLogger(__name__)


class MatchingService:
    """
    Args:
        store: Where connections are recorded
        similarity: Scorer (default: ProfileSimilarity() with the current date)
        keep_review: When True, a recomparison carries over the reviewer
            verdict and relationship label of the existing record
    """

    def __init__(
        self,
        store: ConnectionStore,
        similarity: Optional[ProfileSimilarity] = None,
        keep_review: bool = True,
    ):
        self.store = store
        self.similarity = similarity or ProfileSimilarity()
        self.keep_review = keep_review

    def compare_and_store(
        self,
        profile_a: Profile,
        profile_b: Profile,
        predicted_relationship: Optional[str] = None,
    ) -> Connection:
        """Score a pair and store the result (rescore when keeping review state)."""
        result = self.similarity.compare(profile_a, profile_b)

        if self.keep_review:
            return self.store.rescore(
                profile_a.profile_id,
                profile_b.profile_id,
                result,
                predicted_relationship=predicted_relationship,
            )
        return self.store.upsert(
            profile_a.profile_id,
            profile_b.profile_id,
            result,
            predicted_relationship=predicted_relationship,
        )

    def match_against(self, profile: Profile, candidates: Iterable[Profile]) -> list[Connection]:
        """
        Compare one profile against candidates (skipping itself).

        Returns: Stored connections, score descending, ties by candidate id.
        """
        connections = []
        for candidate in candidates:
            if candidate.profile_id == profile.profile_id:
                continue
            connections.append(self.compare_and_store(profile, candidate))

        connections.sort(key=lambda c: (-c.overall_score, c.other(profile.profile_id)))
        logger.info(f"Matched profile {profile.profile_id!r} against {len(connections)} candidates")
        return connections

    def match_all(self, profiles: list) -> int:
        """Compare every unordered pair once. Returns the number of pairs stored."""
        count = 0
        for profile_a, profile_b in combinations(profiles, 2):
            if profile_a.profile_id == profile_b.profile_id:
                continue
            self.compare_and_store(profile_a, profile_b)
            count += 1
        logger.info(f"Stored {count} connections for {len(profiles)} profiles")
        return count
