"""
Vector and attribute similarity metrics.

Pure, stateless scoring functions. Every function returns a float in [0, 1]
and never raises: absent, empty or incomparable inputs score 0.0.

Input validation (non-finite entries, wrong types) is the job of
core.similarity.ProfileSimilarity, which raises InvalidInput before any
metric runs. Here malformed input simply scores 0.0.
"""

from datetime import date
from typing import Iterable, Optional, Sequence

import numpy as np
from scipy.spatial.distance import euclidean

from core.config import AGE_GAP_SCALE_YEARS, EUCLIDEAN_DISTANCE_SCALE


def _as_vector(values) -> Optional[np.ndarray]:
    """Coerce a numeric sequence to a finite 1-D float array, or None if that is not possible."""
    if values is None or isinstance(values, (str, bytes)):
        return None
    try:
        arr = np.asarray(values)
    except (TypeError, ValueError):
        return None
    if arr.ndim != 1 or arr.size == 0 or arr.dtype.kind not in "iuf":
        return None
    vec = arr.astype(np.float64)
    if not np.all(np.isfinite(vec)):
        return None
    return vec


def _comparable_pair(a, b) -> Optional[tuple[np.ndarray, np.ndarray]]:
    vec_a = _as_vector(a)
    vec_b = _as_vector(b)
    if vec_a is None or vec_b is None:
        return None
    if vec_a.shape != vec_b.shape:
        return None
    return vec_a, vec_b


def euclidean_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """
    Similarity from Euclidean distance: max(0, 1 - d / EUCLIDEAN_DISTANCE_SCALE).

    Returns 0.0 for absent vectors or vectors of different lengths.
    """
    pair = _comparable_pair(a, b)
    if pair is None:
        return 0.0
    distance = float(euclidean(pair[0], pair[1]))
    return max(0.0, 1.0 - distance / EUCLIDEAN_DISTANCE_SCALE)


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """
    Cosine similarity clamped at 0 (opposed vectors are dissimilar, not negatively similar).

    Returns 0.0 for absent vectors, different lengths, or a zero-norm vector.
    """
    pair = _comparable_pair(a, b)
    if pair is None:
        return 0.0
    vec_a, vec_b = pair
    norm_a = float(np.linalg.norm(vec_a))
    norm_b = float(np.linalg.norm(vec_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    cos = float(np.dot(vec_a, vec_b)) / (norm_a * norm_b)
    # Rounding can push identical vectors a hair past 1
    return min(1.0, max(0.0, cos))


def levenshtein_distance(s1: str, s2: str) -> int:
    """Compute Levenshtein edit distance between two strings."""
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)
    if len(s2) == 0:
        return len(s1)

    prev_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        curr_row = [i + 1]
        for j, c2 in enumerate(s2):
            cost = 0 if c1 == c2 else 1
            curr_row.append(min(
                curr_row[j] + 1,        # insert
                prev_row[j + 1] + 1,    # delete
                prev_row[j] + cost,     # substitute
            ))
        prev_row = curr_row
    return prev_row[-1]


def edit_distance_similarity(s1: Optional[str], s2: Optional[str]) -> float:
    """Case-insensitive Levenshtein similarity normalized by the longer length."""
    if not isinstance(s1, str) or not isinstance(s2, str):
        return 0.0
    if not s1 or not s2:
        return 0.0
    # Normalize by the original lengths; lowercasing can lengthen a string ("İ" -> "i̇")
    max_len = max(len(s1), len(s2))
    distance = levenshtein_distance(s1.lower(), s2.lower())
    return max(0.0, 1.0 - distance / max_len)


def set_overlap_similarity(set_a: Optional[Iterable], set_b: Optional[Iterable]) -> float:
    """Jaccard index |A & B| / |A | B|. Returns 0.0 if either side is empty."""
    if not set_a or not set_b:
        return 0.0
    a = set(set_a)
    b = set(set_b)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def age_similarity(
    date_a: Optional[date],
    date_b: Optional[date],
    today: Optional[date] = None,
) -> float:
    """
    Similarity of two ages: max(0, 1 - age_gap / AGE_GAP_SCALE_YEARS).

    Ages are whole years as of `today` (default: the current date), counted
    from the birth year. Returns 0.0 if either date is absent.
    """
    if not isinstance(date_a, date) or not isinstance(date_b, date):
        return 0.0
    if today is None:
        today = date.today()
    age_a = today.year - date_a.year
    age_b = today.year - date_b.year
    age_gap = abs(age_a - age_b)
    return max(0.0, 1.0 - age_gap / AGE_GAP_SCALE_YEARS)


def best_pairwise_name_similarity(names_a: Optional[Iterable[str]], names_b: Optional[Iterable[str]]) -> float:
    """Best edit-distance similarity over all cross-pairs of non-empty names."""
    if not names_a or not names_b:
        return 0.0
    left = [n for n in names_a if n]
    right = [n for n in names_b if n]

    best = 0.0
    for n1 in left:
        for n2 in right:
            best = max(best, edit_distance_similarity(n1, n2))
    return best
