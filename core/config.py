"""
Configuration for the KinMatch engine.

Contains:
- Storage configuration (environment-based)
- Default query budgets for match lists and connection graphs
- Scoring constants for profile similarity (calibrated values)

Storage and query config is read from environment variables with sensible defaults.
Scoring constants are fixed: changing them changes every stored score, so stored
connections must be recomputed after any edit here.
"""

import os

# =============================================================================
# Storage Configuration (from environment variables)
# =============================================================================

# When STORAGE_DIR is set (deployed volume), DATA_DIR derives from it.
STORAGE_DIR = os.getenv("STORAGE_DIR")

if STORAGE_DIR:
    DATA_DIR = os.path.join(STORAGE_DIR, "data")
else:
    DATA_DIR = os.getenv("DATA_DIR", "data")

CONNECTIONS_PATH = os.getenv("CONNECTIONS_PATH", os.path.join(DATA_DIR, "connections.json"))
PROFILES_PATH = os.getenv("PROFILES_PATH", os.path.join(DATA_DIR, "profiles.json"))

# =============================================================================
# Query Defaults (from environment variables)
# =============================================================================

# Minimum overall score (0-1) for a connection to appear in lists and graphs
DEFAULT_MIN_SCORE = float(os.getenv("MIN_SCORE", "0.5"))

# Hop budget for connection-graph expansion
DEFAULT_MAX_DEPTH = int(os.getenv("MAX_DEPTH", "3"))

# Length of ranked match lists
DEFAULT_MAX_RESULTS = int(os.getenv("MAX_RESULTS", "20"))

# =============================================================================
# Scoring Constants (do not change without recomputing stored connections)
# =============================================================================

# Euclidean distance at which facial similarity reaches 0.
# Face descriptors must be produced on a comparable scale (caller contract).
EUCLIDEAN_DISTANCE_SCALE = 10.0

# Age gap (years) at which age similarity reaches 0.
# Spans a parent/child generation gap.
AGE_GAP_SCALE_YEARS = 50

# Category weights for the overall score.
# Biometrics outweigh self-reported text; face outweighs voice.
FACIAL_WEIGHT = 0.4
VOICE_WEIGHT = 0.3
INFORMATION_WEIGHT = 0.3

# Information sub-factor weights. Only factors both profiles supply are
# included; full name is always included.
NAME_WEIGHT = 0.30
PLACE_OF_BIRTH_WEIGHT = 0.20
AGE_WEIGHT = 0.15
LANGUAGES_WEIGHT = 0.10
FAMILY_MEMBERS_WEIGHT = 0.25

# Confidence tiers from the unweighted mean of the three category scores
CONFIDENCE_HIGH = 0.8
CONFIDENCE_MEDIUM = 0.6

# Connection strength labels for graph consumers (by overall score)
STRENGTH_STRONG = 0.8
STRENGTH_MEDIUM = 0.6

# Overall score at or above which a connection counts as a high-confidence match
HIGH_MATCH_THRESHOLD = 0.8
