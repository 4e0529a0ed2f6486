"""
Connection Store: one durable record per unordered pair of profiles.

Key principles:
- Canonical key: (min(id_a, id_b), max(id_a, id_b)), so get(a, b) == get(b, a)
- Upsert, never append: a recomparison replaces the stored record entirely
- Single writer per pair: upserts to the same pair are serialized, so the
  stored record is always one complete write (last writer wins, no field merge)
- Explicit backend handle: no module-level database state

Backends:
- MemoryBackend: in-process dict (tests, batch jobs)
- JsonFileBackend: JSON document with portalocker locking, temp file,
  fsync and atomic rename
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import portalocker

from core.config import HIGH_MATCH_THRESHOLD, STRENGTH_MEDIUM, STRENGTH_STRONG
from core.errors import InvalidInput, StoreUnavailable
from core.profiles import ProfileId, validate_profile_id
from core.similarity import SimilarityResult

logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1

# Lock stripes per ConnectionStore for serializing same-pair writes
PAIR_LOCK_STRIPES = 64


class ConnectionType(Enum):
    """Human review state of a connection."""
    POTENTIAL = "potential"  # Machine-proposed, not yet reviewed
    VERIFIED = "verified"    # Confirmed by a reviewer
    REJECTED = "rejected"    # Dismissed by a reviewer


def canonical_key(id_a: ProfileId, id_b: ProfileId) -> tuple:
    """
    Order a pair of identifiers so the smaller one comes first.

    Raises:
        InvalidInput: If the ids are invalid, of incomparable types, or equal
    """
    validate_profile_id(id_a)
    validate_profile_id(id_b)
    if type(id_a) is not type(id_b):
        raise InvalidInput(
            f"Cannot order identifiers of different types: {id_a!r} and {id_b!r}"
        )
    if id_a == id_b:
        raise InvalidInput(f"A connection needs two distinct profiles, got {id_a!r} twice")
    return (id_a, id_b) if id_a < id_b else (id_b, id_a)


def _parse_connection_type(value) -> ConnectionType:
    if value is None:
        return ConnectionType.POTENTIAL
    if isinstance(value, ConnectionType):
        return value
    try:
        return ConnectionType(value)
    except ValueError as e:
        raise InvalidInput(f"Unknown connection type: {value!r}") from e


@dataclass(frozen=True)
class Connection:
    """Stored edge between two profiles, keyed by the canonical pair."""
    id_a: ProfileId
    id_b: ProfileId
    result: SimilarityResult
    connection_type: ConnectionType = ConnectionType.POTENTIAL
    predicted_relationship: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def key(self) -> tuple:
        return (self.id_a, self.id_b)

    @property
    def overall_score(self) -> float:
        return self.result.overall_score

    @property
    def score_percent(self) -> int:
        """Overall score as a rounded 0-100 value for ranked lists."""
        return round(self.result.overall_score * 100)

    @property
    def strength(self) -> str:
        score = self.result.overall_score
        if score >= STRENGTH_STRONG:
            return "strong"
        if score >= STRENGTH_MEDIUM:
            return "medium"
        return "weak"

    def touches(self, profile_id: ProfileId) -> bool:
        return profile_id == self.id_a or profile_id == self.id_b

    def other(self, profile_id: ProfileId) -> ProfileId:
        """The counterpart of profile_id on this edge."""
        if profile_id == self.id_a:
            return self.id_b
        if profile_id == self.id_b:
            return self.id_a
        raise KeyError(f"Profile {profile_id!r} is not an endpoint of {self.key}")

    def to_dict(self) -> dict:
        return {
            "id_a": self.id_a,
            "id_b": self.id_b,
            "result": self.result.to_dict(),
            "connection_type": self.connection_type.value,
            "predicted_relationship": self.predicted_relationship,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Connection":
        id_a, id_b = canonical_key(data["id_a"], data["id_b"])
        return cls(
            id_a=id_a,
            id_b=id_b,
            result=SimilarityResult.from_dict(data["result"]),
            connection_type=_parse_connection_type(data.get("connection_type")),
            predicted_relationship=data.get("predicted_relationship"),
            updated_at=data.get("updated_at"),
        )


# =============================================================================
# Backends
# =============================================================================

class ConnectionBackend:
    """Persistence interface: at most one record per canonical key."""

    def read(self, key: tuple) -> Optional[dict]:
        raise NotImplementedError

    def write(self, key: tuple, record: dict) -> None:
        raise NotImplementedError

    def records_touching(self, profile_id: ProfileId) -> list[dict]:
        raise NotImplementedError

    def all_records(self) -> list[dict]:
        raise NotImplementedError


class MemoryBackend(ConnectionBackend):
    """In-process backend. The lock only guards the dict structure."""

    def __init__(self):
        self._records: dict[tuple, dict] = {}
        self._lock = threading.Lock()

    def read(self, key: tuple) -> Optional[dict]:
        with self._lock:
            record = self._records.get(key)
        return dict(record) if record is not None else None

    def write(self, key: tuple, record: dict) -> None:
        with self._lock:
            self._records[key] = dict(record)

    def records_touching(self, profile_id: ProfileId) -> list[dict]:
        with self._lock:
            return [dict(r) for k, r in self._records.items() if profile_id in k]

    def all_records(self) -> list[dict]:
        with self._lock:
            return [dict(r) for r in self._records.values()]


class JsonFileBackend(ConnectionBackend):
    """
    Durable backend over a single JSON document.

    Guarantees:
    - Atomic: writes go to a temp file, are fsynced, then renamed over the target
    - Locked: an exclusive lock covers read-modify-write, so writers in other
      processes are serialized too; readers take a shared lock
    - Failures (I/O, locking, corrupted JSON) raise StoreUnavailable
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.lock_path = self.path.with_suffix(".lock")
        self.temp_path = self.path.with_suffix(".tmp")

    def read(self, key: tuple) -> Optional[dict]:
        return self._load_locked().get(key)

    def write(self, key: tuple, record: dict) -> None:
        """
        Replace the record for key.

        Single Writer Boundary: ALL writes flow through this method.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.lock_path.touch(exist_ok=True)

            with open(self.lock_path, "r+") as lock_file:
                portalocker.lock(lock_file, portalocker.LOCK_EX)
                try:
                    records = self._load()
                    records[key] = record
                    self._atomic_write(records)
                finally:
                    portalocker.unlock(lock_file)
        except (OSError, portalocker.exceptions.BaseLockException) as e:
            raise StoreUnavailable(f"Could not write connection {key} to {self.path}: {e}") from e

        logger.debug(f"Wrote connection {key} to {self.path} ({len(records)} connections)")

    def records_touching(self, profile_id: ProfileId) -> list[dict]:
        return [r for k, r in self._load_locked().items() if profile_id in k]

    def all_records(self) -> list[dict]:
        return list(self._load_locked().values())

    def _load_locked(self) -> dict[tuple, dict]:
        """Load under a shared lock so a reader never sees a half-replaced file."""
        if not self.path.exists():
            return {}
        try:
            self.lock_path.touch(exist_ok=True)
            with open(self.lock_path, "r+") as lock_file:
                portalocker.lock(lock_file, portalocker.LOCK_SH)
                try:
                    return self._load()
                finally:
                    portalocker.unlock(lock_file)
        except (OSError, portalocker.exceptions.BaseLockException) as e:
            raise StoreUnavailable(f"Could not read connections from {self.path}: {e}") from e

    def _load(self) -> dict[tuple, dict]:
        """Load the document. Caller holds the lock."""
        if not self.path.exists():
            return {}

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StoreUnavailable(f"Connection store is corrupted ({self.path}): {e}") from e

        if not isinstance(data, dict):
            raise StoreUnavailable(
                f"Connection store is corrupted ({self.path}): expected an object, "
                f"got {type(data).__name__}"
            )
        if data.get("schema_version") != SCHEMA_VERSION:
            raise StoreUnavailable(
                f"Connection store schema version mismatch: expected {SCHEMA_VERSION}, "
                f"got {data.get('schema_version')}"
            )

        connections = data.get("connections", [])
        if not isinstance(connections, list):
            raise StoreUnavailable(f"Connection store is corrupted ({self.path}): connections is not a list")

        records = {}
        for index, record in enumerate(connections):
            try:
                # Full parse so a damaged record fails here, not in a later reader
                connection = Connection.from_dict(record)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise StoreUnavailable(
                    f"Connection store is corrupted ({self.path}): bad record {index}: {e!r}"
                ) from e
            records[connection.key] = record
        return records

    def _atomic_write(self, records: dict[tuple, dict]) -> None:
        data = {
            "schema_version": SCHEMA_VERSION,
            "connections": list(records.values()),
        }
        with open(self.temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())

        os.rename(self.temp_path, self.path)


# =============================================================================
# Store
# =============================================================================

class ConnectionStore:
    """
    Pairwise connection persistence over an explicit backend.

    Reads take no pair lock; they may observe either side of an in-flight
    write to an unrelated pair.

    Pair locks are striped: a fixed pool of PAIR_LOCK_STRIPES locks, picked
    by hash of the canonical key. Two pairs may share a stripe (and wait on
    each other), but memory stays constant however many pairs are written.
    """

    def __init__(self, backend: ConnectionBackend):
        self.backend = backend
        self._pair_locks = [threading.Lock() for _ in range(PAIR_LOCK_STRIPES)]

    @classmethod
    def open(cls, path: Union[str, Path]) -> "ConnectionStore":
        """Store backed by a JSON file at path."""
        return cls(JsonFileBackend(path))

    def _pair_lock(self, key: tuple) -> threading.Lock:
        return self._pair_locks[hash(key) % len(self._pair_locks)]

    def upsert(
        self,
        id_a: ProfileId,
        id_b: ProfileId,
        result: SimilarityResult,
        connection_type: Union[ConnectionType, str, None] = None,
        predicted_relationship: Optional[str] = None,
    ) -> Connection:
        """
        Store the latest result for a pair, replacing any previous record.

        Args:
            id_a, id_b: Profile ids in either order
            result: Similarity result for the pair
            connection_type: Review state (default: potential)
            predicted_relationship: Optional relationship label

        Returns:
            The stored Connection

        Raises:
            InvalidInput: On bad ids, result or connection type
            StoreUnavailable: If the backend write fails
        """
        key = canonical_key(id_a, id_b)
        if not isinstance(result, SimilarityResult):
            raise InvalidInput(f"Expected a SimilarityResult, got {type(result).__name__}")
        if predicted_relationship is not None and not isinstance(predicted_relationship, str):
            raise InvalidInput("predicted_relationship must be text")

        connection = Connection(
            id_a=key[0],
            id_b=key[1],
            result=result,
            connection_type=_parse_connection_type(connection_type),
            predicted_relationship=predicted_relationship,
            updated_at=datetime.now(timezone.utc).isoformat(),
        )

        with self._pair_lock(key):
            self.backend.write(key, connection.to_dict())

        logger.debug(
            f"Upserted connection {key}: score={result.overall_score:.3f} "
            f"type={connection.connection_type.value}"
        )
        return connection

    def set_connection_type(
        self,
        id_a: ProfileId,
        id_b: ProfileId,
        connection_type: Union[ConnectionType, str],
    ) -> Connection:
        """
        Record a reviewer verdict, keeping the stored result.

        Raises:
            KeyError: If the pair has no stored connection
        """
        key = canonical_key(id_a, id_b)
        new_type = _parse_connection_type(connection_type)

        with self._pair_lock(key):
            record = self.backend.read(key)
            if record is None:
                raise KeyError(f"No connection stored for {key}")
            connection = replace(
                Connection.from_dict(record),
                connection_type=new_type,
                updated_at=datetime.now(timezone.utc).isoformat(),
            )
            self.backend.write(key, connection.to_dict())

        logger.info(f"Connection {key} marked {new_type.value}")
        return connection

    def rescore(
        self,
        id_a: ProfileId,
        id_b: ProfileId,
        result: SimilarityResult,
        predicted_relationship: Optional[str] = None,
    ) -> Connection:
        """
        Store a fresh result for a pair, keeping its review state.

        The stored connection_type (and predicted_relationship, unless a new
        one is given) carries over. The read and the write happen under the
        pair lock, so a verdict recorded concurrently is never overwritten
        with a stale one. A new pair is stored as potential.

        Raises:
            InvalidInput: On bad ids or result
            StoreUnavailable: If the backend read or write fails
        """
        key = canonical_key(id_a, id_b)
        if not isinstance(result, SimilarityResult):
            raise InvalidInput(f"Expected a SimilarityResult, got {type(result).__name__}")
        if predicted_relationship is not None and not isinstance(predicted_relationship, str):
            raise InvalidInput("predicted_relationship must be text")

        with self._pair_lock(key):
            record = self.backend.read(key)
            connection_type = ConnectionType.POTENTIAL
            if record is not None:
                existing = Connection.from_dict(record)
                connection_type = existing.connection_type
                if predicted_relationship is None:
                    predicted_relationship = existing.predicted_relationship

            connection = Connection(
                id_a=key[0],
                id_b=key[1],
                result=result,
                connection_type=connection_type,
                predicted_relationship=predicted_relationship,
                updated_at=datetime.now(timezone.utc).isoformat(),
            )
            self.backend.write(key, connection.to_dict())

        logger.debug(
            f"Rescored connection {key}: score={result.overall_score:.3f} "
            f"type={connection.connection_type.value}"
        )
        return connection

    def get(self, id_a: ProfileId, id_b: ProfileId) -> Optional[Connection]:
        """Symmetric lookup."""
        key = canonical_key(id_a, id_b)
        record = self.backend.read(key)
        return Connection.from_dict(record) if record is not None else None

    def neighbors_of(self, profile_id: ProfileId, min_score: float = 0.0) -> list[Connection]:
        """
        Connections touching profile_id with overall_score >= min_score.

        Ordered by score descending, ties by ascending counterpart id.
        """
        validate_profile_id(profile_id)
        connections = [
            Connection.from_dict(record)
            for record in self.backend.records_touching(profile_id)
        ]
        connections = [
            c for c in connections
            if c.touches(profile_id) and c.overall_score >= min_score
        ]
        connections.sort(key=lambda c: (-c.overall_score, c.other(profile_id)))
        return connections

    def top_matches(self, profile_id: ProfileId, min_score: float = 0.0, limit: int = 20) -> list[Connection]:
        """neighbors_of truncated to limit."""
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise InvalidInput(f"limit must be a non-negative integer, got {limit!r}")
        return self.neighbors_of(profile_id, min_score)[:limit]

    def all_connections(self) -> list[Connection]:
        connections = [Connection.from_dict(r) for r in self.backend.all_records()]
        connections.sort(key=lambda c: (-c.overall_score, str(c.id_a), str(c.id_b)))
        return connections

    def stats(self, high_threshold: float = HIGH_MATCH_THRESHOLD) -> dict:
        """Counts for dashboards: total, high-confidence, by review state."""
        connections = self.all_connections()
        by_type = {t.value: 0 for t in ConnectionType}
        for c in connections:
            by_type[c.connection_type.value] += 1
        return {
            "total_connections": len(connections),
            "high_confidence_matches": sum(
                1 for c in connections if c.overall_score >= high_threshold
            ),
            "by_type": by_type,
        }
