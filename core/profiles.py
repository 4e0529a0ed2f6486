"""
Typed profile records consumed by the similarity engine.

A Profile carries optional biometric vectors plus IdentityAttributes.
Nested fields (languages, family members) are first-class typed values,
validated once here at the storage boundary instead of re-parsed by readers.

Missing fields are fine (partial profiles are the common case). Structurally
wrong fields raise InvalidInput.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np

from core.errors import InvalidInput

logger = logging.getLogger(__name__)

ProfileId = Union[int, str]


@dataclass(frozen=True)
class FamilyMember:
    """A family member reported on a profile."""
    name: str
    relationship: Optional[str] = None


@dataclass(frozen=True)
class IdentityAttributes:
    """Self-reported identity data. Every field is optional."""
    full_name: str = ""
    place_of_birth: Optional[str] = None
    date_of_birth: Optional[date] = None
    languages: frozenset = frozenset()
    family_members: tuple = ()  # tuple[FamilyMember, ...]

    @property
    def family_member_names(self) -> list[str]:
        return [m.name for m in self.family_members if m.name]


@dataclass(eq=False)
class Profile:
    """One registered individual as seen by the matcher."""
    profile_id: ProfileId
    attributes: IdentityAttributes = field(default_factory=IdentityAttributes)
    face_descriptor: Optional[np.ndarray] = None
    voice_print: Optional[np.ndarray] = None

    def __post_init__(self):
        validate_profile_id(self.profile_id)
        self.face_descriptor = validate_vector(self.face_descriptor, "face_descriptor")
        self.voice_print = validate_vector(self.voice_print, "voice_print")

    def with_features(self, face_descriptor=None, voice_print=None) -> "Profile":
        """Return a copy with the given vectors filled in (None keeps the current one)."""
        return replace(
            self,
            face_descriptor=face_descriptor if face_descriptor is not None else self.face_descriptor,
            voice_print=voice_print if voice_print is not None else self.voice_print,
        )

    def to_dict(self) -> dict:
        attrs = self.attributes
        return {
            "profile_id": self.profile_id,
            "full_name": attrs.full_name,
            "place_of_birth": attrs.place_of_birth,
            "date_of_birth": attrs.date_of_birth.isoformat() if attrs.date_of_birth else None,
            "languages": sorted(attrs.languages),
            "family_members": [
                {"name": m.name, "relationship": m.relationship}
                for m in attrs.family_members
            ],
            "face_descriptor": self.face_descriptor.tolist() if self.face_descriptor is not None else None,
            "voice_print": self.voice_print.tolist() if self.voice_print is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Profile":
        """
        Build a Profile from a JSON-shaped dict.

        Accepts camelCase (as registered) or snake_case keys. Name comes from
        firstName/lastName, or fullName when given directly.

        Raises:
            InvalidInput: If a present field has the wrong structure
        """
        if not isinstance(data, dict):
            raise InvalidInput(f"Profile record must be an object, got {type(data).__name__}")

        profile_id = _pick(data, "profile_id", "profileId", "id")
        if profile_id is None:
            raise InvalidInput("Profile record has no id")

        attributes = IdentityAttributes(
            full_name=_full_name(data),
            place_of_birth=_optional_text(_pick(data, "place_of_birth", "placeOfBirth"), "place_of_birth"),
            date_of_birth=_parse_date(_pick(data, "date_of_birth", "dateOfBirth")),
            languages=_parse_languages(data.get("languages")),
            family_members=_parse_family_members(_pick(data, "family_members", "familyMembers")),
        )

        return cls(
            profile_id=profile_id,
            attributes=attributes,
            face_descriptor=_pick(data, "face_descriptor", "faceDescriptor"),
            voice_print=_pick(data, "voice_print", "voicePrint"),
        )


def validate_profile_id(profile_id) -> None:
    """Identifiers are ints or non-empty strings."""
    if isinstance(profile_id, bool) or not isinstance(profile_id, (int, str)):
        raise InvalidInput(f"Profile id must be int or str, got {type(profile_id).__name__}")
    if isinstance(profile_id, str) and not profile_id:
        raise InvalidInput("Profile id must not be empty")


def validate_vector(values, field_name: str = "vector") -> Optional[np.ndarray]:
    """
    Validate a feature vector and return it as a 1-D float64 array.

    None and empty sequences mean "not supplied" and return None. Entries
    must already be numbers: numeric strings and booleans are rejected,
    not converted.

    Raises:
        InvalidInput: If entries are non-numeric or non-finite, or the
            value is not one-dimensional
    """
    if values is None:
        return None
    if isinstance(values, (str, bytes, dict)):
        raise InvalidInput(f"{field_name} must be a numeric sequence, got {type(values).__name__}")
    try:
        arr = np.asarray(values)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"{field_name} contains non-numeric values") from e
    if arr.ndim != 1:
        raise InvalidInput(f"{field_name} must be one-dimensional, got shape {arr.shape}")
    if arr.size == 0:
        return None
    # i/u/f: signed int, unsigned int, float
    if arr.dtype.kind not in "iuf":
        raise InvalidInput(f"{field_name} contains non-numeric values (dtype {arr.dtype})")
    vec = arr.astype(np.float64)
    if not np.all(np.isfinite(vec)):
        raise InvalidInput(f"{field_name} contains non-finite values")
    return vec


def load_profiles(path: Path) -> list[Profile]:
    """
    Load profiles from a JSON file.

    Accepts {"profiles": [...]} or a bare list of profile records.

    Raises:
        InvalidInput: On corrupted JSON or malformed records
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidInput(f"Profiles file is corrupted ({path}): {e}") from e

    records = data.get("profiles", []) if isinstance(data, dict) else data
    if not isinstance(records, list):
        raise InvalidInput(f"Profiles file must hold a list of profiles ({path})")

    profiles = [Profile.from_dict(record) for record in records]
    logger.info(f"Loaded {len(profiles)} profiles from {path}")
    return profiles


# --- Field parsing ---

def _pick(data: dict, *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _optional_text(value, field_name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInput(f"{field_name} must be text, got {type(value).__name__}")
    value = value.strip()
    return value or None


def _full_name(data: dict) -> str:
    full = _optional_text(_pick(data, "full_name", "fullName"), "full_name")
    if full:
        return full
    first = _optional_text(_pick(data, "first_name", "firstName"), "first_name") or ""
    last = _optional_text(_pick(data, "last_name", "lastName"), "last_name") or ""
    return f"{first} {last}".strip()


def _parse_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidInput(f"date_of_birth must be an ISO date, got {type(value).__name__}")
    try:
        # Tolerate full timestamps as stored by some registration forms
        return date.fromisoformat(value[:10])
    except ValueError as e:
        raise InvalidInput(f"date_of_birth is not an ISO date: {value!r}") from e


def _parse_languages(value) -> frozenset:
    if value is None:
        return frozenset()
    if isinstance(value, (str, bytes, dict)) or not hasattr(value, "__iter__"):
        raise InvalidInput(f"languages must be a list, got {type(value).__name__}")
    languages = set()
    for item in value:
        if not isinstance(item, str):
            raise InvalidInput(f"languages entries must be text, got {type(item).__name__}")
        if item.strip():
            languages.add(item.strip())
    return frozenset(languages)


def _parse_family_members(value) -> tuple:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise InvalidInput(f"family_members must be a list, got {type(value).__name__}")
    members = []
    for item in value:
        if isinstance(item, FamilyMember):
            members.append(item)
            continue
        if not isinstance(item, dict):
            raise InvalidInput(f"family_members entries must be objects, got {type(item).__name__}")
        name = _optional_text(item.get("name"), "family member name") or ""
        relationship = _optional_text(item.get("relationship"), "family member relationship")
        members.append(FamilyMember(name=name, relationship=relationship))
    return tuple(members)
