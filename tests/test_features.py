"""
Tests for feature suppliers and feature file loading.
"""

import numpy as np
import pytest

from conftest import make_profile, random_vector
from core.embeddings_io import load_embeddings, load_feature_vectors
from core.errors import InvalidInput
from core.features import FaceFeatureSupplier, VoiceFeatureSupplier, attach_features


def _save(path, entries):
    np.save(path, np.array(entries, dtype=object), allow_pickle=True)


class TestLoadFeatureVectors:

    def test_missing_file_is_empty(self, tmp_path):
        assert load_embeddings(tmp_path / "absent.npy") == []
        assert load_feature_vectors(tmp_path / "absent.npy") == {}

    def test_loads_vectors_by_profile(self, tmp_path):
        path = tmp_path / "faces.npy"
        _save(path, [
            {"profile_id": 1, "vector": [0.1, 0.2]},
            {"profile_id": 2, "vector": [0.3, 0.4]},
        ])

        vectors = load_feature_vectors(path)
        assert set(vectors) == {1, 2}
        assert vectors[2].tolist() == [0.3, 0.4]

    def test_reads_legacy_field_names(self, tmp_path):
        path = tmp_path / "faces.npy"
        _save(path, [{"face_id": "p-1", "mu": np.array([1.0, 2.0])}])
        assert load_feature_vectors(path)["p-1"].tolist() == [1.0, 2.0]

    def test_later_entry_replaces_earlier(self, tmp_path):
        path = tmp_path / "faces.npy"
        _save(path, [
            {"profile_id": 1, "vector": [0.1]},
            {"profile_id": 1, "vector": [0.9]},
        ])
        assert load_feature_vectors(path)[1].tolist() == [0.9]

    def test_entries_without_vector_skipped(self, tmp_path):
        path = tmp_path / "faces.npy"
        _save(path, [{"profile_id": 1, "vector": None}, {"profile_id": 2, "vector": [1.0]}])
        assert list(load_feature_vectors(path)) == [2]

    def test_entry_without_id_raises(self, tmp_path):
        path = tmp_path / "faces.npy"
        _save(path, [{"vector": [1.0]}])
        with pytest.raises(InvalidInput):
            load_feature_vectors(path)

    def test_malformed_vector_raises(self, tmp_path):
        path = tmp_path / "faces.npy"
        _save(path, [{"profile_id": 1, "vector": [1.0, float("nan")]}])
        with pytest.raises(InvalidInput):
            load_feature_vectors(path)

    def test_plain_numeric_array_rejected(self, tmp_path):
        """Only the trusted pipeline's dict-entry format is accepted."""
        path = tmp_path / "faces.npy"
        np.save(path, np.zeros((2, 4)))
        with pytest.raises(InvalidInput, match="not a dict"):
            load_feature_vectors(path)

    def test_loader_documents_pickle_trust(self):
        assert "trusted" in load_embeddings.__doc__
        assert "allow_pickle" in load_embeddings.__doc__


class TestSuppliers:

    def test_supply_returns_validated_vector(self):
        supplier = FaceFeatureSupplier({1: [0.5, 0.25]})
        vec = supplier.supply(1)
        assert isinstance(vec, np.ndarray)
        assert vec.tolist() == [0.5, 0.25]
        assert supplier.supply(2) is None
        assert len(supplier) == 1

    def test_from_file(self, tmp_path):
        path = tmp_path / "voices.npy"
        _save(path, [{"profile_id": 3, "vector": [0.1, 0.2, 0.3]}])
        supplier = VoiceFeatureSupplier.from_file(path)
        assert supplier.modality == "voice"
        assert supplier.supply(3).tolist() == [0.1, 0.2, 0.3]

    def test_attach_features_fills_vectors(self):
        face = random_vector(8, seed=1)
        voice = random_vector(4, seed=2)
        profile = make_profile(1, "Amina Hassan")

        attached = attach_features(
            profile,
            face=FaceFeatureSupplier({1: face}),
            voice=VoiceFeatureSupplier({1: voice}),
        )

        assert np.array_equal(attached.face_descriptor, face)
        assert np.array_equal(attached.voice_print, voice)
        assert attached.attributes == profile.attributes
        assert profile.face_descriptor is None

    def test_supplier_without_entry_keeps_existing(self):
        existing = random_vector(8, seed=3)
        profile = make_profile(1, face=existing)
        attached = attach_features(profile, face=FaceFeatureSupplier({}))
        assert np.array_equal(attached.face_descriptor, existing)

    def test_wrong_modality_raises(self):
        with pytest.raises(ValueError):
            attach_features(make_profile(1), face=VoiceFeatureSupplier({}))
