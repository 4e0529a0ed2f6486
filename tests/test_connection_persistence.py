"""
Tests for the JSON-file connection backend.

Covers:
- Round trip across store instances (survives restart)
- Atomic write via temp file + rename
- Failed writes leave the previous file intact and raise StoreUnavailable
- Corrupted or mismatched documents are reported, not silently reset
"""

import json
import os
import threading
from unittest.mock import patch

import portalocker
import pytest

from conftest import make_result
from core.connection_store import (
    SCHEMA_VERSION,
    ConnectionStore,
    ConnectionType,
    JsonFileBackend,
)
from core.errors import StoreUnavailable


class TestRoundTrip:

    def test_survives_new_store_instance(self, tmp_path):
        path = tmp_path / "connections.json"
        first = ConnectionStore.open(path)
        first.upsert(7, 3, make_result(0.82), predicted_relationship="sibling")
        first.upsert(3, 9, make_result(0.41))
        first.set_connection_type(3, 9, ConnectionType.REJECTED)

        second = ConnectionStore.open(path)
        conn = second.get(3, 7)
        assert conn == first.get(7, 3)
        assert conn.predicted_relationship == "sibling"
        assert second.get(9, 3).connection_type == ConnectionType.REJECTED
        assert [c.other(3) for c in second.neighbors_of(3)] == [7, 9]

    def test_string_ids_round_trip(self, json_store):
        json_store.upsert("zeta", "alpha", make_result(0.5))
        assert json_store.get("alpha", "zeta").key == ("alpha", "zeta")

    def test_document_shape(self, tmp_path):
        path = tmp_path / "connections.json"
        store = ConnectionStore.open(path)
        store.upsert(1, 2, make_result(0.5))
        store.upsert(2, 1, make_result(0.6))

        with open(path) as f:
            data = json.load(f)
        assert data["schema_version"] == SCHEMA_VERSION
        assert len(data["connections"]) == 1
        assert data["connections"][0]["result"]["overall_score"] == 0.6

    def test_missing_file_is_empty_store(self, json_store):
        assert json_store.all_connections() == []
        assert json_store.get(1, 2) is None


class TestAtomicWrite:

    def test_writes_via_temp_file_and_rename(self, tmp_path):
        backend = JsonFileBackend(tmp_path / "connections.json")

        with patch("core.connection_store.os.rename", wraps=os.rename) as mock_rename:
            ConnectionStore(backend).upsert(1, 2, make_result(0.5))

        mock_rename.assert_called_once_with(backend.temp_path, backend.path)
        assert not backend.temp_path.exists()

    def test_takes_exclusive_lock(self, tmp_path):
        with patch("core.connection_store.portalocker.lock", wraps=portalocker.lock) as mock_lock:
            ConnectionStore.open(tmp_path / "connections.json").upsert(1, 2, make_result(0.5))

        modes = [c.args[1] for c in mock_lock.call_args_list]
        assert portalocker.LOCK_EX in modes

    def test_fsync_failure_keeps_original(self, tmp_path):
        path = tmp_path / "connections.json"
        store = ConnectionStore.open(path)
        store.upsert(1, 2, make_result(0.5))
        before = path.read_text()

        with patch("core.connection_store.os.fsync", side_effect=OSError("disk full")):
            with pytest.raises(StoreUnavailable) as exc_info:
                store.upsert(1, 2, make_result(0.9))

        assert isinstance(exc_info.value.__cause__, OSError)
        assert path.read_text() == before
        assert store.get(1, 2).overall_score == 0.5

    def test_lock_failure_raises_store_unavailable(self, tmp_path):
        store = ConnectionStore.open(tmp_path / "connections.json")
        error = portalocker.exceptions.LockException("held elsewhere")

        with patch("core.connection_store.portalocker.lock", side_effect=error):
            with pytest.raises(StoreUnavailable):
                store.upsert(1, 2, make_result(0.5))


class TestCorruption:

    def test_corrupted_json_raises(self, tmp_path):
        path = tmp_path / "connections.json"
        path.write_text("{broken")
        store = ConnectionStore.open(path)

        with pytest.raises(StoreUnavailable, match="corrupted"):
            store.get(1, 2)

    def test_corrupted_json_is_not_overwritten(self, tmp_path):
        path = tmp_path / "connections.json"
        path.write_text("{broken")

        with pytest.raises(StoreUnavailable):
            ConnectionStore.open(path).upsert(1, 2, make_result(0.5))
        assert path.read_text() == "{broken"

    def test_schema_mismatch_raises(self, tmp_path):
        path = tmp_path / "connections.json"
        path.write_text(json.dumps({"schema_version": 99, "connections": []}))

        with pytest.raises(StoreUnavailable, match="schema version"):
            ConnectionStore.open(path).all_connections()

    def test_non_object_document_raises(self, tmp_path):
        path = tmp_path / "connections.json"
        path.write_text("[]")

        with pytest.raises(StoreUnavailable, match="corrupted"):
            ConnectionStore.open(path).get(1, 2)

    def test_invalid_utf8_raises(self, tmp_path):
        path = tmp_path / "connections.json"
        path.write_bytes(b"\xff\xfe{\x00")

        with pytest.raises(StoreUnavailable, match="corrupted") as exc_info:
            ConnectionStore.open(path).all_connections()
        assert isinstance(exc_info.value.__cause__, UnicodeDecodeError)

    def test_connections_not_a_list_raises(self, tmp_path):
        path = tmp_path / "connections.json"
        path.write_text(json.dumps({"schema_version": SCHEMA_VERSION, "connections": {}}))

        with pytest.raises(StoreUnavailable, match="corrupted"):
            ConnectionStore.open(path).neighbors_of(1)

    @pytest.mark.parametrize("record", [
        {"id_b": 2},
        {"id_a": 1, "id_b": 2},
        {"id_a": 1, "id_b": 1, "result": {}},
        "not a record",
    ])
    def test_damaged_record_raises(self, tmp_path, record):
        path = tmp_path / "connections.json"
        path.write_text(json.dumps({"schema_version": SCHEMA_VERSION, "connections": [record]}))

        with pytest.raises(StoreUnavailable, match="bad record 0"):
            ConnectionStore.open(path).get(1, 2)

    def test_damaged_record_blocks_writes(self, tmp_path):
        path = tmp_path / "connections.json"
        original = json.dumps({"schema_version": SCHEMA_VERSION, "connections": [{"id_b": 2}]})
        path.write_text(original)

        with pytest.raises(StoreUnavailable):
            ConnectionStore.open(path).upsert(3, 4, make_result(0.5))
        assert path.read_text() == original


class TestConcurrentWriters:

    def test_two_stores_on_one_file_keep_every_write(self, tmp_path):
        """Separate stores share no pair locks; the file lock alone prevents lost updates."""
        path = tmp_path / "connections.json"
        stores = [ConnectionStore.open(path), ConnectionStore.open(path)]
        errors = []

        def write_pair(store, a, b):
            try:
                store.upsert(a, b, make_result(0.5))
            except Exception as e:  # surfaced below
                errors.append(e)

        threads = [
            threading.Thread(target=write_pair, args=(stores[i % 2], i, i + 1000))
            for i in range(40)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        keys = {c.key for c in ConnectionStore.open(path).all_connections()}
        assert keys == {(i, i + 1000) for i in range(40)}
