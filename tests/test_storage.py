"""
Tests for storage backends and transaction support
"""

import pytest
import tempfile
import os
from decimal import Decimal

from microledger.exceptions import RecordNotFound
from microledger.storage import (
    InMemoryStorage, SQLiteStorage, create_storage, sort_records
)


def _record(record_id, **fields):
    data = {"id": record_id}
    data.update(fields)
    return data


class StorageContract:
    """Behaviour every backend must share; subclasses provide make_storage()"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = self.make_storage()

    def teardown_method(self):
        self.storage.close()

    def test_basic_operations(self):
        """Test basic CRUD operations"""
        self.storage.save("things", "a", _record("a", amount="100.50"))

        assert self.storage.load("things", "a") == {"id": "a", "amount": "100.50"}
        assert self.storage.exists("things", "a")
        assert not self.storage.exists("things", "missing")
        assert self.storage.load("things", "missing") is None
        assert self.storage.count("things") == 1

        assert self.storage.delete("things", "a")
        assert not self.storage.delete("things", "a")
        assert self.storage.count("things") == 0

    def test_load_all_keeps_insertion_order(self):
        for record_id in ["c", "a", "b"]:
            self.storage.save("things", record_id, _record(record_id))
        # Overwriting an existing record must not move it
        self.storage.save("things", "c", _record("c", touched=True))

        assert [r["id"] for r in self.storage.load_all("things")] == ["c", "a", "b"]

    def test_find_with_sort(self):
        self.storage.save("things", "1", _record("1", day="2024-01-02", kind="x"))
        self.storage.save("things", "2", _record("2", day="2024-01-01", kind="x"))
        self.storage.save("things", "3", _record("3", day="2024-01-03", kind="y"))

        found = self.storage.find("things", {"kind": "x"}, sort=[("day", 1)])
        assert [r["id"] for r in found] == ["2", "1"]

        newest = self.storage.find("things", {}, sort=[("day", -1)])
        assert [r["id"] for r in newest] == ["3", "1", "2"]

        assert self.storage.find_one("things", {"kind": "y"})["id"] == "3"
        assert self.storage.find_one("things", {"kind": "z"}) is None

    def test_insert_rejects_existing_id(self):
        self.storage.insert("things", "a", _record("a"))
        with pytest.raises(ValueError, match="already exists"):
            self.storage.insert("things", "a", _record("a"))

    def test_update_merges_patch(self):
        self.storage.save("things", "a", _record("a", amount="1", note="keep"))

        updated = self.storage.update("things", "a", {"amount": "2"})

        assert updated == {"id": "a", "amount": "2", "note": "keep"}
        assert self.storage.load("things", "a")["amount"] == "2"
        assert self.storage.update("things", "missing", {"amount": "2"}) is None

    def test_batch_update_applies_all(self):
        self.storage.save("things", "a", _record("a", value="1"))
        self.storage.save("things", "b", _record("b", value="1"))

        count = self.storage.batch_update("things", [("a", {"value": "2"}), ("b", {"value": "3"})])

        assert count == 2
        assert self.storage.load("things", "a")["value"] == "2"
        assert self.storage.load("things", "b")["value"] == "3"

    def test_batch_update_is_all_or_nothing(self):
        self.storage.save("things", "a", _record("a", value="1"))

        with pytest.raises(RecordNotFound):
            self.storage.batch_update("things", [("a", {"value": "2"}), ("ghost", {"value": "2"})])

        assert self.storage.load("things", "a")["value"] == "1"
        assert not self.storage.exists("things", "ghost")

    def test_sum(self):
        self.storage.save("things", "a", _record("a", kind="x", amount="10.25"))
        self.storage.save("things", "b", _record("b", kind="x", amount="4.75"))
        self.storage.save("things", "c", _record("c", kind="y", amount="100"))

        assert self.storage.sum("things", {"kind": "x"}, "amount") == Decimal("15.00")
        assert self.storage.sum("things", {"kind": "z"}, "amount") == Decimal("0")

    def test_atomic_rollback(self):
        self.storage.save("things", "a", _record("a", value="1"))

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("things", "a", _record("a", value="2"))
                self.storage.save("things", "b", _record("b"))
                raise RuntimeError("boom")

        assert self.storage.load("things", "a")["value"] == "1"
        assert not self.storage.exists("things", "b")

    def test_nested_atomic_rolls_back_outer_work(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("things", "outer", _record("outer"))
                with self.storage.atomic():
                    self.storage.save("things", "inner", _record("inner"))
                raise RuntimeError("boom")

        assert self.storage.count("things") == 0

    def test_atomic_commit(self):
        with self.storage.atomic():
            self.storage.save("things", "a", _record("a"))
            with self.storage.atomic():
                self.storage.save("things", "b", _record("b"))

        assert self.storage.count("things") == 2


class TestInMemoryStorage(StorageContract):

    def make_storage(self):
        return InMemoryStorage()

    def test_loaded_records_are_copies(self):
        self.storage.save("things", "a", _record("a", tags=["x"]))
        loaded = self.storage.load("things", "a")
        loaded["tags"].append("y")

        assert self.storage.load("things", "a")["tags"] == ["x"]


class TestSQLiteStorage(StorageContract):

    def make_storage(self):
        return SQLiteStorage(":memory:")

    def test_persists_across_connections(self):
        """Test records survive reopening the database file"""
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = os.path.join(tmpdir, "ledger.db")

            storage = SQLiteStorage(db_path)
            storage.save("things", "a", _record("a", amount="12.34"))
            storage.close()

            reopened = SQLiteStorage(db_path)
            assert reopened.load("things", "a") == {"id": "a", "amount": "12.34"}
            reopened.close()

    def test_rollback_of_new_table(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("fresh", "a", _record("a"))
                raise RuntimeError("boom")

        assert self.storage.count("fresh") == 0
        self.storage.save("fresh", "b", _record("b"))
        assert self.storage.count("fresh") == 1


class TestStorageFactory:

    def test_backends_by_name(self):
        assert isinstance(create_storage("memory"), InMemoryStorage)
        sqlite = create_storage("sqlite", ":memory:")
        assert isinstance(sqlite, SQLiteStorage)
        sqlite.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_storage("mongo")

    def test_sort_missing_values_first(self):
        records = [{"id": "1", "day": "2024-01-02"}, {"id": "2"}, {"id": "3", "day": "2024-01-01"}]
        assert [r["id"] for r in sort_records(records, [("day", 1)])] == ["2", "3", "1"]
