"""
Tests for storage backends and units of work
"""

import os
import tempfile

import pytest

from coop_banking.errors import ConsistencyError, StateError
from coop_banking.storage import InMemoryStorage, SQLiteStorage, create_storage, unit_of_work


record = {"id": "rec_001", "name": "Test Record", "amount": "100.50"}


class TestInMemoryStorage:
    """CRUD and rollback behaviour of InMemoryStorage"""

    def setup_method(self):
        self.storage = InMemoryStorage()

    def test_basic_operations(self):
        """Test save, load, find, count and delete"""
        self.storage.save("things", "rec_001", record)
        self.storage.save("things", "rec_002", {"id": "rec_002", "name": "Other"})

        assert self.storage.load("things", "rec_001") == record
        assert self.storage.exists("things", "rec_001")
        assert not self.storage.exists("things", "missing")
        assert len(self.storage.load_all("things")) == 2
        assert self.storage.find("things", {"name": "Other"})[0]["id"] == "rec_002"
        assert self.storage.count("things") == 2

        assert self.storage.delete("things", "rec_001")
        assert not self.storage.delete("things", "rec_001")
        assert self.storage.count("things") == 1

    def test_loaded_records_are_copies(self):
        """Mutating a loaded record does not change storage"""
        self.storage.save("things", "rec_001", record)
        loaded = self.storage.load("things", "rec_001")
        loaded["name"] = "Changed"
        assert self.storage.load("things", "rec_001")["name"] == "Test Record"

    def test_atomic_commit_keeps_writes(self):
        """Test a committed unit keeps its writes"""
        with self.storage.atomic():
            self.storage.save("things", "rec_001", record)
        assert self.storage.exists("things", "rec_001")

    def test_atomic_rollback_restores_every_touched_record(self):
        """Inserts, updates and deletes inside a failed unit are all undone"""
        self.storage.save("things", "keep", {"id": "keep", "value": 1})
        self.storage.save("things", "gone", {"id": "gone", "value": 2})

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("things", "keep", {"id": "keep", "value": 99})
                self.storage.save("things", "new", {"id": "new", "value": 3})
                self.storage.delete("things", "gone")
                raise RuntimeError("boom")

        assert self.storage.load("things", "keep")["value"] == 1
        assert self.storage.load("things", "gone")["value"] == 2
        assert not self.storage.exists("things", "new")

    def test_nested_units_roll_back_together(self):
        """A failure in an inner unit undoes the outer unit's writes too"""
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("things", "outer", {"id": "outer"})
                with self.storage.atomic():
                    self.storage.save("things", "inner", {"id": "inner"})
                    raise RuntimeError("inner failure")

        assert self.storage.count("things") == 0

    def test_clear_table_inside_failed_unit(self):
        """Test clearing a table is undone on failure"""
        self.storage.save("things", "rec_001", record)
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.clear_table("things")
                raise RuntimeError("boom")
        assert self.storage.count("things") == 1


class TestSQLiteStorage:
    """SQLite backend persistence and transactions"""

    def setup_method(self):
        self.storage = SQLiteStorage(":memory:")

    def teardown_method(self):
        self.storage.close()

    def test_basic_operations(self):
        """Test basic storage operations"""
        self.storage.save("things", "rec_001", record)
        assert self.storage.load("things", "rec_001") == record
        assert self.storage.find("things", {"amount": "100.50"})[0]["id"] == "rec_001"
        assert self.storage.count("things") == 1
        assert self.storage.delete("things", "rec_001")
        assert self.storage.load("things", "rec_001") is None

    def test_atomic_rollback(self):
        """Test a failed unit discards its writes"""
        self.storage.save("things", "keep", {"id": "keep", "value": 1})

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("things", "keep", {"id": "keep", "value": 99})
                self.storage.save("things", "new", {"id": "new"})
                raise RuntimeError("boom")

        assert self.storage.load("things", "keep")["value"] == 1
        assert not self.storage.exists("things", "new")

    def test_table_created_inside_failed_unit_is_recreated(self):
        """Test a table rolled back with its unit can be written again"""
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("fresh", "a", {"id": "a"})
                raise RuntimeError("boom")
        self.storage.save("fresh", "b", {"id": "b"})
        assert self.storage.count("fresh") == 1

    def test_persists_across_connections(self):
        """Test data persists across connections"""
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "coop.db")
            first = SQLiteStorage(path)
            first.save("things", "rec_001", record)
            first.close()

            second = SQLiteStorage(path)
            assert second.load("things", "rec_001") == record
            second.close()


class TestUnitOfWork:
    """Classification of failures inside a unit of work"""

    def setup_method(self):
        self.storage = InMemoryStorage()

    def test_storage_fault_becomes_consistency_error(self):
        """Test storage faults surface as ConsistencyError"""
        with pytest.raises(ConsistencyError, match="rolled back"):
            with unit_of_work(self.storage, "test operation"):
                self.storage.save("things", "rec_001", record)
                raise OSError("disk full")
        assert not self.storage.exists("things", "rec_001")

    def test_classified_errors_pass_through(self):
        """Test classified errors are not rewrapped"""
        with pytest.raises(StateError):
            with unit_of_work(self.storage, "test operation"):
                self.storage.save("things", "rec_001", record)
                raise StateError("wrong state")
        assert not self.storage.exists("things", "rec_001")


class TestCreateStorage:

    def test_memory_url(self):
        """Test building in-memory storage from a URL"""
        assert isinstance(create_storage("memory"), InMemoryStorage)

    def test_sqlite_url(self):
        """Test building SQLite storage from a URL"""
        storage = create_storage("sqlite:///:memory:")
        assert isinstance(storage, SQLiteStorage)
        storage.close()

    def test_unknown_url(self):
        """Test an unknown storage URL is rejected"""
        with pytest.raises(ValueError, match="Unsupported"):
            create_storage("postgresql://localhost/coop")
