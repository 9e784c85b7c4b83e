"""
Tests for storage backends, unique constraints and atomic blocks
"""

import pytest
from datetime import datetime, timezone

from budget_ledger.storage import (
    InMemoryStorage, SQLiteStorage, UniqueConstraintError, create_storage
)


def record(record_id, **fields):
    now = datetime.now(timezone.utc).isoformat()
    return dict({"id": record_id, "created_at": now, "updated_at": now}, **fields)


class StorageContract:
    """Behaviour shared by every backend"""

    def make_storage(self, tmp_path):
        raise NotImplementedError

    def test_basic_operations(self, tmp_path):
        storage = self.make_storage(tmp_path)

        storage.save("funds", "f1", record("f1", fund_code="MOOE-2025-001", amount="100.50"))
        storage.save("funds", "f2", record("f2", fund_code="PS-2025-001", amount="5.00"))

        assert storage.load("funds", "f1")["amount"] == "100.50"
        assert storage.exists("funds", "f2")
        assert not storage.exists("funds", "missing")
        assert storage.count("funds") == 2
        assert [r["id"] for r in storage.find("funds", {"fund_code": "PS-2025-001"})] == ["f2"]

        assert storage.delete("funds", "f1")
        assert not storage.delete("funds", "f1")
        assert storage.load("funds", "f1") is None
        storage.close()

    def test_unique_constraint_rejects_duplicate(self, tmp_path):
        storage = self.make_storage(tmp_path)
        storage.register_unique("funds", "fund_code")

        storage.save("funds", "f1", record("f1", fund_code="MOOE-2025-001"))
        with pytest.raises(UniqueConstraintError) as exc_info:
            storage.save("funds", "f2", record("f2", fund_code="MOOE-2025-001"))

        assert exc_info.value.table == "funds"
        assert exc_info.value.field == "fund_code"
        assert not storage.exists("funds", "f2")
        storage.close()

    def test_unique_constraint_allows_resaving_same_record(self, tmp_path):
        storage = self.make_storage(tmp_path)
        storage.register_unique("funds", "fund_code")

        storage.save("funds", "f1", record("f1", fund_code="MOOE-2025-001", fund_name="Old"))
        storage.save("funds", "f1", record("f1", fund_code="MOOE-2025-001", fund_name="New"))

        assert storage.load("funds", "f1")["fund_name"] == "New"
        storage.close()

    def test_deleted_value_can_be_reused(self, tmp_path):
        storage = self.make_storage(tmp_path)
        storage.register_unique("funds", "fund_code")

        storage.save("funds", "f1", record("f1", fund_code="MOOE-2025-001"))
        storage.delete("funds", "f1")
        storage.save("funds", "f2", record("f2", fund_code="MOOE-2025-001"))

        assert storage.exists("funds", "f2")
        storage.close()

    def test_atomic_rolls_back_on_error(self, tmp_path):
        storage = self.make_storage(tmp_path)
        storage.save("funds", "f1", record("f1", utilized="0.00"))

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("funds", "f1", record("f1", utilized="50.00"))
                storage.save("funds", "f2", record("f2", utilized="0.00"))
                raise RuntimeError("boom")

        assert storage.load("funds", "f1")["utilized"] == "0.00"
        assert not storage.exists("funds", "f2")
        storage.close()

    def test_nested_atomic_commits_with_outermost(self, tmp_path):
        storage = self.make_storage(tmp_path)

        with pytest.raises(ValueError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("funds", "f1", record("f1"))
                assert storage.in_atomic
                raise ValueError("outer failure")

        assert not storage.exists("funds", "f1")
        assert not storage.in_atomic
        storage.close()

    def test_atomic_commits_on_success(self, tmp_path):
        storage = self.make_storage(tmp_path)

        with storage.atomic():
            storage.save("funds", "f1", record("f1"))
            storage.save("funds", "f2", record("f2"))

        assert storage.count("funds") == 2
        storage.close()


class TestInMemoryStorage(StorageContract):

    def make_storage(self, tmp_path):
        return InMemoryStorage()

    def test_loaded_records_are_copies(self, tmp_path):
        storage = InMemoryStorage()
        storage.save("funds", "f1", record("f1", fund_name="Original"))

        loaded = storage.load("funds", "f1")
        loaded["fund_name"] = "Mutated"

        assert storage.load("funds", "f1")["fund_name"] == "Original"


class TestSQLiteStorage(StorageContract):

    def make_storage(self, tmp_path):
        return SQLiteStorage(tmp_path / "ledger.db")

    def test_data_survives_reopen(self, tmp_path):
        db_path = tmp_path / "ledger.db"
        storage = SQLiteStorage(db_path)
        storage.register_unique("funds", "fund_code")
        storage.save("funds", "f1", record("f1", fund_code="MOOE-2025-001"))
        storage.close()

        reopened = SQLiteStorage(db_path)
        reopened.register_unique("funds", "fund_code")
        assert reopened.load("funds", "f1")["fund_code"] == "MOOE-2025-001"
        with pytest.raises(UniqueConstraintError):
            reopened.save("funds", "f2", record("f2", fund_code="MOOE-2025-001"))
        reopened.close()


class TestCreateStorage:

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_url(self, tmp_path):
        storage = create_storage(f"sqlite:///{tmp_path / 'ledger.db'}")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == str(tmp_path / "ledger.db")
        storage.close()

    def test_unsupported_url(self):
        with pytest.raises(ValueError):
            create_storage("postgresql://localhost/ledger")
