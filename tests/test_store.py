import sqlite3

import pytest

from crm_dedupe.errors import PersistenceError, ValidationError
from crm_dedupe.models import EntityType
from crm_dedupe.store import SqliteRecordStore


def test_insert_fills_id_and_created_at(store):
    record_id = store.insert_contact(first_name="Ada", user_id="u1")
    contact = store.get(EntityType.CONTACT, record_id)
    assert contact.id == record_id
    assert contact.created_at
    assert contact.is_merged is False


def test_query_filters_owner_and_merged_records(store):
    store.insert_company(id="a", name="Acme", user_id="u1", created_at="2024-01-02")
    store.insert_company(id="b", name="Beta", user_id="u1", created_at="2024-01-01")
    store.insert_company(id="c", name="Gamma", user_id="u2", created_at="2024-01-03")
    store.mark_merged(EntityType.COMPANY, "b")

    assert [c.id for c in store.query(EntityType.COMPANY)] == ["a", "c"]
    assert [c.id for c in store.query(EntityType.COMPANY, user_id="u1")] == ["a"]
    everything = store.query(EntityType.COMPANY, include_merged=True)
    assert [c.id for c in everything] == ["b", "a", "c"]


def test_mark_merged_twice_fails(store):
    store.insert_company(id="a", name="Acme", user_id="u1")
    store.mark_merged(EntityType.COMPANY, "a")
    with pytest.raises(PersistenceError):
        store.mark_merged(EntityType.COMPANY, "a")


def test_update_unknown_column_or_row_is_rejected(store):
    store.insert_company(id="a", name="Acme", user_id="u1")
    with pytest.raises(ValidationError):
        store.update(EntityType.COMPANY, "a", {"favourite_colour": "red"})
    with pytest.raises(PersistenceError):
        store.update(EntityType.COMPANY, "missing", {"name": "Nope"})
    with pytest.raises(ValidationError):
        store.rows("widgets")


def test_transaction_rolls_back_on_error(store):
    store.insert_company(id="a", name="Acme", user_id="u1")
    with pytest.raises(RuntimeError):
        with store.transaction():
            assert store.in_transaction
            store.update(EntityType.COMPANY, "a", {"name": "Acme Renamed"})
            raise RuntimeError("boom")
    assert store.in_transaction is False
    assert store.get(EntityType.COMPANY, "a").name == "Acme"


def test_nested_transactions_join_the_outer_one(store):
    store.insert_company(id="a", name="Acme", user_id="u1")
    with pytest.raises(RuntimeError):
        with store.transaction():
            with store.transaction():
                store.update(EntityType.COMPANY, "a", {"website": "acme.io"})
            assert store.in_transaction
            raise RuntimeError("outer failure")
    assert store.get(EntityType.COMPANY, "a").website is None


def test_file_database_persists_commits(tmp_path):
    path = str(tmp_path / "crm.sqlite3")
    first = SqliteRecordStore(path)
    with first.transaction():
        first.insert_company(id="a", name="Acme", user_id="u1")
    first.close()

    second = SqliteRecordStore(path)
    try:
        assert second.get(EntityType.COMPANY, "a").name == "Acme"
    finally:
        second.close()


class _CommitFails:
    def __init__(self, connection):
        self._connection = connection

    def execute(self, sql, params=()):
        if sql in ("COMMIT", "ROLLBACK"):
            raise sqlite3.OperationalError("cannot commit - no transaction is active")
        return self._connection.execute(sql, params)


def test_failed_commit_surfaces_as_persistence_error(store, monkeypatch):
    monkeypatch.setattr(store, "_conn", _CommitFails(store._conn))
    with pytest.raises(PersistenceError) as excinfo:
        with store.transaction():
            store.insert_company(id="a", name="Acme", user_id="u1")
    assert "Commit failed" in str(excinfo.value)
    assert store.in_transaction is False
