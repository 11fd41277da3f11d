import json

import pytest

from pokearena.backend.store import InMemoryDocumentStore, PostgresDocumentStore, create_store


def test_create_store_returns_postgres_store_when_database_url_present() -> None:
    store = create_store(database_url="postgresql://local")

    assert isinstance(store, PostgresDocumentStore)


def test_create_store_returns_in_memory_store_when_database_url_missing() -> None:
    store = create_store(database_url=None)

    assert isinstance(store, InMemoryDocumentStore)


def test_in_memory_store_commits_writes_at_end_of_block() -> None:
    store = InMemoryDocumentStore()

    with store.transaction() as txn:
        txn.put("characters", "c1", {"coins": 10})
        assert txn.get("characters", "c1") == {"coins": 10}

    with store.transaction() as txn:
        assert txn.get("characters", "c1") == {"coins": 10}


def test_in_memory_store_discards_writes_when_block_raises() -> None:
    store = InMemoryDocumentStore()
    with store.transaction() as txn:
        txn.put("characters", "c1", {"coins": 10})

    with pytest.raises(RuntimeError):
        with store.transaction() as txn:
            txn.put("characters", "c1", {"coins": 0})
            txn.put("characters", "c2", {"coins": 5})
            raise RuntimeError("abort")

    with store.transaction() as txn:
        assert txn.get("characters", "c1") == {"coins": 10}
        assert txn.get("characters", "c2") is None


def test_in_memory_store_hands_out_copies() -> None:
    store = InMemoryDocumentStore()
    document = {"ivs": {"hp": 31}}
    with store.transaction() as txn:
        txn.put("captured_pokemon", "p1", document)
    document["ivs"]["hp"] = 0

    with store.transaction() as txn:
        loaded = txn.get("captured_pokemon", "p1")
        loaded["ivs"]["hp"] = 1

    with store.transaction() as txn:
        assert txn.get("captured_pokemon", "p1") == {"ivs": {"hp": 31}}


def test_in_memory_insert_refuses_existing_key() -> None:
    store = InMemoryDocumentStore()

    with store.transaction() as txn:
        assert txn.insert("matchmaking", "ash", {"rosterId": "r1"}) is True
        assert txn.insert("matchmaking", "ash", {"rosterId": "r2"}) is False

    with store.transaction() as txn:
        assert txn.get("matchmaking", "ash") == {"rosterId": "r1"}


def test_in_memory_delete_is_visible_inside_transaction_and_ignores_missing_keys() -> None:
    store = InMemoryDocumentStore()
    with store.transaction() as txn:
        txn.put("matchmaking", "ash", {"rosterId": "r1"})

    with store.transaction() as txn:
        txn.delete("matchmaking", "ash")
        txn.delete("matchmaking", "nobody")
        assert txn.get("matchmaking", "ash") is None
        assert txn.scan("matchmaking") == []


def test_in_memory_scan_filters_on_top_level_fields_in_insertion_order() -> None:
    store = InMemoryDocumentStore()
    with store.transaction() as txn:
        txn.put("capture_attempts", "a1", {"characterId": "c1", "success": True})
        txn.put("capture_attempts", "a2", {"characterId": "c2", "success": True})
    with store.transaction() as txn:
        txn.put("capture_attempts", "a3", {"characterId": "c1", "success": False})
        rows = txn.scan("capture_attempts", characterId="c1")

    assert [key for key, _ in rows] == ["a1", "a3"]


def test_in_memory_add_generates_distinct_keys() -> None:
    store = InMemoryDocumentStore()

    with store.transaction() as txn:
        first = txn.add("battle_history", {"battleId": "b1"})
        second = txn.add("battle_history", {"battleId": "b1"})

    assert first != second


class _FakeCursor:
    def __init__(self, rows: list[tuple] | None = None, rowcount: int = 1) -> None:
        self.commands: list[tuple[str, tuple]] = []
        self.rows = list(rows or [])
        self.rowcount = rowcount

    def execute(self, sql: str, params: tuple) -> None:
        self.commands.append((sql, params))

    def fetchone(self) -> tuple | None:
        return self.rows[0] if self.rows else None

    def fetchall(self) -> list[tuple]:
        return list(self.rows)

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


class _FakeConnection:
    def __init__(self, cursor: _FakeCursor) -> None:
        self.cursor_instance = cursor
        self.committed = False

    def cursor(self) -> _FakeCursor:
        return self.cursor_instance

    def commit(self) -> None:
        self.committed = True

    def __enter__(self) -> "_FakeConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


class _PostgresStoreWithFakeConnection(PostgresDocumentStore):
    def __init__(self, rows: list[tuple] | None = None, rowcount: int = 1) -> None:
        super().__init__(database_url="postgresql://local")
        self.fake_connection = _FakeConnection(_FakeCursor(rows=rows, rowcount=rowcount))

    def _connect(self) -> _FakeConnection:
        return self.fake_connection


def test_postgres_put_upserts_json_body_and_commits() -> None:
    store = _PostgresStoreWithFakeConnection()

    with store.transaction() as txn:
        txn.put("characters", "c1", {"coins": 10})

    commands = store.fake_connection.cursor_instance.commands
    assert store.fake_connection.committed is True
    assert len(commands) == 1
    assert "INSERT INTO documents" in commands[0][0]
    assert "ON CONFLICT (collection, key)" in commands[0][0]
    assert commands[0][1][:2] == ("characters", "c1")
    assert json.loads(commands[0][1][2]) == {"coins": 10}


def test_postgres_transaction_does_not_commit_when_block_raises() -> None:
    store = _PostgresStoreWithFakeConnection()

    with pytest.raises(RuntimeError):
        with store.transaction() as txn:
            txn.put("characters", "c1", {"coins": 10})
            raise RuntimeError("abort")

    assert store.fake_connection.committed is False


def test_postgres_get_locks_row_and_decodes_body() -> None:
    store = _PostgresStoreWithFakeConnection(rows=[('{"coins": 5}',)])

    with store.transaction() as txn:
        document = txn.get("characters", "c1")

    sql, params = store.fake_connection.cursor_instance.commands[0]
    assert document == {"coins": 5}
    assert "FOR UPDATE" in sql
    assert params == ("characters", "c1")


def test_postgres_get_returns_none_for_missing_row() -> None:
    store = _PostgresStoreWithFakeConnection(rows=[])

    with store.transaction() as txn:
        assert txn.get("characters", "missing") is None


def test_postgres_insert_reports_conflict_through_rowcount() -> None:
    store = _PostgresStoreWithFakeConnection(rowcount=0)

    with store.transaction() as txn:
        created = txn.insert("matchmaking", "ash", {"rosterId": "r1"})

    assert created is False
    assert "DO NOTHING" in store.fake_connection.cursor_instance.commands[0][0]


def test_postgres_scan_uses_containment_filter() -> None:
    store = _PostgresStoreWithFakeConnection(rows=[("a1", {"characterId": "c1"})])

    with store.transaction() as txn:
        rows = txn.scan("capture_attempts", characterId="c1")

    sql, params = store.fake_connection.cursor_instance.commands[0]
    assert rows == [("a1", {"characterId": "c1"})]
    assert "@>" in sql
    assert params == ("capture_attempts", json.dumps({"characterId": "c1"}))
