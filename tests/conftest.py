"""Shared fixtures: a populated in-memory SQLite database and a recording psycopg2 fake."""

from __future__ import annotations

import sqlite3

import pytest
from psycopg2.extensions import TRANSACTION_STATUS_IDLE

from logica_guard.database.connection import PostgresConnection, SQLiteConnection

ITEM_COUNT = 1500


@pytest.fixture
def sqlite_db():
    conn = sqlite3.connect(":memory:")
    conn.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT)")
    conn.executemany(
        "INSERT INTO items (id, name) VALUES (?, ?)",
        [(i, f"item-{i}") for i in range(1, ITEM_COUNT + 1)],
    )
    conn.execute("CREATE TABLE secrets (id INTEGER, token TEXT)")
    conn.execute("INSERT INTO secrets (id, token) VALUES (1, 'hunter2')")
    conn.commit()

    adapter = SQLiteConnection(connection=conn)
    yield adapter
    conn.close()


class FakeCursor:
    def __init__(self, conn: "FakePgConnection"):
        self.conn = conn
        self.description = None
        self._rows = []

    def execute(self, sql, params=None):
        self.conn.statements.append((sql, params))
        if sql.startswith("SELECT * FROM ("):
            if self.conn.error is not None:
                raise self.conn.error
            self.description = [(name,) for name in self.conn.columns]
            self._rows = list(self.conn.rows)

    def fetchall(self):
        return self._rows

    def close(self):
        pass


class FakePgConnection:
    """Records every statement; returns canned rows for the paginated query."""

    def __init__(self, status=TRANSACTION_STATUS_IDLE, rows=None, error=None):
        self.status = status
        self.columns = ["x"]
        self.rows = rows if rows is not None else [{"x": 1}]
        self.error = error
        self.statements = []
        self.rollbacks = 0
        self.autocommit = False
        self.closed = 0

    def get_transaction_status(self):
        return self.status

    def cursor(self, cursor_factory=None):
        return FakeCursor(self)

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = 1

    @property
    def sql(self):
        return [statement for statement, _ in self.statements]


@pytest.fixture
def fake_pg():
    return FakePgConnection()


@pytest.fixture
def pg_db(fake_pg):
    return PostgresConnection(connection=fake_pg)
